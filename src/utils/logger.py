import sys
from pathlib import Path
from typing import Literal, Optional, Union
from loguru import logger

# Every component logger is bound under this namespace
BASE_LOGGER_NAMESPACE = "assistant_router"

_CONSOLE_FORMAT = "<level>{level: <8}</level> | <cyan>{extra[component]}</cyan> | {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | {message}"

_configured = False


def _not_audit(record) -> bool:
    # Audit entries have their own JSONL sink
    return not record["extra"].get("audit")


def _add_component(record) -> None:
    record["extra"].setdefault("component", record["extra"].get("module", record["name"]))


def get_logger(name: str) -> "logger":
    """
    Returns a loguru logger bound to one pipeline component or service.

    Example: get_logger("RerankGate") → logger with module="assistant_router.RerankGate"
    """
    return logger.bind(module=f"{BASE_LOGGER_NAMESPACE}.{name}")


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    rotation: str = "10 MB",
    retention: str = "14 days",
) -> None:
    """
    Install the router's stderr sink and, optionally, a rotating log file.

    Only the first call takes effect, so AssistantRouter instances created
    by tests or the CLI never stack duplicate handlers.

    Args:
        level: Minimum level for every sink.
        log_file: Plain-text log file; parent directories are created.
        rotation: loguru rotation spec for the log file.
        retention: loguru retention spec for the log file.
    """
    global _configured
    if _configured:
        return

    logger.remove()
    logger.configure(patcher=_add_component)
    logger.add(
        sys.stderr,
        format=_CONSOLE_FORMAT,
        level=level,
        colorize=True,
        filter=_not_audit,
    )
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(path),
            format=_FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            filter=_not_audit,
        )
        logger.bind(module=f"{BASE_LOGGER_NAMESPACE}.logging").info(f"📝 Logging to {path}")

    _configured = True
