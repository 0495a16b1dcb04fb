"""
Audit logging for dispatched requests.

Every request the router sends to a target endpoint is written as one JSON
line, success or failure, with rotation support.
"""

from typing import Any, Dict, Optional
from pathlib import Path
from datetime import datetime, timezone
import json
import re

from loguru import logger

from src.assistant_router.pipeline.models import DispatchPlan, DispatchResult

from .config import AuditConfig

_SENSITIVE_KEYS = AuditConfig().redaction_pattern()
_REDACTED = "***REDACTED***"


def _sanitize_payload(payload: Any, pattern: Optional["re.Pattern[str]"] = _SENSITIVE_KEYS) -> Any:
    """Recursively redact values whose key matches ``pattern``."""
    if pattern is None:
        return payload
    if isinstance(payload, dict):
        sanitized = {}
        for key, value in payload.items():
            if pattern.search(str(key)):
                sanitized[key] = _REDACTED
            else:
                sanitized[key] = _sanitize_payload(value, pattern)
        return sanitized
    if isinstance(payload, list):
        return [_sanitize_payload(item, pattern) for item in payload]
    return payload


class DispatchAuditLogger:
    """
    Audit logger for dispatched requests.

    Writes to a JSONL file through a dedicated loguru sink with automatic rotation.
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        rotation: Optional[str] = None,
        retention: Optional[str] = None,
        compression: Optional[str] = None,
        config: Optional[AuditConfig] = None,
    ):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./logs)
            rotation: Log rotation size/time (default: 10 MB)
            retention: How long to keep logs (default: 30 days)
            compression: Compression format (default: gz)
            config: AuditConfig instance (overrides other params)
        """
        if config:
            self.config = config
        else:
            overrides = {
                "log_dir": log_dir,
                "rotation": rotation,
                "retention": retention,
                "compression": compression,
            }
            self.config = AuditConfig(**{k: v for k, v in overrides.items() if v is not None})
        self._redact = self.config.redaction_pattern()

        self.log_path = Path(self.config.log_dir)
        self.log_path.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_path / self.config.file_name

        self._sink_id = logger.add(
            str(self.log_file),
            format="{message}",  # Raw JSON, no formatting
            rotation=self.config.rotation,
            retention=self.config.retention,
            compression=self.config.compression,
            serialize=False,
            enqueue=False,
            filter=lambda record: record["extra"].get("audit") is True,
        )

    def log_dispatch(self, plan: DispatchPlan, result: DispatchResult) -> None:
        """
        Log one dispatched request and its outcome.

        Args:
            plan: The validated request that was sent
            result: What came back (or the failure classification)
        """
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "dispatch",
            "method": plan.method,
            "path": plan.path,
            "params": _sanitize_payload(plan.params, self._redact),
            "body": _sanitize_payload(plan.body, self._redact),
            "status_code": result.status_code,
            "status": "success" if result.ok else "error",
            "elapsed_ms": round(result.elapsed_ms, 1),
        }
        if not result.ok:
            entry["error"] = result.error.value
            entry["reason"] = result.reason

        self._write_entry(entry)

    def _write_entry(self, entry: Dict[str, Any]) -> None:
        """Write a JSONL entry to the audit log."""
        json_line = json.dumps(entry, separators=(",", ":"), default=str)
        logger.bind(audit=True).info(json_line)

    def close(self) -> None:
        """Remove the audit log sink from loguru."""
        logger.remove(self._sink_id)
