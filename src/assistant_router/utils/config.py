"""
Configuration for dispatch audit logging.

Lives under the ``audit`` key of the YAML config; ``--audit-log-dir`` /
``ASSISTANT_ROUTER_AUDIT_LOG_DIR`` turn it on without touching the file.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_REDACT_KEYS = ["api_key", "apikey", "token", "password", "passwd", "secret", "credential", "auth"]


class AuditConfig(BaseModel):
    """Where the audit JSONL goes, how it rotates, and which keys get redacted."""

    enabled: bool = False
    log_dir: str = "./logs"
    file_name: str = "audit.jsonl"
    rotation: str = "10 MB"
    retention: str = "30 days"
    compression: Optional[str] = "gz"
    # Matched case-insensitively as substrings of params/body keys
    redact_keys: list[str] = Field(default_factory=lambda: list(DEFAULT_REDACT_KEYS))

    def redaction_pattern(self) -> Optional["re.Pattern[str]"]:
        if not self.redact_keys:
            return None
        alternatives = "|".join(re.escape(k).replace("_", "[_-]?") for k in self.redact_keys)
        return re.compile(f"({alternatives})", re.IGNORECASE)
