"""
Audit logging for Ghostline remote-control security events.

Records operator binding, unauthorized access attempts and every command
that reaches the control system. Entries go to a dedicated JSON-lines file
and to the standard logger.
"""
import json
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .crypto import DATA_DIR
from .logging_config import get_logger

logger = get_logger("ghostline.audit")

AUDIT_LOG_FILE = DATA_DIR / "audit.log"
MAX_AUDIT_ENTRIES = 10000

SENSITIVE_FIELDS = ("token", "bot_token", "secret", "api_key", "password")


class AuditEventType(str, Enum):
    """Types of auditable events."""
    # Operator identity
    OPERATOR_BOUND = "operator.bound"
    OPERATOR_RESET = "operator.reset"
    UNAUTHORIZED_ACCESS = "access.unauthorized"

    # Control system
    COMMAND_EXECUTED = "command.executed"
    EMERGENCY_REQUESTED = "emergency.requested"
    EMERGENCY_CONFIRMED = "emergency.confirmed"
    EMERGENCY_CANCELLED = "emergency.cancelled"
    EMERGENCY_EXPIRED = "emergency.expired"

    # Bot lifecycle
    BOT_STARTED = "bot.started"
    BOT_STOPPED = "bot.stopped"
    CREDENTIAL_REJECTED = "credential.rejected"


class AuditLogger:
    """Structured audit logger for security events."""

    def __init__(self, log_file: Optional[Path] = None, max_entries: int = MAX_AUDIT_ENTRIES):
        self._log_file = Path(log_file) if log_file else AUDIT_LOG_FILE
        self._max_entries = max_entries
        # Lines in the file, counted once on the first write
        self._line_count: Optional[int] = None

    @property
    def log_file(self) -> Path:
        return self._log_file

    def log(
        self,
        event_type: AuditEventType,
        chat_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ):
        """
        Log an audit event.

        Args:
            event_type: The type of event
            chat_id: Chat the event originated from, if any
            details: Additional event details
            success: Whether the operation succeeded
        """
        safe_details = {
            k: v for k, v in (details or {}).items()
            if k not in SENSITIVE_FIELDS
        }
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "event": event_type.value,
            "chat_id": chat_id,
            "success": success,
            "details": safe_details,
        }

        msg = f"AUDIT: {event_type.value} | chat={chat_id or '-'}"
        if safe_details:
            msg += f" | {safe_details}"
        if success:
            logger.info(msg)
        else:
            logger.warning(msg)

        try:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_file, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
            self._rotate_if_needed()
        except OSError as e:
            logger.error(f"Failed to write audit log: {e}")

    def _rotate_if_needed(self):
        """Keep the newest half of the entries once the file grows too large."""
        if self._line_count is None:
            with open(self._log_file) as f:
                self._line_count = sum(1 for _ in f)
        else:
            self._line_count += 1
        if self._line_count <= self._max_entries:
            return

        with open(self._log_file) as f:
            kept = f.readlines()[-(self._max_entries // 2):]
        with open(self._log_file, "w") as f:
            f.writelines(kept)
        self._line_count = len(kept)

    def _read_entries(self) -> Iterator[dict]:
        with open(self._log_file) as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue

    def get_recent(self, limit: int = 100, event_type: Optional[str] = None) -> List[dict]:
        """Newest-first entries, optionally only those of one event type."""
        if not self._log_file.exists():
            return []
        wanted = AuditEventType(event_type).value if event_type else None
        window: deque = deque(maxlen=max(0, limit))
        try:
            for entry in self._read_entries():
                if wanted is None or entry.get("event") == wanted:
                    window.append(entry)
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return []
        return list(reversed(window))

    def get_unauthorized_attempts(self, limit: int = 50) -> List[dict]:
        """Recent messages and button presses from chats other than the operator."""
        return self.get_recent(limit=limit, event_type=AuditEventType.UNAUTHORIZED_ACCESS)


audit_logger = AuditLogger()
