"""
Edit-processing audit logging.
Structured log lines for edits, status transitions, bundle checks and lock contention.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for the offer grid edit-processing core."""

    def __init__(self, name: str = "offer_grid"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_edit_event(self, kind: str, row_start: int, row_end: int, col_start: int, col_end: int, status: str = "received"):
        """Log an incoming edit event."""
        details = {
            "kind": kind,
            "rows": f"{row_start}-{row_end}",
            "cols": f"{col_start}-{col_end}"
        }
        self.log_operation(f"edit.{kind}", status, details)

    def log_status_transition(self, row_number: int, old_status: Any, new_status: Any, cleared: List[str] = None):
        """Log a row status transition."""
        details = {
            "row": row_number,
            "from": old_status or "",
            "to": new_status or ""
        }
        if cleared:
            details["cleared"] = cleared

        self.log_operation("status.transition", "applied", details)

    def log_bundle_validation(self, bundle_id: str, valid: bool, code: str = None, details: Dict[str, Any] = None):
        """Log the outcome of a bundle integrity check."""
        log_details = {"bundle_id": bundle_id}
        if code:
            log_details["code"] = code
        if details:
            log_details.update(details)

        self.log_operation("bundle.validate", "valid" if valid else "invalid", log_details)

    def log_lock_event(self, event: str, timeout_ms: int = None, waited_ms: float = None):
        """Log lock acquisition, release and contention."""
        details = {}
        if timeout_ms is not None:
            details["timeout_ms"] = timeout_ms
        if waited_ms is not None:
            details["waited_ms"] = round(waited_ms, 2)

        status = "busy" if event == "timeout" else "success"
        self.log_operation(f"lock.{event}", status, details)

    def log_approval_decision(self, row_number: int, action: str, approver: str, success: bool, reason: str = ""):
        """Log an approver action outcome."""
        log_details = {
            "row": row_number,
            "action": action,
            "approver": approver,
            "reason": reason[:100] if reason else ""  # Limit reason length
        }
        status = "applied" if success else "rejected"
        self.log_operation("approval.decision", status, log_details)

    def log_recalculation(self, rows_scanned: int, rows_changed: int, bundle_errors: int, start_time: float, end_time: float):
        """Log a full recalculation pass."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {
            "rows_scanned": rows_scanned,
            "rows_changed": rows_changed,
            "bundle_errors": bundle_errors,
            "duration_ms": duration_ms
        }
        self.log_operation("recalculation.full", "success", log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def log_approval_decision(row_number: int, action: str, approver: str, success: bool, reason: str = ""):
    """Log an approver action outcome."""
    logger.log_approval_decision(row_number, action, approver, success, reason)


def sanitize_row_snapshot(values: List[Any], max_len: int = 50) -> List[Any]:
    """Truncate long cell strings before they go into an audit line."""
    sanitized = []
    for value in values:
        if isinstance(value, str) and len(value) > max_len:
            sanitized.append(value[:max_len - 3] + "...")
        else:
            sanitized.append(value)
    return sanitized
