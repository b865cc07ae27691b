"""Audit trail for completed and failed uploads."""

import json
import logging
from typing import Any, Dict, Optional

audit_logger = logging.getLogger("server.audit")


def audit_log(
    action: str,
    resource: str,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error: Optional[str] = None,
) -> None:
    """
    Write one structured audit line.

    Args:
        action: Event name (e.g. 'upload.assembled')
        resource: Affected resource, usually the final relative path or uploadId
        details: Extra JSON-serializable fields
        success: Outcome of the action
        error: Failure reason when success is False
    """
    entry: Dict[str, Any] = {
        "action": action,
        "resource": resource,
        "success": success,
    }
    if details:
        entry["details"] = details
    if error:
        entry["error"] = error

    line = json.dumps(entry, sort_keys=True, default=str)
    if success:
        audit_logger.info(line)
    else:
        audit_logger.warning(line)
