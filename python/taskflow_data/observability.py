"""taskflow_data.observability — Fire-and-forget audit events.

Every event is written to the module logger as one JSON line. When an
audit log group is configured the same payload is mirrored to CloudWatch
Logs. Nothing in the mirror path may raise into a store operation.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Set, Tuple

from botocore.exceptions import ClientError

from taskflow_data.aws_clients import _get_logs
from taskflow_data.serialization import _now_iso

logger = logging.getLogger(__name__)

__all__ = [
    "emit_audit_event",
]

_COMPONENT = "taskflow_data"
_STREAM_NAME = "data-access-audit"
# Streams already created in this process; shared by every thread.
_ready_streams: Set[Tuple[str, str]] = set()
_ready_lock = threading.Lock()


def _ensure_stream(logs: Any, log_group: str, stream_name: str) -> bool:
    key = (log_group, stream_name)
    with _ready_lock:
        if key in _ready_streams:
            return True
    for call, kwargs in (
        (logs.create_log_group, {"logGroupName": log_group}),
        (logs.create_log_stream, {"logGroupName": log_group, "logStreamName": stream_name}),
    ):
        try:
            call(**kwargs)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
                return False
        except Exception:
            return False
    with _ready_lock:
        _ready_streams.add(key)
    return True


def _mirror_to_cloudwatch(log_group: str, payload: Dict[str, Any], stream_name: str = _STREAM_NAME) -> None:
    try:
        logs = _get_logs()
    except Exception:
        return
    if not _ensure_stream(logs, log_group, stream_name):
        return

    try:
        logs.put_log_events(
            logGroupName=log_group,
            logStreamName=stream_name,
            logEvents=[
                {
                    "timestamp": int(time.time() * 1000),
                    "message": json.dumps(payload, sort_keys=True, default=str),
                }
            ],
        )
    except Exception as exc:
        logger.debug("[WARNING] Audit mirror to %s failed: %s", log_group, exc)


def emit_audit_event(
    event: str,
    *,
    entity_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    item_count: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
    mirror_log_group: Optional[str] = None,
) -> None:
    """Record a data-access event. Never raises."""
    payload: Dict[str, Any] = {
        "timestamp": _now_iso(),
        "component": _COMPONENT,
        "event": event,
        "entity_id": str(entity_id or ""),
        "actor_id": str(actor_id or ""),
        "item_count": int(max(0, item_count or 0)),
    }
    if extra:
        payload.update(extra)
    try:
        logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
        if mirror_log_group:
            _mirror_to_cloudwatch(mirror_log_group, payload)
    except Exception:
        return
