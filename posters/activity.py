import json
import logging
from datetime import datetime, timezone

_LEVELS = {"debug", "info", "warning", "error"}


def _utc_now():
    return datetime.now(timezone.utc).isoformat()


def _log_event(level, payload):
    message = json.dumps(payload, sort_keys=True, default=str)
    getattr(logging, level)(message)


class ActivityLog:
    """Fire-and-forget activity events, written as JSON log lines."""

    def add(self, source_id, level, event_type, message, data=None):
        level = (level or "info").lower()
        if level not in _LEVELS:
            level = "info"
        payload = {
            "event": event_type,
            "message": message,
            "source_id": source_id,
            "ts": _utc_now(),
        }
        if data:
            payload["data"] = data
        _log_event(level, payload)
