"""
Structured JSON logging for the server.

Room and gateway code attach context to records as attributes
(``record.room_id = ...``); any of the fields below that are present are
copied into the emitted JSON object.
"""

import json
import logging

CONTEXT_FIELDS = (
    "room_id",
    "player_id",
    "connection_id",
    "game_result",
    "request_path",
    "status_code",
    "response_time",
)


class JSONFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if hasattr(record, field)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str):
    """Route every logger through a single JSON stream handler."""
    stream = logging.StreamHandler()
    stream.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [stream]
    root.setLevel(getattr(logging, level, logging.INFO))
