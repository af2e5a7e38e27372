# flasharb/events.py
"""
Metrics / notification sink
Structured events as JSON lines on a dedicated logger. Anything with the
same three methods can replace it.
"""

import json
import logging

from flasharb.models import ExecutionRecord


class LoggingEventSink:

    def __init__(self, logger_name: str = "flasharb.events"):
        self.logger = logging.getLogger(logger_name)

    def emit(self, event: str, payload: dict, level: int = logging.INFO):
        self.logger.log(level, json.dumps({"event": event, **payload}, default=str, sort_keys=True))

    def record_tick(self, stats: dict):
        self.emit("tick", stats)

    def record_execution(self, record: ExecutionRecord):
        self.emit("execution", record.to_event())

    def notify(self, message: str, **fields):
        self.emit("notification", {"message": message, **fields}, level=logging.WARNING)
