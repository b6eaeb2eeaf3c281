"""
Audit log sinks for authorization decisions.

In production these records would go to your audit system of choice; the
sinks here cover structured logging and an in-memory store.
"""

import json
import logging
from typing import Any, Dict, List


class InMemoryAuditSink:
    """Keeps audit records in a list."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    async def emit(self, record: Dict[str, Any]):
        self.records.append(record)


class LoggingAuditSink:
    """
    Writes audit records as ``[SECURITY] {json}`` log lines.

    Fallback decisions are logged at WARNING so degraded mode stands out.
    """

    def __init__(self, logger_name: str = "fga_authz.audit"):
        self.logger = logging.getLogger(logger_name)

    async def emit(self, record: Dict[str, Any]):
        level = logging.WARNING if record.get("source") == "fallback" else logging.INFO
        self.logger.log(level, "[SECURITY] %s", json.dumps(record, default=str, sort_keys=True))
