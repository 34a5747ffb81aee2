"""
Per-record access history.

Every event is appended to the record's ``hipaa_info.access_history`` and
mirrored to the ``magda.audit`` logger.  History is append-only; retention is
left to the deployment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from magda.models.base import utcnow
from magda.models.medical_record import AccessEvent, MedicalRecord

audit_logger = logging.getLogger("magda.audit")

CREATED = "created"
ACCESSED = "accessed"
ENRICHED = "enriched"
DELETED = "deleted"


@dataclass(frozen=True)
class AuditEvent:
    account_id: str
    record_id: str
    action: str
    timestamp: datetime = field(default_factory=utcnow)


class AuditTrail:
    def record(self, record: MedicalRecord, event: AuditEvent) -> MedicalRecord:
        """Append *event* to *record*'s history and return the record."""
        if event.record_id != record.id:
            raise ValueError(f"Audit event for {event.record_id} applied to record {record.id}")

        record.hipaa_info.access_history.append(
            AccessEvent(timestamp=event.timestamp, action=event.action, user_id=event.account_id)
        )
        record.hipaa_info.last_accessed = event.timestamp
        self._log(event)
        return record

    def log_only(self, event: AuditEvent) -> None:
        """Log an event for a record that no longer exists (deletions)."""
        self._log(event)

    @staticmethod
    def _log(event: AuditEvent) -> None:
        audit_logger.info(
            "record %s %s by %s",
            event.record_id,
            event.action,
            event.account_id,
            extra={
                "context": {
                    "account_id": event.account_id,
                    "record_id": event.record_id,
                    "action": event.action,
                    "timestamp": event.timestamp.isoformat(),
                }
            },
        )
