"""
Audit Trail.

Each state change of a claim, a fund transfer, a user or the ledger row
produces one :class:`AuditEvent`.  The event is always written to the
structured log; given a connection it is also stored in ``audit_log``,
inside whatever transaction the caller has open, so an event never
outlives a rolled-back change.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Optional, Union

from pydantic import BaseModel, Field

from pettycash.logger import StructuredLogger
from pettycash.utils.general import utc_now

__all__ = ["AuditEvent", "fetch_audit_trail", "log_audit_event", "persist_audit_event"]

# Flat scalars only; nested structures belong in their own tables.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> AuditEvent:
    """Record one audit event.

    Args:
        logger: Destination for the structured log line.
        action: Upper-case verb, e.g. ``"APPROVE"``, ``"ADD_FUNDS"``,
            ``"LEDGER_ADJUSTMENT"``.
        entity_type: ``"Transaction"``, ``"FundTransfer"``, ``"User"`` or
            ``"Balance"``.
        entity_id: Primary key of the affected row.
        user_id: The acting user (``"system"`` for bootstrap writes).
        details: Flat context such as amounts and from/to status.
        conn: When given, the event is also inserted into ``audit_log``.
            A storage failure is logged and does not fail the caller.

    Returns:
        The validated event.
    """
    event = AuditEvent(
        timestamp=utc_now().isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info(
        "AUDIT %s %s %s",
        action,
        entity_type,
        entity_id,
        extra={"actor_id": user_id, "audit": json.dumps(event.details, default=str)},
    )

    if conn is not None:
        try:
            persist_audit_event(conn, event)
        except sqlite3.Error as db_err:
            logger.warning("Audit event %s for %s not stored: %s", action, entity_id, db_err)
    return event


def persist_audit_event(conn: sqlite3.Connection, event: AuditEvent) -> None:
    """Insert *event* into ``audit_log``.

    Commits only when no transaction was already open.
    """
    joined_transaction: bool = conn.in_transaction
    conn.execute(
        """
        INSERT INTO audit_log (timestamp, action, entity_type, entity_id, user_id, details)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            event.timestamp,
            event.action,
            event.entity_type,
            event.entity_id,
            event.user_id,
            json.dumps(event.details, default=str),
        ),
    )
    if not joined_transaction:
        conn.commit()


def fetch_audit_trail(
    conn: sqlite3.Connection,
    entity_type: str,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
) -> list[AuditEvent]:
    """Stored events for an entity type (optionally one row or one action), oldest first."""
    sql = "SELECT * FROM audit_log WHERE entity_type = ?"
    params: list[str] = [entity_type]
    if entity_id is not None:
        sql += " AND entity_id = ?"
        params.append(entity_id)
    if action is not None:
        sql += " AND action = ?"
        params.append(action)
    rows = conn.execute(sql + " ORDER BY id", params).fetchall()
    return [
        AuditEvent(
            timestamp=row["timestamp"],
            action=row["action"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            user_id=row["user_id"],
            details=json.loads(row["details"] or "{}"),
        )
        for row in rows
    ]
