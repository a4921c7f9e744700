"""Shared utility functions and models for the petty cash package.

Convenience re-exports so consumers can import directly from
``pettycash.utils`` (e.g. ``from pettycash.utils import round_money``).
"""

from pettycash.utils.audit import AuditEvent, fetch_audit_trail, log_audit_event
from pettycash.utils.general import convert_to_json_safe, new_id, utc_now
from pettycash.utils.money import from_minor_units, round_money, to_minor_units

__all__ = [
    "AuditEvent",
    "convert_to_json_safe",
    "fetch_audit_trail",
    "from_minor_units",
    "log_audit_event",
    "new_id",
    "round_money",
    "to_minor_units",
    "utc_now",
]
