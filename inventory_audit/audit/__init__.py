"""Audit trail: request context propagation, row diffing, risk classification."""

from inventory_audit.audit.context import AuditContext, Principal, actor_or_sentinel
from inventory_audit.audit.payload import AuditPayload, build_payload
from inventory_audit.audit.risk import RISK_RULES, RowChange, classify_risk

__all__ = [
    "AuditContext",
    "Principal",
    "actor_or_sentinel",
    "AuditPayload",
    "build_payload",
    "RISK_RULES",
    "RowChange",
    "classify_risk",
]
