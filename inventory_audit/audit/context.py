"""Audit context: who is acting, from where, in which session.

An `AuditContext` is built once per request from the already-resolved
principal and the transport metadata, then travels with the database
handle: as four PostgreSQL session variables for the trigger engine, and
as `session.info["audit_context"]` for the ORM interceptor.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any

from starlette.requests import Request

from inventory_audit.config import settings

logger = logging.getLogger(__name__)

# Session variable names read by audit_trigger_function()
USER_ID_VAR = "app.current_user_id"
CLIENT_IP_VAR = "app.client_ip"
USER_AGENT_VAR = "app.user_agent"
SESSION_ID_VAR = "app.session_id"

SESSION_VARIABLES: tuple[str, ...] = (USER_ID_VAR, CLIENT_IP_VAR, USER_AGENT_VAR, SESSION_ID_VAR)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as resolved by the upstream auth layer."""

    id: str
    session_id: str | None = None


@dataclass(frozen=True)
class AuditContext:
    """Typed optional context for one request.

    Every field may be absent. `user_id` absence is resolved explicitly
    through `actor_or_sentinel()`, never by silent coalescing.
    """

    user_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None

    @property
    def has_principal(self) -> bool:
        return self.user_id is not None

    def with_user(self, user_id: uuid.UUID) -> AuditContext:
        return replace(self, user_id=user_id)

    def session_settings(self) -> dict[str, str]:
        """Values for the four session variables; '' marks an absent value."""
        return {
            USER_ID_VAR: str(self.user_id) if self.user_id is not None else "",
            CLIENT_IP_VAR: self.ip_address or "",
            USER_AGENT_VAR: self.user_agent or "",
            SESSION_ID_VAR: self.session_id or "",
        }


def parse_user_id(value: Any) -> uuid.UUID | None:
    """Best-effort UUID parse; anything unparsable counts as absent."""
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def actor_or_sentinel(
    context: AuditContext | None,
    *,
    table: str,
    operation: str,
    sentinel: uuid.UUID | None = None,
) -> uuid.UUID:
    """Return the acting user id, substituting the sentinel when absent.

    Substitution is logged at WARNING with the table and operation so the
    gap in attribution is visible without reproducing the request.
    """
    if context is not None and context.user_id is not None:
        return context.user_id

    fallback = sentinel or settings.audit.sentinel_user_id
    logger.warning(
        "Audit logging: missing user context for %s operation on %s, using system fallback",
        operation,
        table,
        extra={"table": table, "operation": operation, "fallback_user_id": str(fallback)},
    )
    return fallback


# ── Transport metadata ───────────────────────────────────────────────


def _first_hop(header_value: str | None) -> str | None:
    """First address of a comma-separated forwarded chain."""
    if not header_value:
        return None
    first = header_value.split(",")[0].strip()
    return first or None


def client_ip(request: Request, trust_proxy: bool | None = None) -> str | None:
    """Single best-effort client address.

    Forwarded headers are honoured only when the deployment sits behind a
    trusted proxy; otherwise a client could spoof its own audit address.
    """
    if trust_proxy is None:
        trust_proxy = settings.audit.trust_proxy

    if trust_proxy:
        forwarded = _first_hop(request.headers.get("x-forwarded-for"))
        if forwarded:
            return forwarded
        real_ip = _first_hop(request.headers.get("x-real-ip"))
        if real_ip:
            return real_ip

    if request.client is not None and request.client.host:
        return request.client.host
    return None


def session_id_for(request: Request, principal: Principal | None) -> str | None:
    """Session id from the principal's token, then the X-Session-ID header."""
    if principal is not None and principal.session_id:
        return principal.session_id
    return request.headers.get("x-session-id") or None


def context_from_request(
    request: Request,
    principal: Principal | None,
    trust_proxy: bool | None = None,
) -> AuditContext:
    """Build the audit context for an incoming request."""
    return AuditContext(
        user_id=parse_user_id(principal.id) if principal is not None else None,
        ip_address=client_ip(request, trust_proxy=trust_proxy),
        user_agent=request.headers.get("user-agent") or None,
        session_id=session_id_for(request, principal),
    )
