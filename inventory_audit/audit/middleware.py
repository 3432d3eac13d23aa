"""Request lifecycle binder for the audit context.

`AuditContextMiddleware` gives every HTTP request its own database
connection carrying the caller's audit context, and releases it exactly
once: when the application has finished with the request (after
dependency cleanup, so pending commits land first), or earlier if the
client disconnects before the response is complete.

Handlers reach that connection through `AuditSession`, which commits
before the response is sent so a client never sees success for a write
that did not persist.

Usage:
    app.add_middleware(AuditContextMiddleware)

    @router.put("/plcs/{plc_id}")
    async def update_plc(..., db: AuditSession):
        ...
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator, Callable
from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from inventory_audit.audit.context import AuditContext, Principal, context_from_request
from inventory_audit.audit.interceptor import CONTEXT_KEY
from inventory_audit.audit.session_context import bind_actor, open_audit_connection
from inventory_audit.config import settings
from inventory_audit.db import engine as db_engine

logger = logging.getLogger(__name__)

STATE_KEY = "audit"


def _now_ms() -> float:
    return time.perf_counter() * 1000.0


class RequestAuditBinding:
    """The audit connection held by one request, released at most once."""

    def __init__(
        self,
        connection: AsyncConnection | None,
        context: AuditContext,
        *,
        started_ms: float,
        path: str,
        method: str,
        budget_ms: float,
    ) -> None:
        self.connection = connection
        self.context = context
        self.started_ms = started_ms
        self.path = path
        self.method = method
        self.budget_ms = budget_ms
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Roll back anything left open, return the connection, check the budget.

        Safe to call from both the finish and the close path; only the
        first call does anything. Release failures are logged, never raised,
        since the response has usually been sent already.
        """
        if self._released:
            return
        self._released = True

        duration_ms = _now_ms() - self.started_ms
        conn, self.connection = self.connection, None
        if conn is not None:
            try:
                if conn.in_transaction():
                    await conn.rollback()
                await conn.close()
            except Exception:
                logger.exception(
                    "Error releasing audit connection for %s %s",
                    self.method,
                    self.path,
                    extra={"path": self.path, "method": self.method},
                )

        if duration_ms > self.budget_ms:
            logger.warning(
                "Audit middleware exceeded %gms threshold: duration=%d path=%s method=%s",
                self.budget_ms,
                round(duration_ms),
                self.path,
                self.method,
                extra={"duration_ms": round(duration_ms), "path": self.path, "method": self.method},
            )


def _principal_from_state(scope: Scope) -> Principal | None:
    """Principal stored by the upstream auth layer on `request.state.principal`."""
    principal = scope.get("state", {}).get("principal")
    return principal if isinstance(principal, Principal) else None


class AuditContextMiddleware:
    """Pure ASGI middleware binding an audit connection to each HTTP request."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        engine: AsyncEngine | None = None,
        budget_ms: float | None = None,
        trust_proxy: bool | None = None,
        principal_resolver: Callable[[Scope], Principal | None] = _principal_from_state,
    ) -> None:
        self.app = app
        self._engine = engine
        self.budget_ms = settings.audit.context_budget_ms if budget_ms is None else budget_ms
        self.trust_proxy = trust_proxy
        self.principal_resolver = principal_resolver

    @property
    def engine(self) -> AsyncEngine:
        return self._engine or db_engine.engine

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started_ms = _now_ms()
        request = Request(scope)
        method, path = request.method, request.url.path
        operation = f"{method} {path}"

        context = bind_actor(
            context_from_request(request, self.principal_resolver(scope), trust_proxy=self.trust_proxy),
            operation=operation,
        )
        connection = await open_audit_connection(self.engine, context, operation=operation)

        binding = RequestAuditBinding(
            connection,
            context,
            started_ms=started_ms,
            path=path,
            method=method,
            budget_ms=self.budget_ms,
        )
        scope.setdefault("state", {})[STATE_KEY] = binding
        response_complete = False

        async def send_tracking_completion(message: Message) -> None:
            nonlocal response_complete
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                response_complete = True
            await send(message)

        async def receive_and_release_on_abort() -> Message:
            message = await receive()
            # A disconnect after the response went out is normal teardown; the
            # application may still be committing, so only an abort releases early.
            if message["type"] == "http.disconnect" and not response_complete and not binding.released:
                logger.info(
                    "Client disconnected before response for %s, releasing audit connection",
                    operation,
                    extra={"path": path, "method": method},
                )
                await binding.release()
            return message

        try:
            await self.app(scope, receive_and_release_on_abort, send_tracking_completion)
        finally:
            await binding.release()


def audit_binding(request: Request) -> RequestAuditBinding | None:
    return getattr(request.state, STATE_KEY, None)


async def get_audit_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI: an AsyncSession on the request's audit connection.

    Falls back to a plain pooled session when the middleware could not
    attach context (degrade-open). Commits on success, rolls back on error.
    Declare it through `AuditSession` so the commit happens before the
    response is sent.
    """
    binding = audit_binding(request)
    options: dict[str, Any] = {
        "expire_on_commit": False,
        "sync_session_class": db_engine.session_class(),
    }

    if binding is not None and binding.connection is not None:
        session = AsyncSession(bind=binding.connection, **options)
    else:
        session = db_engine.async_session_factory()

    async with session:
        if binding is not None:
            session.info[CONTEXT_KEY] = binding.context
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Function scope ends the dependency (and its commit) before the response goes out.
AuditSession = Annotated[AsyncSession, Depends(get_audit_session, scope="function")]
