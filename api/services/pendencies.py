# SPDX-License-Identifier: Apache-2.0

"""
Pendency tracker service.

Opens, resolves and cancels blocking issues raised against requests. Every
write is a compare-and-set on the pendency version, retried on conflict, and
also bumps the version of the owning request so status changes that read the
pendency gate before the write fail their own compare-and-set.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.entities import Pendencia, Solicitacao
from domain.errors import ConcurrentModification, InvalidTransition, WorkflowError
from domain.pendencies import (
    blocking_pendencies, cancel_pendency, is_overdue, new_pendency,
    resolve_pendency, start_resolution
)
from domain.retry import retry_on_conflict
from domain.workflow import is_terminal, touch_request
from .amqp import Notifier, PENDENCY_OPENED, PENDENCY_RESOLVED
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PendencyChange = Callable[[Pendencia], Tuple[Pendencia, bool]]


class PendencyTracker:
    """Blocking issues against requests."""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Notifier,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = 3,
        base_delay: float = 0.05
    ):
        self.repository = repository
        self.notifier = notifier
        self.clock = clock
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def open(
        self,
        request_id: str,
        description: str,
        raised_by: str,
        deadline: Optional[datetime] = None
    ) -> Pendencia:
        """
        Open a pendency against a request.

        Raises:
            NotFound: if the request does not exist
            InvalidTransition: if the request is terminal
            ValidationFailed: empty description or deadline not in the future
        """
        def attempt() -> Pendencia:
            request = self.repository.load_request(request_id)
            if is_terminal(request.status):
                raise InvalidTransition(
                    f"Cannot open a pendency on {request.status} request {request_id}",
                    {"solicitacao_id": request_id, "status": request.status}
                )

            pendency = new_pendency(request_id, description, raised_by, deadline, self.clock())
            created = self.repository.create_pendency(pendency)
            try:
                self.repository.save_request(touch_request(request, raised_by, self.clock()), request.version)
            except ConcurrentModification:
                # The request changed after it was read; retry against its new state
                self.repository.delete_pendency(created.id)
                raise
            return created

        with tracer.start_as_current_span("pendency.open") as span:
            span.set_attributes({"solicitacao.id": request_id, "pendencia.raised_by": raised_by})
            try:
                created = retry_on_conflict(attempt, self.max_attempts, self.base_delay)
            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                raise

            span.set_attribute("pendencia.id", created.id)
            logger.info(
                f"Pendency {created.id} opened on request {request_id}",
                extra={"extra_fields": {
                    "pendencia_id": created.id,
                    "solicitacao_id": request_id,
                    "prazo_resolucao": deadline.isoformat() if deadline else None
                }}
            )
            self.notifier.notify(PENDENCY_OPENED, {
                "pendencia_id": created.id,
                "solicitacao_id": request_id,
                "descricao": created.descricao,
                "registrado_por_id": raised_by,
                "prazo_resolucao": created.prazo_resolucao
            })
            return created

    def _touch_request(self, request_id: str, user_id: str) -> Solicitacao:
        def attempt() -> Solicitacao:
            current = self.repository.load_request(request_id)
            return self.repository.save_request(touch_request(current, user_id, self.clock()), current.version)

        return retry_on_conflict(attempt, self.max_attempts, self.base_delay)

    def _change(
        self,
        pendency_id: str,
        user_id: str,
        span_name: str,
        change: PendencyChange
    ) -> Tuple[Pendencia, bool]:
        def attempt() -> Tuple[Pendencia, bool]:
            current = self.repository.load_pendency(pendency_id)
            updated, changed = change(current)
            if not changed:
                return current, False
            return self.repository.save_pendency(updated, current.version), True

        with tracer.start_as_current_span(span_name) as span:
            span.set_attribute("pendencia.id", pendency_id)
            try:
                pendency, changed = retry_on_conflict(attempt, self.max_attempts, self.base_delay)
                if changed:
                    self._touch_request(pendency.solicitacao_id, user_id)
            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                raise
            span.set_attribute("pendencia.changed", changed)
            return pendency, changed

    def resolve(self, pendency_id: str, resolved_by: str, note: Optional[str] = None) -> Tuple[Pendencia, bool]:
        """
        Resolve a pendency; resolving twice is a no-op.

        Returns:
            Tuple of (pendency, changed). Only a change is notified.
        """
        pendency, changed = self._change(
            pendency_id, resolved_by, "pendency.resolve",
            lambda p: resolve_pendency(p, resolved_by, note, self.clock())
        )
        if changed:
            logger.info(
                f"Pendency {pendency_id} resolved",
                extra={"extra_fields": {
                    "pendencia_id": pendency_id,
                    "solicitacao_id": pendency.solicitacao_id,
                    "resolvido_por_id": resolved_by
                }}
            )
            self.notifier.notify(PENDENCY_RESOLVED, {
                "pendencia_id": pendency.id,
                "solicitacao_id": pendency.solicitacao_id,
                "resolvido_por_id": resolved_by,
                "observacao_resolucao": note
            })
        return pendency, changed

    def start_resolution(self, pendency_id: str, user_id: str) -> Tuple[Pendencia, bool]:
        """Mark an open pendency as being worked on."""
        return self._change(
            pendency_id, user_id, "pendency.start_resolution",
            lambda p: start_resolution(p, user_id, self.clock())
        )

    def cancel(self, pendency_id: str, user_id: str, note: Optional[str] = None) -> Tuple[Pendencia, bool]:
        """Cancel an unresolved pendency; cancelling twice is a no-op."""
        pendency, changed = self._change(
            pendency_id, user_id, "pendency.cancel",
            lambda p: cancel_pendency(p, user_id, note, self.clock())
        )
        if changed:
            logger.info(
                f"Pendency {pendency_id} cancelled",
                extra={"extra_fields": {"pendencia_id": pendency_id, "usuario_id": user_id}}
            )
        return pendency, changed

    def list_open(self, request_id: str) -> List[Pendencia]:
        """Blocking pendencies of a request."""
        return blocking_pendencies(self.repository.list_pendencies(request_id))

    def has_blocking(self, request_id: str) -> bool:
        return bool(self.list_open(request_id))

    def overdue(self, now: Optional[datetime] = None) -> List[Pendencia]:
        """Blocking pendencies past their deadline, across all requests."""
        now = now or self.clock()
        return [p for p in self.repository.list_pendencies() if is_overdue(p, now)]
