# SPDX-License-Identifier: Apache-2.0

"""
Renewal scheduler service.

When a request with automatic renewal concludes, the scheduler either spawns
its successor draft or, once the renewal limit is reached, disables the flag.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.enums import HistoryReason, RequestStatus
from models.entities import Solicitacao
from domain.catalog import BenefitCatalog, coerce_status
from domain.errors import DuplicateRecord, WorkflowError
from domain.renewal import (
    build_renewal_request, copy_benefit_data, next_renewal_date, renewal_limit_reached
)
from domain.retry import retry_on_conflict
from .amqp import Notifier, RENEWAL_CLOSED, RENEWAL_CREATED
from .repository import WorkflowRepository
from .state_machine import RequestStateMachine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_USER = "sistema"


@dataclass
class RenewalBatchResult:
    """Outcome of a renewal reprocessing batch."""
    created: List[str] = field(default_factory=list)
    closed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class RenewalScheduler:
    """Successor requests for automatic renewals."""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Notifier,
        catalog: BenefitCatalog,
        state_machine: RequestStateMachine,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = 3,
        base_delay: float = 0.05
    ):
        self.repository = repository
        self.notifier = notifier
        self.catalog = catalog
        self.state_machine = state_machine
        self.clock = clock
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def on_concluded(self, request: Solicitacao, user_id: str) -> None:
        """State machine hook for requests entering concluida."""
        self.evaluate(request.id, user_id)

    def _update_parent(self, request_id: str, changes: Dict) -> Solicitacao:
        def attempt() -> Solicitacao:
            current = self.repository.load_request(request_id)
            updated = current.model_copy(update={**changes, "updated_at": self.clock()})
            return self.repository.save_request(updated, current.version)

        return retry_on_conflict(attempt, self.max_attempts, self.base_delay)

    def _close(self, request: Solicitacao, user_id: str) -> None:
        self._update_parent(request.id, {"renovacao_automatica": False, "updated_by": user_id})
        self.state_machine.record_history(
            request.id, request.status, request.status, user_id,
            observation=f"Limite de {request.contador_renovacoes} renovações atingido",
            reason=HistoryReason.RENOVACAO_ENCERRADA
        )
        logger.info(
            f"Automatic renewal of request {request.id} closed",
            extra={"extra_fields": {
                "solicitacao_id": request.id,
                "contador_renovacoes": request.contador_renovacoes
            }}
        )
        self.notifier.notify(RENEWAL_CLOSED, {
            "solicitacao_id": request.id,
            "contador_renovacoes": request.contador_renovacoes
        })

    def evaluate(self, request_id: str, user_id: str = SYSTEM_USER) -> Optional[Solicitacao]:
        """
        Spawn the renewal of a concluded request.

        Returns:
            The renewal request (existing or new), or None when the request
            does not renew
        """
        with tracer.start_as_current_span("renewal.evaluate") as span:
            span.set_attribute("solicitacao.id", request_id)
            try:
                request = self.repository.load_request(request_id)
                if not request.renovacao_automatica or coerce_status(request.status) != RequestStatus.CONCLUIDA:
                    return None

                existing = self.repository.find_renewals(request.id)
                if existing:
                    return existing[0]

                config = self.catalog.get(request.tipo_beneficio)
                if renewal_limit_reached(request, config):
                    self._close(request, user_id)
                    span.set_attribute("renewal.closed", True)
                    return None

                renewal = build_renewal_request(request, user_id, self.clock())
                data = copy_benefit_data(self.repository.load_benefit_data(request.id), renewal, user_id)
                try:
                    created = self.state_machine.create(renewal, data, user_id)
                except DuplicateRecord:
                    existing = self.repository.find_renewals(request.id)
                    if not existing:
                        raise
                    return existing[0]

                payment = self.repository.find_payment(request.id)
                due = next_renewal_date(
                    request.data_conclusao or self.clock(), config,
                    len(payment.parcelas) if payment else None
                )
                self._update_parent(request.id, {"data_proxima_renovacao": due, "updated_by": user_id})

            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                raise

            span.set_attribute("renewal.id", created.id)
            logger.info(
                f"Renewal {created.protocolo} created from request {request.protocolo}",
                extra={"extra_fields": {
                    "solicitacao_id": request.id,
                    "renovacao_id": created.id,
                    "contador_renovacoes": created.contador_renovacoes,
                    "data_proxima_renovacao": due.isoformat()
                }}
            )
            self.notifier.notify(RENEWAL_CREATED, {
                "solicitacao_id": request.id,
                "renovacao_id": created.id,
                "protocolo": created.protocolo,
                "contador_renovacoes": created.contador_renovacoes,
                "data_proxima_renovacao": due
            })
            return created

    def process_pending(self, user_id: str = SYSTEM_USER) -> RenewalBatchResult:
        """
        Reprocess concluded renewable requests that have no renewal yet.

        A failing request is logged and reported in the result; the batch
        moves on to the next one.
        """
        result = RenewalBatchResult()
        candidates = self.repository.find_requests(
            status=RequestStatus.CONCLUIDA, renovacao_automatica=True
        )

        with tracer.start_as_current_span("renewal.process_pending") as span:
            span.set_attribute("renewal.candidates", len(candidates))
            for request in candidates:
                if self.repository.find_renewals(request.id):
                    continue
                try:
                    renewal = self.evaluate(request.id, user_id)
                except WorkflowError as e:
                    logger.error(
                        f"Renewal of request {request.id} failed: {e.message}",
                        extra={"extra_fields": {"solicitacao_id": request.id, **e.to_dict()}},
                        exc_info=True
                    )
                    result.failed[request.id] = e.code
                    continue

                if renewal is not None:
                    result.created.append(renewal.id)
                else:
                    result.closed.append(request.id)

            span.set_attributes({
                "renewal.created": len(result.created),
                "renewal.closed": len(result.closed),
                "renewal.failed": len(result.failed)
            })
        return result
