# SPDX-License-Identifier: Apache-2.0

"""
Payment scheduler service.

Creates the payment schedule of a request once it is released and records
installment payments and cancellations.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from opentelemetry import trace

from models.entities import Pagamento, Solicitacao, RELEASED_STAGE
from domain.catalog import BenefitCatalog
from domain.errors import DuplicateRecord, InvalidTransition
from domain.payments import build_payment, cancel_installment, mark_installment_paid
from .amqp import Notifier, PAYMENT_CREATED
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class PaymentService:
    """Payments of released requests."""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Notifier,
        catalog: BenefitCatalog,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.repository = repository
        self.notifier = notifier
        self.catalog = catalog
        self.clock = clock

    def check_release(self, request: Solicitacao, user_id: str) -> None:
        """
        State machine entry check for liberada: the schedule must be buildable.

        Raises:
            ValidationFailed: if the benefit value cannot be determined
        """
        if self.repository.find_payment(request.id) is not None:
            return
        data = self.repository.load_benefit_data(request.id)
        build_payment(request, data.dados if data else None, self.catalog, user_id, self.clock().date())

    def on_released(self, request: Solicitacao, user_id: str) -> None:
        """State machine hook for requests entering liberada."""
        self.create_for_request(request.id, user_id)

    def create_for_request(self, request_id: str, user_id: str) -> Pagamento:
        """
        Create the payment of a released request; creating twice returns the existing one.

        Raises:
            InvalidTransition: if the request was never released
            ValidationFailed: if the benefit value cannot be determined
        """
        with tracer.start_as_current_span("payment.create") as span:
            span.set_attribute("solicitacao.id", request_id)

            existing = self.repository.find_payment(request_id)
            if existing is not None:
                return existing

            request = self.repository.load_request(request_id)
            if request.status not in RELEASED_STAGE:
                raise InvalidTransition(
                    f"Request {request_id} is {request.status}, payments start at liberada",
                    {"solicitacao_id": request_id, "status": request.status}
                )

            data = self.repository.load_benefit_data(request_id)
            payment = build_payment(request, data.dados if data else None, self.catalog, user_id)

            try:
                created = self.repository.create_payment(payment)
            except DuplicateRecord:
                logger.info(
                    f"Payment of request {request_id} created concurrently",
                    extra={"extra_fields": {"solicitacao_id": request_id}}
                )
                return self.repository.find_payment(request_id)

            span.set_attributes({
                "pagamento.id": created.id,
                "pagamento.parcelas": len(created.parcelas),
                "pagamento.valor_total": created.valor_total
            })
            logger.info(
                f"Payment {created.id} created for request {request_id}",
                extra={"extra_fields": {
                    "pagamento_id": created.id,
                    "solicitacao_id": request_id,
                    "periodicidade": created.periodicidade,
                    "parcelas": len(created.parcelas),
                    "valor_total": created.valor_total
                }}
            )
            self.notifier.notify(PAYMENT_CREATED, {
                "pagamento_id": created.id,
                "solicitacao_id": request_id,
                "tipo_beneficio": created.tipo_beneficio,
                "periodicidade": created.periodicidade,
                "valor_total": created.valor_total,
                "parcelas": len(created.parcelas)
            })
            return created

    def mark_paid(
        self,
        payment_id: str,
        number: int,
        user_id: str,
        paid_at: Optional[datetime] = None
    ) -> Pagamento:
        """Mark one installment as paid."""
        payment = self.repository.load_payment(payment_id)
        updated = mark_installment_paid(payment, number, user_id, paid_at or self.clock())
        logger.info(
            f"Installment {number} of payment {payment_id} paid",
            extra={"extra_fields": {"pagamento_id": payment_id, "parcela": number, "usuario_id": user_id}}
        )
        return self.repository.save_payment(updated)

    def cancel_installment(self, payment_id: str, number: int, user_id: str) -> Pagamento:
        """Cancel one installment."""
        payment = self.repository.load_payment(payment_id)
        updated = cancel_installment(payment, number, user_id)
        logger.info(
            f"Installment {number} of payment {payment_id} cancelled",
            extra={"extra_fields": {"pagamento_id": payment_id, "parcela": number, "usuario_id": user_id}}
        )
        return self.repository.save_payment(updated)
