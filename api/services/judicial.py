# SPDX-License-Identifier: Apache-2.0

"""
Judicial override handler service.

Registers court determinations and forces the request status they demand,
walking the allow-listed graph one history row at a time while bypassing
the eligibility, pendency and approval gates.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.enums import HistoryReason, RequestStatus
from models.entities import DeterminacaoJudicial, Solicitacao
from domain.catalog import coerce_directive, coerce_status
from domain.errors import InvalidTransition, WorkflowError
from domain.judicial import is_in_force, override_path, target_for_directive
from domain.retry import retry_on_conflict
from domain.workflow import is_terminal
from .amqp import Notifier, DETERMINATION_APPLIED
from .approvals import ApprovalCoordinator
from .repository import WorkflowRepository
from .state_machine import RequestStateMachine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class JudicialOverrideHandler:
    """Court determinations forcing request statuses."""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Notifier,
        state_machine: RequestStateMachine,
        approvals: ApprovalCoordinator,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = 3,
        base_delay: float = 0.05
    ):
        self.repository = repository
        self.notifier = notifier
        self.state_machine = state_machine
        self.approvals = approvals
        self.clock = clock
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def register(
        self,
        request_id: str,
        directive,
        case_number: str,
        user_id: str,
        court: Optional[str] = None,
        note: Optional[str] = None,
        active: bool = True
    ) -> DeterminacaoJudicial:
        """Store a court determination for a request."""
        request = self.repository.load_request(request_id)
        determination = DeterminacaoJudicial(
            solicitacao_id=request.id,
            tipo=coerce_directive(directive),
            numero_processo=case_number,
            orgao_judicial=court,
            ativa=active,
            observacao=note,
            data_determinacao=self.clock(),
            created_by=user_id,
            updated_by=user_id
        )
        return self.repository.save_determination(determination)

    def _link(self, request_id: str, determination: DeterminacaoJudicial, user_id: str) -> Solicitacao:
        def attempt() -> Solicitacao:
            current = self.repository.load_request(request_id)
            if current.determinacao_judicial_flag and current.determinacao_judicial_id == determination.id:
                return current
            updated = current.model_copy(update={
                "determinacao_judicial_flag": True,
                "determinacao_judicial_id": determination.id,
                "updated_at": self.clock(),
                "updated_by": user_id
            })
            return self.repository.save_request(updated, current.version)

        return retry_on_conflict(attempt, self.max_attempts, self.base_delay)

    def _step(
        self,
        request_id: str,
        determination: DeterminacaoJudicial,
        target: RequestStatus,
        user_id: str,
        observation: str
    ) -> Solicitacao:
        """Take the next step towards the target from the current stored state."""
        def attempt() -> Solicitacao:
            current = self.repository.load_request(request_id)
            path = override_path(current, determination)
            if not path or coerce_status(current.status) == target:
                return current
            return self.state_machine.force_step(current, path[0], user_id, observation)

        return retry_on_conflict(attempt, self.max_attempts, self.base_delay)

    def apply(self, request_id: str, determination_id: str, user_id: str) -> RequestStatus:
        """
        Apply a court determination to its request.

        Returns:
            The request status after the override

        Raises:
            InvalidTransition: if the request is terminal or the target is unreachable
        """
        with tracer.start_as_current_span("judicial.apply") as span:
            span.set_attributes({
                "solicitacao.id": request_id,
                "determinacao.id": determination_id,
                "workflow.user_id": user_id
            })
            try:
                determination = self.repository.load_determination(determination_id)
                request = self.repository.load_request(request_id)
                span.set_attribute("determinacao.tipo", determination.tipo)

                if not is_in_force(determination, request):
                    logger.info(
                        f"Determination {determination_id} is not in force for request {request_id}",
                        extra={"extra_fields": {
                            "determinacao_id": determination_id,
                            "solicitacao_id": request_id,
                            "ativa": determination.ativa
                        }}
                    )
                    return coerce_status(request.status)

                if is_terminal(request.status):
                    raise InvalidTransition(
                        f"Request {request.id} is {request.status} and cannot be overridden",
                        {"solicitacao_id": request.id, "status_atual": request.status}
                    )

                target = target_for_directive(determination.tipo)
                # Unreachable targets and refused entry checks fail before anything is written
                for step in override_path(request, determination):
                    self.state_machine.check_entry(request, step, user_id)

                request = self._link(request_id, determination, user_id)
                observation = (
                    f"Determinação judicial {determination.tipo} "
                    f"(processo {determination.numero_processo})"
                )

                if target is None or coerce_status(request.status) == target:
                    self.state_machine.record_history(
                        request.id, request.status, request.status, user_id,
                        observation=observation, reason=HistoryReason.DETERMINACAO_JUDICIAL
                    )
                else:
                    self.approvals.dispense_for_request(request.id, user_id)
                    while coerce_status(request.status) != target:
                        request = self._step(request.id, determination, target, user_id, observation)

            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                logger.error(
                    f"Court determination {determination_id} could not be applied: {e.message}",
                    extra={"extra_fields": {"solicitacao_id": request_id, **e.to_dict()}}
                )
                raise

            final_status = coerce_status(request.status)
            span.set_attribute("workflow.final_status", final_status.value)
            logger.info(
                f"Court determination {determination_id} applied to request {request_id}",
                extra={"extra_fields": {
                    "determinacao_id": determination_id,
                    "solicitacao_id": request_id,
                    "tipo": determination.tipo,
                    "status_final": final_status.value
                }}
            )
            self.notifier.notify(DETERMINATION_APPLIED, {
                "determinacao_id": determination.id,
                "solicitacao_id": request_id,
                "tipo": determination.tipo,
                "numero_processo": determination.numero_processo,
                "status_final": final_status.value
            })
            return final_status
