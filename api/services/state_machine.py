# SPDX-License-Identifier: Apache-2.0

"""
Request state machine service.

Owns the canonical status of every request: runs the progression gates,
persists status changes with compare-and-set, appends exactly one history row
per change and notifies subscribers.
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Mapping, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.enums import RequestStatus, HistoryReason
from models.entities import AcaoAprovacao, DadosBeneficio, HistoricoStatus, Solicitacao
from domain.approvals import requires_approval
from domain.catalog import BenefitCatalog, coerce_benefit_type, coerce_status
from domain.errors import (
    ConcurrentModification, InvalidTransition, SchemaViolation, SideEffectFailed, WorkflowError
)
from domain.judicial import bypasses_approval, is_in_force
from domain.workflow import (
    apply_status_change, build_history_entry, check_approval_gate,
    check_eligibility_gate, check_pendency_gate, validate_status_transition
)
from observability.config import current_trace_ids
from .amqp import Notifier, REQUEST_CREATED, STATUS_CHANGED
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

StatusHook = Callable[[Solicitacao, str], None]


class RequestStateMachine:
    """Status transitions of benefit requests."""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Notifier,
        catalog: BenefitCatalog,
        approval_actions: Optional[Mapping[str, AcaoAprovacao]] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.repository = repository
        self.notifier = notifier
        self.catalog = catalog
        self.approval_actions = dict(approval_actions or {})
        self.clock = clock
        self._hooks: Dict[RequestStatus, List[StatusHook]] = {}
        self._entry_checks: Dict[RequestStatus, List[StatusHook]] = {}

    def on_enter(self, status, hook: StatusHook) -> None:
        """Register a hook run after a request enters a status."""
        self._hooks.setdefault(coerce_status(status), []).append(hook)

    def before_enter(self, status, check: StatusHook) -> None:
        """Register a check that must pass before a request enters a status, court overrides included."""
        self._entry_checks.setdefault(coerce_status(status), []).append(check)

    def check_entry(self, request: Solicitacao, target, user_id: str) -> None:
        """Run the entry checks of a status; they raise to refuse the change."""
        for check in self._entry_checks.get(coerce_status(target), []):
            check(request, user_id)

    def _today(self) -> date:
        return self.clock().date()

    def record_history(
        self,
        request_id: str,
        previous_status,
        new_status,
        user_id: str,
        observation: Optional[str] = None,
        reason: HistoryReason = HistoryReason.TRANSICAO
    ) -> HistoricoStatus:
        """Append a history row correlated with the active span."""
        trace_id, span_id = current_trace_ids()
        entry = build_history_entry(
            request_id, previous_status, new_status, user_id,
            observation=observation, reason=reason,
            trace_id=trace_id, span_id=span_id, now=self.clock()
        )
        self.repository.append_history(entry)
        return entry

    def _notify_status(self, previous: Optional[str], request: Solicitacao, user_id: str, reason: HistoryReason):
        result = self.notifier.notify(STATUS_CHANGED, {
            "solicitacao_id": request.id,
            "protocolo": request.protocolo,
            "status_anterior": previous,
            "status_novo": request.status,
            "usuario_id": user_id,
            "motivo": reason.value,
            "version": request.version
        })
        if not result.success:
            logger.warning(
                "Status change notification failed",
                extra={"extra_fields": {"solicitacao_id": request.id, "error": result.error}}
            )

    def create(
        self,
        request: Solicitacao,
        benefit_data: Optional[DadosBeneficio],
        user_id: str
    ) -> Solicitacao:
        """
        Persist a new request, its type-specific data and its creation history row.

        Raises:
            SchemaViolation: if the data discriminator differs from the benefit type
            DuplicateRecord: if the protocol already exists
        """
        with tracer.start_as_current_span("workflow.create_request") as span:
            span.set_attributes({
                "solicitacao.id": request.id,
                "solicitacao.protocolo": request.protocolo,
                "solicitacao.tipo_beneficio": request.tipo_beneficio,
                "solicitacao.status": request.status
            })

            if benefit_data is not None and (
                coerce_benefit_type(benefit_data.tipo) != coerce_benefit_type(request.tipo_beneficio)
            ):
                error = SchemaViolation(
                    "Benefit data discriminator does not match the request benefit type",
                    {"tipo_dados": str(benefit_data.tipo), "tipo_beneficio": str(request.tipo_beneficio)}
                )
                span.record_exception(error)
                span.set_status(Status(StatusCode.ERROR, error.message))
                raise error

            created = self.repository.create_request(request)
            if benefit_data is not None:
                self.repository.save_benefit_data(benefit_data)

            self.record_history(
                created.id, None, created.status, user_id,
                observation=created.observacoes if created.solicitacao_original_id else None,
                reason=HistoryReason.CRIACAO
            )

            logger.info(
                f"Request {created.protocolo} created",
                extra={"extra_fields": {
                    "solicitacao_id": created.id,
                    "tipo_beneficio": created.tipo_beneficio,
                    "usuario_id": user_id
                }}
            )
            self.notifier.notify(REQUEST_CREATED, {
                "solicitacao_id": created.id,
                "protocolo": created.protocolo,
                "tipo_beneficio": created.tipo_beneficio,
                "status": created.status,
                "solicitacao_original_id": created.solicitacao_original_id
            })
            return created

    def approval_required(self, request: Solicitacao) -> bool:
        """Check whether the catalog gates this request behind an approval action."""
        code = self.catalog.get(request.tipo_beneficio).acao_aprovacao
        if not code:
            return False
        action = self.approval_actions.get(code)
        if action is None:
            return True
        return requires_approval(action, request.valor)

    def check_gates(self, request: Solicitacao, target) -> None:
        """
        Run every progression gate for a status change.

        Raises:
            ValidationFailed, SchemaViolation: eligibility gate when leaving the draft
            Blocked: blocking pendencies while leaving analysis
            ApprovalIncomplete: approvals not approved when entering aprovada
            InvalidTransition: an active non-concession court order forbids approval
        """
        target_status = coerce_status(target)

        check_eligibility_gate(
            request, target_status,
            self.repository.load_benefit_data(request.id),
            self.catalog, self._today()
        )
        check_pendency_gate(request, target_status, self.repository.list_pendencies(request.id))

        if target_status != RequestStatus.APROVADA:
            return

        determinations = self.repository.list_determinations(request.id)
        if any(bypasses_approval(d, request) for d in determinations):
            logger.info(
                f"Approval gate bypassed by court concession on request {request.id}",
                extra={"extra_fields": {"solicitacao_id": request.id}}
            )
            return
        in_force = [d for d in determinations if is_in_force(d, request)]
        if in_force:
            raise InvalidTransition(
                f"Request {request.id} has an active court determination that forbids approval",
                {
                    "solicitacao_id": request.id,
                    "determinacoes": {d.id: d.tipo for d in in_force}
                }
            )

        check_approval_gate(
            request, target_status,
            self.repository.list_approvals(request.id),
            self.approval_required(request)
        )

    def _commit(
        self,
        request: Solicitacao,
        target: RequestStatus,
        user_id: str,
        observation: Optional[str],
        reason: HistoryReason
    ) -> Solicitacao:
        previous = request.status
        self.check_entry(request, target, user_id)
        updated = apply_status_change(request, target, user_id, self.clock())
        saved = self.repository.save_request(updated, request.version)
        self.record_history(saved.id, previous, target, user_id, observation, reason)

        logger.info(
            f"Request {saved.id} moved from {previous} to {target.value}",
            extra={"extra_fields": {
                "solicitacao_id": saved.id,
                "status_anterior": previous,
                "status_novo": target.value,
                "usuario_id": user_id,
                "motivo": reason.value,
                "version": saved.version
            }}
        )
        self._notify_status(previous, saved, user_id, reason)

        for hook in self._hooks.get(target, []):
            try:
                hook(saved, user_id)
            except WorkflowError as e:
                logger.error(
                    f"Follow-up of request {saved.id} entering {target.value} failed: {e.message}",
                    extra={"extra_fields": {"solicitacao_id": saved.id, "status": target.value, **e.to_dict()}}
                )
                # Not a ConcurrentModification: the status change must not be retried
                raise SideEffectFailed(
                    f"Request {saved.id} entered {target.value} but a follow-up failed: {e.message}",
                    {
                        "solicitacao_id": saved.id,
                        "status": target.value,
                        "version": saved.version,
                        "causa": e.to_dict()
                    }
                ) from e
        return saved

    def transition(
        self,
        request_id: str,
        target,
        user_id: str,
        observation: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Solicitacao:
        """
        Move a request to a new status through every gate.

        Args:
            request_id: Request ID
            target: Target status (enum member or persisted string)
            user_id: Acting user ID
            observation: Free-text note stored on the history row
            expected_version: Version the caller last read, if it holds one

        Returns:
            The saved request with its incremented version

        Raises:
            SchemaViolation: unknown status string
            InvalidTransition: pair not in the allow-list
            ValidationFailed, Blocked, ApprovalIncomplete: a gate or an entry check refused
            ConcurrentModification: stale expected version or lost compare-and-set
            SideEffectFailed: the change was committed but an on_enter hook failed
        """
        with tracer.start_as_current_span("workflow.transition") as span:
            span.set_attributes({
                "solicitacao.id": request_id,
                "workflow.target": str(getattr(target, "value", target)),
                "workflow.user_id": user_id
            })
            try:
                target_status = coerce_status(target)
                request = self.repository.load_request(request_id)
                span.set_attribute("workflow.current", request.status)

                if expected_version is not None and request.version != expected_version:
                    raise ConcurrentModification(
                        f"Request {request_id} is at version {request.version}, expected {expected_version}",
                        {
                            "kind": "solicitacao",
                            "id": request_id,
                            "expected_version": expected_version,
                            "stored_version": request.version
                        }
                    )

                validate_status_transition(request.status, target_status)
                self.check_gates(request, target_status)
                return self._commit(request, target_status, user_id, observation, HistoryReason.TRANSICAO)

            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                logger.warning(
                    f"Transition of request {request_id} refused: {e.message}",
                    extra={"extra_fields": {"solicitacao_id": request_id, **e.to_dict()}}
                )
                raise

    def force_step(
        self,
        request: Solicitacao,
        target,
        user_id: str,
        observation: Optional[str] = None,
        reason: HistoryReason = HistoryReason.DETERMINACAO_JUDICIAL
    ) -> Solicitacao:
        """
        Take one allow-listed step without running the gates.

        Used by court determinations, which override analysis, pendencies and
        approvals but never the allow-list itself.
        """
        target_status = coerce_status(target)
        validate_status_transition(request.status, target_status)
        return self._commit(request, target_status, user_id, observation, reason)

    def history(self, request_id: str) -> List[HistoricoStatus]:
        """History rows of a request in append order."""
        return self.repository.list_history(request_id)
