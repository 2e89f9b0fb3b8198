# SPDX-License-Identifier: Apache-2.0

"""
Approval coordinator service.

Instantiates approval actions for requests and records approver decisions,
cancellations and delegations with compare-and-set on the approval version.
Every approval write also bumps the version of the owning request.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Mapping, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.enums import ApprovalStatus
from models.entities import (
    AcaoAprovacao, AprovadorConfigurado, Solicitacao, SolicitacaoAprovacao, UserContext
)
from domain.approvals import (
    apply_decision, awaits_decision, build_request_approval, cancel_approval,
    combine_aggregates, delegate_approval, resolve_approvers
)
from domain.errors import ConcurrentModification, InvalidTransition, Unauthorized, WorkflowError
from domain.retry import retry_on_conflict
from domain.workflow import is_terminal, touch_request
from .amqp import Notifier, APPROVAL_CANCELLED, APPROVAL_DELEGATED, DECISION_RECORDED
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ApprovalChange = Callable[[SolicitacaoAprovacao], SolicitacaoAprovacao]


class ApprovalCoordinator:
    """Multi-approver decisions on requests."""

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

    def _touch_request(self, request_id: str, user_id: str) -> Solicitacao:
        def attempt() -> Solicitacao:
            current = self.repository.load_request(request_id)
            return self.repository.save_request(touch_request(current, user_id, self.clock()), current.version)

        return retry_on_conflict(attempt, self.max_attempts, self.base_delay)

    def _change(self, approval_id: str, user_id: str, change: ApprovalChange) -> SolicitacaoAprovacao:
        """Apply a change to an approval with retry, then bump its request."""
        def attempt() -> SolicitacaoAprovacao:
            current = self.repository.load_approval(approval_id)
            return self.repository.save_approval(change(current), current.version)

        saved = retry_on_conflict(attempt, self.max_attempts, self.base_delay)
        self._touch_request(saved.solicitacao_id, user_id)
        return saved

    def instantiate(
        self,
        request_id: str,
        action: AcaoAprovacao,
        configured: Iterable[AprovadorConfigurado],
        directory: Mapping[str, UserContext],
        created_by: str
    ) -> SolicitacaoAprovacao:
        """
        Create the per-request approval of an action.

        Raises:
            NotFound: if the request does not exist
            InvalidTransition: if the request is terminal
            InsufficientApprovers: if not enough eligible approvers resolve
        """
        configured = list(configured)

        def attempt() -> SolicitacaoAprovacao:
            request = self.repository.load_request(request_id)
            if is_terminal(request.status):
                raise InvalidTransition(
                    f"Cannot request approval for {request.status} request {request_id}",
                    {"solicitacao_id": request_id, "status": request.status}
                )

            approvers = resolve_approvers(action, configured, directory, request)
            created = self.repository.create_approval(
                build_request_approval(request, action, approvers, created_by)
            )
            try:
                self.repository.save_request(touch_request(request, created_by, self.clock()), request.version)
            except ConcurrentModification:
                self.repository.delete_approval(created.id)
                raise
            return created

        with tracer.start_as_current_span("approval.instantiate") as span:
            span.set_attributes({"solicitacao.id": request_id, "aprovacao.acao": action.codigo})
            try:
                created = retry_on_conflict(attempt, self.max_attempts, self.base_delay)
            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                raise

            span.set_attributes({
                "aprovacao.id": created.id,
                "aprovacao.estrategia": created.estrategia,
                "aprovacao.quorum": created.quorum
            })
            logger.info(
                f"Approval {created.id} instantiated for request {request_id}",
                extra={"extra_fields": {
                    "aprovacao_id": created.id,
                    "solicitacao_id": request_id,
                    "acao": action.codigo,
                    "aprovadores": [a.usuario_id for a in created.aprovadores],
                    "quorum": created.quorum
                }}
            )
            return created

    def record_decision(
        self,
        approval_id: str,
        approver_id: str,
        decision,
        justification: Optional[str] = None,
        attachments: Optional[List[str]] = None
    ) -> SolicitacaoAprovacao:
        """
        Record an individual decision and return the updated approval.

        Conflicting concurrent decisions are retried against the fresh
        approval, so a second decision by the same approver ends in
        AlreadyDecided.

        Raises:
            Unauthorized, AlreadyDecided, OutOfOrder, ValidationFailed
        """
        with tracer.start_as_current_span("approval.record_decision") as span:
            span.set_attributes({"aprovacao.id": approval_id, "aprovacao.aprovador": approver_id})
            try:
                saved = self._change(
                    approval_id, approver_id,
                    lambda current: apply_decision(
                        current, approver_id, decision, justification, attachments, self.clock()
                    )
                )
            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                logger.warning(
                    f"Decision on approval {approval_id} refused: {e.message}",
                    extra={"extra_fields": {"aprovacao_id": approval_id, "usuario_id": approver_id, **e.to_dict()}}
                )
                raise

            assignment = saved.find_approver(approver_id)
            span.set_attribute("aprovacao.status", saved.status)
            logger.info(
                f"Decision {assignment.decisao} recorded on approval {approval_id}",
                extra={"extra_fields": {
                    "aprovacao_id": approval_id,
                    "solicitacao_id": saved.solicitacao_id,
                    "usuario_id": approver_id,
                    "decisao": assignment.decisao,
                    "status_agregado": saved.status
                }}
            )
            self.notifier.notify(DECISION_RECORDED, {
                "aprovacao_id": saved.id,
                "solicitacao_id": saved.solicitacao_id,
                "usuario_id": approver_id,
                "decisao": assignment.decisao,
                "justificativa": justification,
                "status_agregado": saved.status
            })
            return saved

    def cancel(self, approval_id: str, user_id: str, reason: Optional[str] = None) -> SolicitacaoAprovacao:
        """
        Cancel a pending approval; only whoever requested it may cancel.

        Raises:
            Unauthorized: if the user did not request the approval
            AlreadyDecided: if the approval is no longer pending
        """
        with tracer.start_as_current_span("approval.cancel") as span:
            span.set_attributes({"aprovacao.id": approval_id, "workflow.user_id": user_id})
            try:
                saved = self._change(
                    approval_id, user_id,
                    lambda current: cancel_approval(current, user_id, reason, self.clock())
                )
            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                raise

            logger.info(
                f"Approval {approval_id} cancelled",
                extra={"extra_fields": {
                    "aprovacao_id": approval_id,
                    "solicitacao_id": saved.solicitacao_id,
                    "usuario_id": user_id,
                    "motivo": saved.motivo_cancelamento
                }}
            )
            self.notifier.notify(APPROVAL_CANCELLED, {
                "aprovacao_id": saved.id,
                "solicitacao_id": saved.solicitacao_id,
                "usuario_id": user_id,
                "aprovadores": [a.usuario_id for a in saved.aprovadores],
                "motivo": saved.motivo_cancelamento
            })
            return saved

    def delegate(
        self,
        approval_id: str,
        from_user_id: str,
        to_user_id: str,
        justification: str,
        action: AcaoAprovacao,
        configured: Iterable[AprovadorConfigurado],
        directory: Mapping[str, UserContext]
    ) -> SolicitacaoAprovacao:
        """
        Hand an approver's undecided slot to another eligible approver.

        The delegate must resolve as an approver of the action for the
        request, under the same role, unit and value criteria.

        Raises:
            Unauthorized: delegator not assigned, or delegate not eligible
            AlreadyDecided: approval or slot already decided
            ValidationFailed: missing justification or delegate already assigned
        """
        configured = list(configured)

        def change(current: SolicitacaoAprovacao) -> SolicitacaoAprovacao:
            request = self.repository.load_request(current.solicitacao_id)
            eligible = {a.usuario_id: a for a in resolve_approvers(action, configured, directory, request)}
            if to_user_id not in eligible:
                raise Unauthorized(
                    f"User {to_user_id} is not an eligible approver of {action.codigo}",
                    {"aprovacao_id": current.id, "usuario_id": to_user_id, "acao": action.codigo}
                )
            return delegate_approval(current, from_user_id, eligible[to_user_id], justification, self.clock())

        with tracer.start_as_current_span("approval.delegate") as span:
            span.set_attributes({
                "aprovacao.id": approval_id,
                "aprovacao.delegante": from_user_id,
                "aprovacao.delegado": to_user_id
            })
            try:
                saved = self._change(approval_id, from_user_id, change)
            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                raise

            logger.info(
                f"Approval {approval_id} delegated from {from_user_id} to {to_user_id}",
                extra={"extra_fields": {
                    "aprovacao_id": approval_id,
                    "solicitacao_id": saved.solicitacao_id,
                    "delegante_id": from_user_id,
                    "delegado_id": to_user_id
                }}
            )
            self.notifier.notify(APPROVAL_DELEGATED, {
                "aprovacao_id": saved.id,
                "solicitacao_id": saved.solicitacao_id,
                "delegante_id": from_user_id,
                "delegado_id": to_user_id,
                "justificativa": justification
            })
            return saved

    def pending_for(self, approver_id: str) -> List[SolicitacaoAprovacao]:
        """Approvals the approver can decide on now, oldest first."""
        pending = [a for a in self.repository.list_pending_approvals(approver_id) if awaits_decision(a, approver_id)]
        return sorted(pending, key=lambda a: a.created_at)

    def aggregate_for_request(self, request_id: str) -> Optional[ApprovalStatus]:
        """Combined status of the request's relevant approvals."""
        return combine_aggregates(self.repository.list_approvals(request_id))

    def dispense_for_request(self, request_id: str, user_id: str) -> List[SolicitacaoAprovacao]:
        """Mark every approval of a request as dispensed by a court determination."""
        dispensed = []
        for approval in self.repository.list_approvals(request_id):
            if approval.dispensada_judicialmente:
                continue

            def attempt(approval_id=approval.id) -> SolicitacaoAprovacao:
                current = self.repository.load_approval(approval_id)
                if current.dispensada_judicialmente:
                    return current
                updated = current.model_copy(update={
                    "dispensada_judicialmente": True,
                    "updated_at": self.clock(),
                    "updated_by": user_id
                })
                return self.repository.save_approval(updated, current.version)

            dispensed.append(retry_on_conflict(attempt, self.max_attempts, self.base_delay))
            logger.info(
                f"Approval {approval.id} dispensed by court determination",
                extra={"extra_fields": {"aprovacao_id": approval.id, "solicitacao_id": request_id}}
            )
        return dispensed
