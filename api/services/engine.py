# SPDX-License-Identifier: Apache-2.0

"""
Workflow engine facade.

Wires the workflow collaborators together and drives the automatic
follow-ups between them: approval outcomes move the request, opening a
pendency parks it in pendente and resolving the last one brings it back to
analysis.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from opentelemetry import trace

from models.enums import ApprovalStatus, ApprovalStrategy, RequestStatus, Role
from models.entities import (
    AcaoAprovacao, AprovadorConfigurado, DadosBeneficio, HistoricoStatus,
    Pagamento, Pendencia, Solicitacao, SolicitacaoAprovacao, UserContext
)
from domain.authorization import build_user_context
from domain.catalog import BenefitCatalog, build_default_catalog, coerce_status
from domain.errors import FieldError, NotFound, ValidationFailed
from domain.retry import retry_on_conflict
from settings import WorkflowSettings
from .amqp import Notifier, create_notifier
from .approvals import ApprovalCoordinator
from .health import HealthCheckService
from .judicial import JudicialOverrideHandler
from .mongodb import MongoDBService, MongoWorkflowRepository
from .payments import PaymentService
from .pendencies import PendencyTracker
from .renewal import RenewalBatchResult, RenewalScheduler
from .repository import InMemoryWorkflowRepository, WorkflowRepository
from .state_machine import RequestStateMachine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Statuses from which opening a pendency parks the request in pendente
PENDENCY_PARKING = frozenset({RequestStatus.EM_ANALISE, RequestStatus.AGUARDANDO_DOCUMENTOS})


def default_approval_actions() -> Dict[str, AcaoAprovacao]:
    """Approval actions named by the default benefit catalog."""
    return {
        "conceder_beneficio": AcaoAprovacao(
            codigo="conceder_beneficio",
            descricao="Concessão de benefício eventual",
            estrategia=ApprovalStrategy.SEQUENCIAL,
            perfis_permitidos=[Role.COORDENADOR, Role.GESTOR, Role.ADMIN]
        )
    }


class WorkflowEngine:
    """Entry point of the benefit request workflow."""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Notifier,
        catalog: BenefitCatalog,
        approval_actions: Optional[Mapping[str, AcaoAprovacao]] = None,
        configured_approvers: Iterable[AprovadorConfigurado] = (),
        directory: Optional[Mapping[str, UserContext]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = 3,
        base_delay: float = 0.05
    ):
        self.repository = repository
        self.notifier = notifier
        self.catalog = catalog
        self.approval_actions = dict(approval_actions if approval_actions is not None else default_approval_actions())
        self.configured_approvers = list(configured_approvers)
        self.directory: Dict[str, UserContext] = dict(directory or {})
        self.clock = clock
        self.max_attempts = max_attempts
        self.base_delay = base_delay

        self.state_machine = RequestStateMachine(repository, notifier, catalog, self.approval_actions, clock)
        self.pendencies = PendencyTracker(repository, notifier, clock, max_attempts, base_delay)
        self.approvals = ApprovalCoordinator(repository, notifier, clock, max_attempts, base_delay)
        self.judicial = JudicialOverrideHandler(
            repository, notifier, self.state_machine, self.approvals, clock, max_attempts, base_delay
        )
        self.payments = PaymentService(repository, notifier, catalog, clock)
        self.renewals = RenewalScheduler(
            repository, notifier, catalog, self.state_machine, clock, max_attempts, base_delay
        )

        self.state_machine.before_enter(RequestStatus.LIBERADA, self.payments.check_release)
        self.state_machine.on_enter(RequestStatus.LIBERADA, self.payments.on_released)
        self.state_machine.on_enter(RequestStatus.CONCLUIDA, self.renewals.on_concluded)

    # Users

    def register_user(self, record: Dict[str, Any]) -> UserContext:
        """Resolve a stored user record and add it to the approver directory."""
        user = build_user_context(record)
        self.directory[user.user_id] = user
        return user

    # Requests

    def create_request(
        self,
        request_fields: Dict[str, Any],
        benefit_data: Optional[Dict[str, Any]],
        user_id: str
    ) -> Solicitacao:
        """
        Create a draft request with its type-specific data.

        Args:
            request_fields: Solicitacao fields (protocolo, beneficiario_id, ...)
            benefit_data: Type-specific payload, validated when leaving the draft
            user_id: Acting user ID
        """
        request = Solicitacao(**{
            **request_fields,
            "status": RequestStatus.RASCUNHO,
            "created_by": user_id,
            "updated_by": user_id
        })
        data = None
        if benefit_data is not None:
            data = DadosBeneficio(
                solicitacao_id=request.id,
                tipo=request.tipo_beneficio,
                dados=benefit_data,
                created_by=user_id,
                updated_by=user_id
            )
        return self.state_machine.create(request, data, user_id)

    def get_request(self, request_id: str) -> Solicitacao:
        return self.repository.load_request(request_id)

    def update_benefit_data(self, request_id: str, benefit_data: Dict[str, Any], user_id: str) -> DadosBeneficio:
        """Replace the type-specific data of a request that is still a draft."""
        request = self.repository.load_request(request_id)
        if coerce_status(request.status) != RequestStatus.RASCUNHO:
            raise ValidationFailed(
                f"Benefit data of request {request_id} is frozen once it leaves the draft",
                [FieldError("dados", "Dados do benefício só podem ser alterados em rascunho", "frozen")]
            )

        current = self.repository.load_benefit_data(request_id)
        if current is None:
            data = DadosBeneficio(
                solicitacao_id=request_id,
                tipo=request.tipo_beneficio,
                dados=benefit_data,
                created_by=user_id,
                updated_by=user_id
            )
        else:
            data = current.model_copy(update={
                "dados": benefit_data,
                "updated_at": self.clock(),
                "updated_by": user_id
            })
        return self.repository.save_benefit_data(data)

    def transition(
        self,
        request_id: str,
        target,
        user_id: str,
        observation: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Solicitacao:
        """
        Move a request to a new status.

        Without ``expected_version`` lost compare-and-set races are retried
        against the fresh request; with it, a stale version fails at once.
        """
        if expected_version is not None:
            return self.state_machine.transition(request_id, target, user_id, observation, expected_version)
        return retry_on_conflict(
            lambda: self.state_machine.transition(request_id, target, user_id, observation),
            self.max_attempts, self.base_delay
        )

    def history(self, request_id: str) -> List[HistoricoStatus]:
        return self.state_machine.history(request_id)

    # Pendencies

    def open_pendency(
        self,
        request_id: str,
        description: str,
        user_id: str,
        deadline: Optional[datetime] = None
    ) -> Pendencia:
        """Open a pendency and park the request in pendente while under analysis."""
        pendency = self.pendencies.open(request_id, description, user_id, deadline)
        request = self.repository.load_request(request_id)
        if coerce_status(request.status) in PENDENCY_PARKING:
            self.transition(request_id, RequestStatus.PENDENTE, user_id, f"Pendência aberta: {pendency.descricao}")
        return pendency

    def _resume_analysis(self, request_id: str, user_id: str) -> None:
        request = self.repository.load_request(request_id)
        if coerce_status(request.status) != RequestStatus.PENDENTE:
            return
        if self.pendencies.has_blocking(request_id):
            return
        self.transition(request_id, RequestStatus.EM_ANALISE, user_id, "Todas as pendências foram resolvidas")

    def resolve_pendency(self, pendency_id: str, user_id: str, note: Optional[str] = None) -> Pendencia:
        """Resolve a pendency; the last one returns the request to analysis."""
        pendency, changed = self.pendencies.resolve(pendency_id, user_id, note)
        if changed:
            self._resume_analysis(pendency.solicitacao_id, user_id)
        return pendency

    def cancel_pendency(self, pendency_id: str, user_id: str, note: Optional[str] = None) -> Pendencia:
        pendency, changed = self.pendencies.cancel(pendency_id, user_id, note)
        if changed:
            self._resume_analysis(pendency.solicitacao_id, user_id)
        return pendency

    # Approvals

    def request_approval(self, request_id: str, user_id: str, action_code: Optional[str] = None) -> SolicitacaoAprovacao:
        """Instantiate the gating approval action of a request."""
        request = self.repository.load_request(request_id)
        code = action_code or self.catalog.get(request.tipo_beneficio).acao_aprovacao
        action = self.approval_actions.get(code) if code else None
        if action is None:
            raise NotFound(f"Approval action {code} is not configured", {"acao": code})

        configured = [entry for entry in self.configured_approvers if entry.acao_codigo == action.codigo]
        return self.approvals.instantiate(request_id, action, configured, self.directory, user_id)

    def decide(
        self,
        approval_id: str,
        approver_id: str,
        decision,
        justification: Optional[str] = None,
        attachments: Optional[List[str]] = None
    ) -> SolicitacaoAprovacao:
        """
        Record an approver decision.

        Once every approval of a request under analysis is approved the
        request moves to aprovada; a rejection moves it to indeferida.
        """
        approval = self.approvals.record_decision(approval_id, approver_id, decision, justification, attachments)
        if approval.status == ApprovalStatus.PENDENTE.value:
            return approval

        request = self.repository.load_request(approval.solicitacao_id)
        if coerce_status(request.status) != RequestStatus.EM_ANALISE:
            return approval

        aggregate = self.approvals.aggregate_for_request(request.id)
        if aggregate == ApprovalStatus.APROVADA:
            self.transition(request.id, RequestStatus.APROVADA, approver_id, "Aprovação concluída")
        elif aggregate == ApprovalStatus.REJEITADA:
            self.transition(request.id, RequestStatus.INDEFERIDA, approver_id, "Aprovação rejeitada")
        return approval

    def cancel_approval(self, approval_id: str, user_id: str, reason: Optional[str] = None) -> SolicitacaoAprovacao:
        """Cancel a pending approval; a cancelled approval no longer gates its request."""
        return self.approvals.cancel(approval_id, user_id, reason)

    def delegate_approval(
        self,
        approval_id: str,
        from_user_id: str,
        to_user_id: str,
        justification: str
    ) -> SolicitacaoAprovacao:
        """Hand an approver's undecided slot to another configured approver of the same action."""
        approval = self.repository.load_approval(approval_id)
        action = self.approval_actions.get(approval.acao_codigo)
        if action is None:
            raise NotFound(f"Approval action {approval.acao_codigo} is not configured", {"acao": approval.acao_codigo})

        configured = [entry for entry in self.configured_approvers if entry.acao_codigo == action.codigo]
        return self.approvals.delegate(
            approval_id, from_user_id, to_user_id, justification, action, configured, self.directory
        )

    def pending_approvals(self, approver_id: str) -> List[SolicitacaoAprovacao]:
        """Approvals waiting on a decision from this approver."""
        return self.approvals.pending_for(approver_id)

    # Court determinations

    def apply_judicial_determination(
        self,
        request_id: str,
        directive,
        case_number: str,
        user_id: str,
        court: Optional[str] = None,
        note: Optional[str] = None,
        active: bool = True
    ) -> RequestStatus:
        """Register a court determination and apply it to its request."""
        determination = self.judicial.register(request_id, directive, case_number, user_id, court, note, active)
        return self.judicial.apply(request_id, determination.id, user_id)

    # Payments

    def payment_for(self, request_id: str) -> Optional[Pagamento]:
        return self.repository.find_payment(request_id)

    def mark_installment_paid(self, payment_id: str, number: int, user_id: str) -> Pagamento:
        return self.payments.mark_paid(payment_id, number, user_id)

    # Renewals

    def process_renewals(self, user_id: str = "sistema") -> RenewalBatchResult:
        return self.renewals.process_pending(user_id)

    # Health

    def health(self) -> Dict[str, Any]:
        """Health report of the storage and broker the engine runs on."""
        mongodb_service = None
        if isinstance(self.repository, MongoWorkflowRepository):
            mongodb_service = self.repository.mongodb_service
        return HealthCheckService(mongodb_service, self.notifier).get_health()


def create_workflow_engine(
    settings: Optional[WorkflowSettings] = None,
    repository: Optional[WorkflowRepository] = None,
    notifier: Optional[Notifier] = None,
    approval_actions: Optional[Mapping[str, AcaoAprovacao]] = None,
    configured_approvers: Iterable[AprovadorConfigurado] = (),
    directory: Optional[Mapping[str, UserContext]] = None,
    clock: Callable[[], datetime] = datetime.utcnow
) -> WorkflowEngine:
    """
    Factory function to create the workflow engine from settings.

    MongoDB and AMQP are used when configured; otherwise the engine runs on
    the in-memory repository and the logging notifier.
    """
    settings = settings or WorkflowSettings.from_env()

    catalog = build_default_catalog(
        funeral_max_dias_apos_obito=settings.funeral_max_dias_apos_obito,
        natalidade_max_dias_apos_nascimento=settings.natalidade_max_dias_apos_nascimento,
        aluguel_social_valor_maximo=settings.aluguel_social_valor_maximo,
        aluguel_social_max_meses=settings.aluguel_social_max_meses,
        cesta_basica_max_pessoas=settings.cesta_basica_max_pessoas,
        cesta_basica_max_parcelas=settings.cesta_basica_max_parcelas
    )

    if repository is None:
        if settings.uses_mongodb:
            repository = MongoWorkflowRepository(
                MongoDBService(settings.mongodb_uri, settings.mongodb_database)
            )
        else:
            repository = InMemoryWorkflowRepository()

    if notifier is None:
        notifier = create_notifier(settings.amqp_enabled, settings.amqp_url, settings.workflow_exchange)

    logger.info(
        "Workflow engine created",
        extra={"extra_fields": {
            "environment": settings.environment,
            "repository": type(repository).__name__,
            "notifier": type(notifier).__name__,
            "benefit_types": len(catalog)
        }}
    )

    return WorkflowEngine(
        repository,
        notifier,
        catalog,
        approval_actions=approval_actions,
        configured_approvers=configured_approvers,
        directory=directory,
        clock=clock,
        max_attempts=settings.conflict_max_attempts,
        base_delay=settings.conflict_base_delay
    )
