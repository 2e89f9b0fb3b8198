# SPDX-License-Identifier: Apache-2.0

"""
Request lifecycle domain logic.

This module contains pure functions for status transition validation,
progression gates, status application and history row construction.
"""

from collections import deque
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence

from models.enums import RequestStatus, TERMINAL_STATUSES, ApprovalStatus, HistoryReason
from models.entities import (
    Solicitacao, DadosBeneficio, Pendencia, SolicitacaoAprovacao, HistoricoStatus
)
from .catalog import BenefitCatalog, coerce_status, coerce_benefit_type, coerce_approval_status
from .approvals import is_relevant
from .eligibility import validate
from .errors import (
    InvalidTransition, Blocked, ApprovalIncomplete, SchemaViolation, ValidationFailed, FieldError
)
from .pendencies import blocking_pendencies


S = RequestStatus

VALID_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    S.RASCUNHO: frozenset({S.ABERTA, S.CANCELADA, S.ARQUIVADA}),
    S.ABERTA: frozenset({S.EM_ANALISE, S.REJEITADA, S.CANCELADA, S.ARQUIVADA}),
    S.EM_ANALISE: frozenset({
        S.PENDENTE, S.AGUARDANDO_DOCUMENTOS, S.APROVADA, S.INDEFERIDA,
        S.REJEITADA, S.CANCELADA, S.ARQUIVADA
    }),
    S.PENDENTE: frozenset({S.EM_ANALISE, S.CANCELADA, S.ARQUIVADA}),
    S.AGUARDANDO_DOCUMENTOS: frozenset({S.EM_ANALISE, S.PENDENTE, S.CANCELADA, S.ARQUIVADA}),
    S.APROVADA: frozenset({S.LIBERADA, S.CANCELADA, S.ARQUIVADA}),
    S.LIBERADA: frozenset({S.EM_PROCESSAMENTO, S.CONCLUIDA, S.CANCELADA, S.ARQUIVADA}),
    S.EM_PROCESSAMENTO: frozenset({S.CONCLUIDA, S.CANCELADA, S.ARQUIVADA}),
    S.CONCLUIDA: frozenset(),
    S.CANCELADA: frozenset(),
    S.ARQUIVADA: frozenset(),
    S.INDEFERIDA: frozenset(),
    S.REJEITADA: frozenset(),
}

# Statuses guarded by the pendency gate and the targets that skip it
PENDENCY_GUARDED = frozenset({S.EM_ANALISE, S.PENDENTE})
PENDENCY_EXEMPT_TARGETS = frozenset({S.PENDENTE, S.CANCELADA})

# Leaving the draft towards these targets does not require eligible data
ELIGIBILITY_EXEMPT_TARGETS = frozenset({S.CANCELADA, S.ARQUIVADA})


def is_terminal(status) -> bool:
    return coerce_status(status) in TERMINAL_STATUSES


def can_transition(current, target) -> bool:
    """Check whether a status pair is in the allow-list."""
    return coerce_status(target) in VALID_TRANSITIONS[coerce_status(current)]


def validate_status_transition(current, target) -> None:
    """
    Validate request status transition.

    Raises:
        SchemaViolation: if either status is unknown
        InvalidTransition: if the pair is not allowed
    """
    current_status = coerce_status(current)
    target_status = coerce_status(target)

    if target_status not in VALID_TRANSITIONS[current_status]:
        raise InvalidTransition(
            f"Invalid status transition from {current_status.value} to {target_status.value}",
            {"status_atual": current_status.value, "status_destino": target_status.value}
        )


def transition_path(current, target) -> List[RequestStatus]:
    """
    Shortest allow-listed path from current to target, excluding current.

    Terminal statuses are never used as intermediate steps.

    Raises:
        InvalidTransition: if the target is unreachable
    """
    start = coerce_status(current)
    goal = coerce_status(target)
    if start == goal:
        return []

    previous: Dict[RequestStatus, Optional[RequestStatus]] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        if node == goal:
            break
        if node != start and node in TERMINAL_STATUSES:
            continue
        for nxt in sorted(VALID_TRANSITIONS[node], key=lambda s: s.value):
            if nxt not in previous:
                previous[nxt] = node
                queue.append(nxt)

    if goal not in previous:
        raise InvalidTransition(
            f"No transition path from {start.value} to {goal.value}",
            {"status_atual": start.value, "status_destino": goal.value}
        )

    path = []
    node = goal
    while node != start:
        path.append(node)
        node = previous[node]
    path.reverse()
    return path


def check_eligibility_gate(
    request: Solicitacao,
    target,
    benefit_data: Optional[DadosBeneficio],
    catalog: BenefitCatalog,
    today=None
) -> None:
    """
    Refuse to leave the draft without valid type-specific data.

    Raises:
        SchemaViolation: if the data discriminator differs from the benefit type
        ValidationFailed: with every violated field
    """
    if coerce_status(request.status) != S.RASCUNHO or coerce_status(target) in ELIGIBILITY_EXEMPT_TARGETS:
        return

    if benefit_data is None:
        raise ValidationFailed(
            "Type-specific benefit data is missing",
            [FieldError("dados", "Dados do benefício não informados", "required")]
        )

    if coerce_benefit_type(benefit_data.tipo) != coerce_benefit_type(request.tipo_beneficio):
        raise SchemaViolation(
            "Benefit data discriminator does not match the request benefit type",
            {"tipo_dados": str(benefit_data.tipo), "tipo_beneficio": str(request.tipo_beneficio)}
        )

    result = validate(request.tipo_beneficio, benefit_data.dados, catalog, today)
    if not result.is_valid:
        raise ValidationFailed("Benefit data failed eligibility validation", result.errors)


def check_pendency_gate(request: Solicitacao, target, pendencies: Sequence[Pendencia]) -> None:
    """
    Refuse to leave analysis while blocking pendencies exist.

    Raises:
        Blocked: naming the open pendencies
    """
    if coerce_status(request.status) not in PENDENCY_GUARDED:
        return
    if coerce_status(target) in PENDENCY_EXEMPT_TARGETS:
        return

    blocking = blocking_pendencies(pendencies)
    if blocking:
        ids = [pendency.id for pendency in blocking]
        raise Blocked(
            f"Request {request.id} has {len(ids)} open pendencies: {', '.join(ids)}",
            ids
        )


def check_approval_gate(
    request: Solicitacao,
    target,
    approvals: Sequence[SolicitacaoAprovacao],
    approval_required: bool
) -> None:
    """
    Refuse to enter aprovada unless every relevant approval is approved.

    Approvals dispensed by a court determination or cancelled are ignored.

    Raises:
        ApprovalIncomplete: if an approval is missing, pending or rejected
    """
    if coerce_status(target) != S.APROVADA:
        return

    relevant = [a for a in approvals if is_relevant(a)]
    if not relevant:
        if approval_required:
            raise ApprovalIncomplete(
                f"Request {request.id} has no approval instantiated",
                {"solicitacao_id": request.id}
            )
        return

    unfinished = [
        a for a in relevant if coerce_approval_status(a.status) != ApprovalStatus.APROVADA
    ]
    if unfinished:
        raise ApprovalIncomplete(
            f"Request {request.id} has {len(unfinished)} approvals not yet approved",
            {
                "solicitacao_id": request.id,
                "aprovacoes": {a.id: a.status for a in unfinished}
            }
        )


def apply_status_change(
    request: Solicitacao,
    target,
    user_id: str,
    now: Optional[datetime] = None
) -> Solicitacao:
    """
    Build the updated request for a status change.

    Stage timestamps are set the first time their stage is entered and the
    version is left untouched (the repository increments it on save).
    """
    target_status = coerce_status(target)
    now = now or datetime.utcnow()

    changes = {
        "status": target_status,
        "updated_at": now,
        "updated_by": user_id
    }

    if target_status == S.APROVADA and request.data_aprovacao is None:
        changes.update({"data_aprovacao": now, "aprovador_id": user_id})
    elif target_status == S.LIBERADA and request.data_liberacao is None:
        changes.update({"data_liberacao": now, "liberador_id": user_id})
    elif target_status == S.CONCLUIDA:
        changes["data_conclusao"] = now

    return Solicitacao.model_validate({**request.model_dump(), **changes})


def touch_request(request: Solicitacao, user_id: str, now: Optional[datetime] = None) -> Solicitacao:
    """
    Build the request copy saved when a record gating it changes.

    Saving it bumps the request version, so a status change that read its
    gates before the pendency or approval write fails its compare-and-set.
    """
    return request.model_copy(update={"updated_at": now or datetime.utcnow(), "updated_by": user_id})


def build_history_entry(
    request_id: str,
    previous_status,
    new_status,
    user_id: str,
    observation: Optional[str] = None,
    reason: HistoryReason = HistoryReason.TRANSICAO,
    trace_id: Optional[str] = None,
    span_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> HistoricoStatus:
    """Build an immutable status history row."""
    previous = coerce_status(previous_status) if previous_status is not None else None
    new = coerce_status(new_status)

    if observation is None:
        if previous is None:
            observation = f"Solicitação criada em {new.value}"
        else:
            observation = f"Transição de {previous.value} para {new.value}"

    return HistoricoStatus(
        solicitacao_id=request_id,
        status_anterior=previous,
        status_novo=new,
        usuario_id=user_id,
        data=now or datetime.utcnow(),
        observacao=observation,
        motivo=reason,
        trace_id=trace_id,
        span_id=span_id
    )
