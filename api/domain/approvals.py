# SPDX-License-Identifier: Apache-2.0

"""
Approval domain logic for multi-approver decisions.

This module contains pure functions to resolve the approvers of an action,
instantiate a per-request approval, validate and apply individual decisions
and derive the aggregate outcome.
"""

from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence

from models.enums import ApprovalStatus, ApprovalStrategy, Decision
from models.entities import (
    AcaoAprovacao, AprovadorConfigurado, AprovadorDesignado,
    SolicitacaoAprovacao, Solicitacao, UserContext
)
from .authorization import can_approve_action
from .catalog import coerce_approval_status, coerce_decision, coerce_strategy
from .errors import (
    AlreadyDecided, FieldError, InsufficientApprovers, OutOfOrder,
    Unauthorized, ValidationFailed
)


def requires_approval(action: AcaoAprovacao, value: Optional[float]) -> bool:
    """Check whether an action demands sign-off for a request value."""
    if not action.ativa:
        return False
    if action.valor_minimo is None or value is None:
        return True
    return value >= action.valor_minimo


def is_relevant(approval: SolicitacaoAprovacao) -> bool:
    """Approvals dispensed by a court or cancelled no longer count towards the request."""
    if approval.dispensada_judicialmente:
        return False
    return coerce_approval_status(approval.status) != ApprovalStatus.CANCELADA


def is_eligible_approver(
    action: AcaoAprovacao,
    configured: AprovadorConfigurado,
    user: Optional[UserContext],
    request: Solicitacao
) -> bool:
    """
    Check the eligibility criteria of a configured approver.

    Criteria: active template entry and user, allowed role, unit scope
    (action unit, or the request unit for unit-bound users) and authority
    ceiling against the request value.
    """
    if not configured.ativo or configured.acao_codigo != action.codigo:
        return False
    if user is None or not user.ativo:
        return False
    if not can_approve_action(user, action).allowed:
        return False

    if action.unidade_id is not None:
        if user.unidade_id != action.unidade_id:
            return False
    elif user.unidade_id is not None and user.unidade_id != request.unidade_id:
        return False

    if configured.valor_limite is not None and request.valor is not None:
        if request.valor > configured.valor_limite:
            return False

    return True


def resolve_approvers(
    action: AcaoAprovacao,
    configured: Iterable[AprovadorConfigurado],
    directory: Mapping[str, UserContext],
    request: Solicitacao
) -> List[AprovadorDesignado]:
    """
    Resolve the ordered approvers of an action for a request.

    Args:
        action: Approval action template
        configured: Configured approvers of the action
        directory: Users by ID, as resolved at the access-control boundary
        request: Request under approval

    Returns:
        Assigned approvers ordered by their configured order
    """
    eligible = [
        entry for entry in configured
        if is_eligible_approver(action, entry, directory.get(entry.usuario_id), request)
    ]
    eligible.sort(key=lambda entry: (entry.ordem, entry.usuario_id))

    assigned: List[AprovadorDesignado] = []
    seen = set()
    for entry in eligible:
        if entry.usuario_id in seen:
            continue
        seen.add(entry.usuario_id)
        assigned.append(AprovadorDesignado(usuario_id=entry.usuario_id, ordem=entry.ordem))
    return assigned


def build_request_approval(
    request: Solicitacao,
    action: AcaoAprovacao,
    approvers: Sequence[AprovadorDesignado],
    created_by: str
) -> SolicitacaoAprovacao:
    """
    Instantiate an approval action for a request.

    Sequential approvals need every assigned approver; parallel approvals
    need ``min_aprovadores`` of them (all when unset).

    Raises:
        InsufficientApprovers: if fewer approvers than required were resolved
    """
    strategy = coerce_strategy(action.estrategia)
    required = action.min_aprovadores or len(approvers) or 1

    if len(approvers) < required or not approvers:
        raise InsufficientApprovers(
            f"Action {action.codigo} requires {required} approvers, {len(approvers)} eligible",
            {"acao": action.codigo, "necessarios": required, "elegiveis": len(approvers)}
        )

    quorum = len(approvers) if strategy == ApprovalStrategy.SEQUENCIAL else required

    return SolicitacaoAprovacao(
        solicitacao_id=request.id,
        acao_codigo=action.codigo,
        estrategia=strategy,
        quorum=quorum,
        limite_rejeicoes=1 if strategy == ApprovalStrategy.SEQUENCIAL else action.limite_rejeicoes,
        aprovadores=[approver.model_copy() for approver in approvers],
        created_by=created_by,
        updated_by=created_by
    )


def compute_aggregate(approval: SolicitacaoAprovacao) -> ApprovalStatus:
    """
    Derive the aggregate status from individual decisions.

    Sequential: the first rejection rejects, approval needs everyone.
    Parallel: ``limite_rejeicoes`` rejections reject, ``quorum`` approvals
    approve, and an unreachable quorum rejects.
    """
    decisions = [coerce_decision(a.decisao) for a in approval.aprovadores]
    approved = decisions.count(Decision.APROVADO)
    rejected = decisions.count(Decision.REJEITADO)
    pending = decisions.count(Decision.PENDENTE)

    if coerce_strategy(approval.estrategia) == ApprovalStrategy.SEQUENCIAL:
        if rejected >= 1:
            return ApprovalStatus.REJEITADA
        if approved >= approval.quorum:
            return ApprovalStatus.APROVADA
        return ApprovalStatus.PENDENTE

    if rejected >= approval.limite_rejeicoes:
        return ApprovalStatus.REJEITADA
    if approved >= approval.quorum:
        return ApprovalStatus.APROVADA
    if approved + pending < approval.quorum:
        return ApprovalStatus.REJEITADA
    return ApprovalStatus.PENDENTE


def check_can_decide(approval: SolicitacaoAprovacao, approver_id: str) -> AprovadorDesignado:
    """
    Validate that an approver may decide now.

    Returns:
        The approver's assignment

    Raises:
        Unauthorized: if the user is not assigned
        AlreadyDecided: if the aggregate or the individual decision is terminal
        OutOfOrder: if a sequential predecessor has not approved yet
    """
    assignment = approval.find_approver(approver_id)
    if assignment is None:
        raise Unauthorized(
            f"User {approver_id} is not assigned to approval {approval.id}",
            {"aprovacao_id": approval.id, "usuario_id": approver_id}
        )

    if approval.dispensada_judicialmente:
        raise AlreadyDecided(
            f"Approval {approval.id} was dispensed by a court determination",
            {"aprovacao_id": approval.id}
        )

    if coerce_approval_status(approval.status) != ApprovalStatus.PENDENTE:
        raise AlreadyDecided(
            f"Approval {approval.id} is already {approval.status}",
            {"aprovacao_id": approval.id, "status": approval.status}
        )

    if coerce_decision(assignment.decisao) != Decision.PENDENTE:
        raise AlreadyDecided(
            f"User {approver_id} already decided {assignment.decisao} on approval {approval.id}",
            {"aprovacao_id": approval.id, "usuario_id": approver_id, "decisao": assignment.decisao}
        )

    if coerce_strategy(approval.estrategia) == ApprovalStrategy.SEQUENCIAL:
        waiting = [
            a.usuario_id for a in approval.aprovadores
            if a.ordem < assignment.ordem and coerce_decision(a.decisao) != Decision.APROVADO
        ]
        if waiting:
            raise OutOfOrder(
                f"Approver at order {assignment.ordem} must wait for {', '.join(waiting)}",
                {"aprovacao_id": approval.id, "ordem": assignment.ordem, "aguardando": waiting}
            )

    return assignment


def apply_decision(
    approval: SolicitacaoAprovacao,
    approver_id: str,
    decision,
    justification: Optional[str] = None,
    attachments: Optional[List[str]] = None,
    now: Optional[datetime] = None
) -> SolicitacaoAprovacao:
    """
    Record an individual decision and recompute the aggregate.

    Raises:
        SchemaViolation: if the decision value is unknown
        ValidationFailed: if the decision is not aprovado or rejeitado
        Unauthorized, AlreadyDecided, OutOfOrder: see ``check_can_decide``
    """
    decided = coerce_decision(decision)
    if decided == Decision.PENDENTE:
        raise ValidationFailed(
            "A decision must approve or reject",
            [FieldError("decisao", "Decisão deve ser aprovado ou rejeitado", "invalid_choice")]
        )

    check_can_decide(approval, approver_id)
    now = now or datetime.utcnow()

    approvers = []
    for entry in approval.aprovadores:
        if entry.usuario_id == approver_id:
            entry = entry.model_copy(update={
                "decisao": decided.value,
                "justificativa": justification,
                "anexos": list(attachments or []),
                "data_decisao": now
            })
        else:
            entry = entry.model_copy()
        approvers.append(entry)

    updated = approval.model_copy(update={
        "aprovadores": approvers,
        "updated_at": now,
        "updated_by": approver_id
    })
    aggregate = compute_aggregate(updated)
    changes = {"status": aggregate.value}
    if aggregate != ApprovalStatus.PENDENTE:
        changes["data_conclusao"] = now
    return updated.model_copy(update=changes)


def combine_aggregates(approvals: Sequence[SolicitacaoAprovacao]) -> Optional[ApprovalStatus]:
    """
    Combine the aggregates of a request's relevant approvals.

    Returns:
        None when there is nothing to combine, rejeitada if any rejected,
        aprovada if all approved, pendente otherwise
    """
    relevant = [coerce_approval_status(a.status) for a in approvals if is_relevant(a)]
    if not relevant:
        return None
    if ApprovalStatus.REJEITADA in relevant:
        return ApprovalStatus.REJEITADA
    if all(status == ApprovalStatus.APROVADA for status in relevant):
        return ApprovalStatus.APROVADA
    return ApprovalStatus.PENDENTE


def _check_open(approval: SolicitacaoAprovacao) -> None:
    if approval.dispensada_judicialmente:
        raise AlreadyDecided(
            f"Approval {approval.id} was dispensed by a court determination",
            {"aprovacao_id": approval.id}
        )
    if coerce_approval_status(approval.status) != ApprovalStatus.PENDENTE:
        raise AlreadyDecided(
            f"Approval {approval.id} is already {approval.status}",
            {"aprovacao_id": approval.id, "status": approval.status}
        )


def cancel_approval(
    approval: SolicitacaoAprovacao,
    user_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None
) -> SolicitacaoAprovacao:
    """
    Cancel a pending approval on behalf of whoever requested it.

    Raises:
        Unauthorized: if the user did not request the approval
        AlreadyDecided: if the approval is no longer pending
    """
    if approval.created_by != user_id:
        raise Unauthorized(
            f"Only the requester of approval {approval.id} may cancel it",
            {"aprovacao_id": approval.id, "usuario_id": user_id}
        )
    _check_open(approval)

    now = now or datetime.utcnow()
    return approval.model_copy(update={
        "status": ApprovalStatus.CANCELADA.value,
        "motivo_cancelamento": reason or "Cancelada pelo solicitante",
        "data_conclusao": now,
        "updated_at": now,
        "updated_by": user_id
    })


def delegate_approval(
    approval: SolicitacaoAprovacao,
    from_user_id: str,
    to_user: AprovadorDesignado,
    justification: str,
    now: Optional[datetime] = None
) -> SolicitacaoAprovacao:
    """
    Hand an undecided approver slot over to another approver.

    The delegate keeps the slot's order, so sequential approvals keep their
    shape. ``to_user`` must come from ``resolve_approvers``.

    Raises:
        Unauthorized: if ``from_user_id`` holds no slot
        AlreadyDecided: if the approval or the slot is already decided
        ValidationFailed: missing justification or delegate already assigned
    """
    assignment = approval.find_approver(from_user_id)
    if assignment is None:
        raise Unauthorized(
            f"User {from_user_id} is not assigned to approval {approval.id}",
            {"aprovacao_id": approval.id, "usuario_id": from_user_id}
        )
    _check_open(approval)
    if coerce_decision(assignment.decisao) != Decision.PENDENTE:
        raise AlreadyDecided(
            f"User {from_user_id} already decided {assignment.decisao} on approval {approval.id}",
            {"aprovacao_id": approval.id, "usuario_id": from_user_id, "decisao": assignment.decisao}
        )

    errors = []
    if not justification or not justification.strip():
        errors.append(FieldError("justificativa", "Justificativa da delegação é obrigatória", "required"))
    if approval.find_approver(to_user.usuario_id) is not None:
        errors.append(FieldError("delegado_para_usuario_id", "Aprovador já designado nesta aprovação", "duplicate"))
    if errors:
        raise ValidationFailed(f"Approval {approval.id} cannot be delegated", errors)

    now = now or datetime.utcnow()
    approvers = []
    for entry in approval.aprovadores:
        if entry.usuario_id == from_user_id:
            entry = AprovadorDesignado(
                usuario_id=to_user.usuario_id,
                ordem=entry.ordem,
                delegado_por_id=from_user_id,
                justificativa_delegacao=justification.strip()
            )
        else:
            entry = entry.model_copy()
        approvers.append(entry)

    return approval.model_copy(update={
        "aprovadores": approvers,
        "updated_at": now,
        "updated_by": from_user_id
    })


def awaits_decision(approval: SolicitacaoAprovacao, approver_id: str) -> bool:
    """Check whether an approver can decide on an approval right now."""
    try:
        check_can_decide(approval, approver_id)
    except (Unauthorized, AlreadyDecided, OutOfOrder):
        return False
    return True
