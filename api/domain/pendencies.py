# SPDX-License-Identifier: Apache-2.0

"""
Pendency domain logic.

Pure functions for opening, resolving and cancelling blocking issues raised
against a request.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from models.enums import PendencyStatus
from models.entities import Pendencia
from .catalog import coerce_pendency_status
from .errors import InvalidTransition, ValidationFailed, FieldError


BLOCKING_STATUSES = frozenset({PendencyStatus.ABERTA, PendencyStatus.EM_RESOLUCAO})


def is_blocking(pendency: Pendencia) -> bool:
    """Unresolved pendencies block progression."""
    return coerce_pendency_status(pendency.status) in BLOCKING_STATUSES


def blocking_pendencies(pendencies: Sequence[Pendencia]) -> List[Pendencia]:
    return [pendency for pendency in pendencies if is_blocking(pendency)]


def is_overdue(pendency: Pendencia, now: Optional[datetime] = None) -> bool:
    """Check whether a blocking pendency passed its deadline."""
    if pendency.prazo_resolucao is None or not is_blocking(pendency):
        return False
    return pendency.prazo_resolucao < (now or datetime.utcnow())


def new_pendency(
    request_id: str,
    description: str,
    raised_by: str,
    deadline: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> Pendencia:
    """
    Build a new open pendency.

    Raises:
        ValidationFailed: if the description is empty or the deadline is not in the future
    """
    now = now or datetime.utcnow()
    errors = []

    if not description or not description.strip():
        errors.append(FieldError("descricao", "Descrição da pendência é obrigatória", "required"))

    if deadline is not None and deadline <= now:
        errors.append(FieldError(
            "prazo_resolucao",
            "O prazo de resolução deve ser maior que a data atual",
            "out_of_range"
        ))

    if errors:
        raise ValidationFailed("Invalid pendency", errors)

    return Pendencia(
        solicitacao_id=request_id,
        descricao=description,
        registrado_por_id=raised_by,
        prazo_resolucao=deadline,
        status=PendencyStatus.ABERTA,
        created_by=raised_by,
        updated_by=raised_by,
        created_at=now,
        updated_at=now
    )


def resolve_pendency(
    pendency: Pendencia,
    resolved_by: str,
    note: Optional[str] = None,
    now: Optional[datetime] = None
) -> Tuple[Pendencia, bool]:
    """
    Resolve a pendency.

    Resolving an already resolved pendency is a no-op.

    Returns:
        Tuple of (pendency, changed)

    Raises:
        InvalidTransition: if the pendency was cancelled
    """
    status = coerce_pendency_status(pendency.status)
    if status == PendencyStatus.RESOLVIDA:
        return pendency, False

    if status == PendencyStatus.CANCELADA:
        raise InvalidTransition(
            f"Pendency {pendency.id} was cancelled and cannot be resolved",
            {"pendencia_id": pendency.id, "status": status.value}
        )

    now = now or datetime.utcnow()
    resolved = Pendencia.model_validate({
        **pendency.model_dump(),
        "status": PendencyStatus.RESOLVIDA,
        "resolvido_por_id": resolved_by,
        "data_resolucao": now,
        "observacao_resolucao": note,
        "updated_at": now,
        "updated_by": resolved_by
    })
    return resolved, True


def start_resolution(
    pendency: Pendencia,
    user_id: str,
    now: Optional[datetime] = None
) -> Tuple[Pendencia, bool]:
    """Move an open pendency to em_resolucao."""
    status = coerce_pendency_status(pendency.status)
    if status == PendencyStatus.EM_RESOLUCAO:
        return pendency, False
    if status != PendencyStatus.ABERTA:
        raise InvalidTransition(
            f"Pendency {pendency.id} is {status.value} and cannot move to em_resolucao",
            {"pendencia_id": pendency.id, "status": status.value}
        )

    now = now or datetime.utcnow()
    updated = pendency.model_copy(update={
        "status": PendencyStatus.EM_RESOLUCAO.value,
        "updated_at": now,
        "updated_by": user_id
    })
    return updated, True


def cancel_pendency(
    pendency: Pendencia,
    user_id: str,
    note: Optional[str] = None,
    now: Optional[datetime] = None
) -> Tuple[Pendencia, bool]:
    """Cancel an unresolved pendency; cancelling twice is a no-op."""
    status = coerce_pendency_status(pendency.status)
    if status == PendencyStatus.CANCELADA:
        return pendency, False
    if status == PendencyStatus.RESOLVIDA:
        raise InvalidTransition(
            f"Pendency {pendency.id} is already resolved",
            {"pendencia_id": pendency.id, "status": status.value}
        )

    now = now or datetime.utcnow()
    updated = pendency.model_copy(update={
        "status": PendencyStatus.CANCELADA.value,
        "observacao_resolucao": note,
        "updated_at": now,
        "updated_by": user_id
    })
    return updated, True
