# SPDX-License-Identifier: Apache-2.0

"""
Payment schedule domain logic.

Builds the payment and installments of a released request from the
benefit periodicity.
"""

import calendar
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from models.enums import BenefitType, InstallmentStatus, Periodicity
from models.entities import Pagamento, ParcelaPagamento, Solicitacao
from .catalog import BenefitCatalog, coerce_benefit_type, coerce_periodicity
from .errors import InvalidTransition, NotFound, ValidationFailed, FieldError


MONTHS_PER_PERIOD: Mapping[Periodicity, int] = MappingProxyType({
    Periodicity.UNICA: 0,
    Periodicity.MENSAL: 1,
    Periodicity.BIMESTRAL: 2,
    Periodicity.TRIMESTRAL: 3,
    Periodicity.SEMESTRAL: 6,
    Periodicity.ANUAL: 12,
})


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def installment_count(request: Solicitacao, benefit_data: Optional[Dict[str, Any]], catalog: BenefitCatalog) -> int:
    """
    Number of installments for a released request.

    Unique benefits always pay once; recurring ones use the period requested
    in the type data (``prazo_meses`` or ``quantidade_parcelas``) or the
    catalog default, capped at the catalog maximum.
    """
    config = catalog.get(request.tipo_beneficio)
    if coerce_periodicity(config.periodicidade) == Periodicity.UNICA:
        return 1

    data = benefit_data or {}
    requested = data.get("prazo_meses") or data.get("quantidade_parcelas")
    try:
        count = int(requested) if requested is not None else config.parcelas_padrao
    except (TypeError, ValueError):
        count = config.parcelas_padrao
    return max(1, min(count, max(config.max_parcelas, 1)))


def installment_value(request: Solicitacao, benefit_data: Optional[Dict[str, Any]], catalog: BenefitCatalog) -> float:
    """
    Value of each installment.

    Social rent pays the informed rent, other benefits the request value or
    the catalog reference value.
    """
    data = benefit_data or {}
    if coerce_benefit_type(request.tipo_beneficio) == BenefitType.ALUGUEL_SOCIAL and data.get("valor_aluguel"):
        return round(float(data["valor_aluguel"]), 2)
    if request.valor is not None:
        return round(float(request.valor), 2)

    reference = catalog.get(request.tipo_beneficio).valor_referencia
    if reference is None:
        raise ValidationFailed(
            "Benefit value could not be determined",
            [FieldError("valor", "Valor do benefício não informado", "required")]
        )
    return round(float(reference), 2)


def build_payment(
    request: Solicitacao,
    benefit_data: Optional[Dict[str, Any]],
    catalog: BenefitCatalog,
    created_by: str,
    release_date: Optional[date] = None
) -> Pagamento:
    """Build the payment schedule of a released request."""
    config = catalog.get(request.tipo_beneficio)
    periodicity = coerce_periodicity(config.periodicidade)
    count = installment_count(request, benefit_data, catalog)
    value = installment_value(request, benefit_data, catalog)

    if release_date is None:
        released_at = request.data_liberacao or datetime.utcnow()
        release_date = released_at.date() if isinstance(released_at, datetime) else released_at

    step = MONTHS_PER_PERIOD[periodicity]
    installments: List[ParcelaPagamento] = [
        ParcelaPagamento(
            numero=number,
            valor=value,
            data_vencimento=add_months(release_date, step * (number - 1))
        )
        for number in range(1, count + 1)
    ]

    return Pagamento(
        solicitacao_id=request.id,
        tipo_beneficio=request.tipo_beneficio,
        periodicidade=periodicity,
        valor_total=round(value * count, 2),
        parcelas=installments,
        created_by=created_by,
        updated_by=created_by
    )


def _update_installment(
    payment: Pagamento,
    number: int,
    user_id: str,
    changes: Dict[str, Any]
) -> Pagamento:
    installments = []
    found = False
    for installment in payment.parcelas:
        if installment.numero == number:
            found = True
            if installment.status != InstallmentStatus.PENDENTE:
                raise InvalidTransition(
                    f"Installment {number} is already {installment.status}",
                    {"pagamento_id": payment.id, "parcela": number, "status": installment.status}
                )
            installment = ParcelaPagamento.model_validate({**installment.model_dump(), **changes})
        installments.append(installment)

    if not found:
        raise NotFound(
            f"Installment {number} not found in payment {payment.id}",
            {"pagamento_id": payment.id, "parcela": number}
        )

    return payment.model_copy(update={
        "parcelas": installments,
        "updated_at": datetime.utcnow(),
        "updated_by": user_id
    })


def mark_installment_paid(
    payment: Pagamento,
    number: int,
    user_id: str,
    paid_at: Optional[datetime] = None
) -> Pagamento:
    """Mark one pending installment as paid."""
    return _update_installment(payment, number, user_id, {
        "status": InstallmentStatus.PAGA,
        "data_pagamento": paid_at or datetime.utcnow()
    })


def cancel_installment(payment: Pagamento, number: int, user_id: str) -> Pagamento:
    """Cancel one pending installment."""
    return _update_installment(payment, number, user_id, {"status": InstallmentStatus.CANCELADA})
