# SPDX-License-Identifier: Apache-2.0

"""
Automatic renewal domain logic.

A concluded request with automatic renewal spawns a new draft request that
points back at it, carrying a copy of its type-specific data.
"""

import copy
from datetime import date, datetime, timedelta
from typing import Optional

from models.enums import RequestStatus, Periodicity
from models.entities import Solicitacao, DadosBeneficio
from .catalog import BenefitConfig, coerce_periodicity, coerce_status
from .payments import MONTHS_PER_PERIOD, add_months


def renewal_limit_reached(request: Solicitacao, config: BenefitConfig) -> bool:
    """Check whether the renewal counter reached the configured maximum."""
    if config.max_renovacoes is None:
        return False
    return request.contador_renovacoes >= config.max_renovacoes


def can_renew(request: Solicitacao, config: BenefitConfig) -> bool:
    """
    Check whether a request is due to spawn its renewal.

    Only concluded requests with automatic renewal enabled and counter below
    the configured maximum renew.
    """
    if not request.renovacao_automatica:
        return False
    if coerce_status(request.status) != RequestStatus.CONCLUIDA:
        return False
    return not renewal_limit_reached(request, config)


def next_renewal_date(
    concluded_at: datetime,
    config: BenefitConfig,
    installments: Optional[int] = None
) -> date:
    """
    Due date of the next renewal.

    The benefit period (periodicity times installments) is counted from the
    conclusion, minus the configured lead time.
    """
    start = concluded_at.date() if isinstance(concluded_at, datetime) else concluded_at
    periodicity = coerce_periodicity(config.periodicidade)
    months = MONTHS_PER_PERIOD[periodicity] or 1
    if periodicity != Periodicity.UNICA:
        months *= installments or config.parcelas_padrao or 1
    return add_months(start, months) - timedelta(days=config.dias_antecedencia_renovacao)


def renewal_protocol(parent: Solicitacao) -> str:
    """Protocol of the renewal spawned from a parent request."""
    base = parent.protocolo.split("-R")[0]
    return f"{base}-R{parent.contador_renovacoes + 1}"


def build_renewal_request(
    parent: Solicitacao,
    created_by: str,
    now: Optional[datetime] = None
) -> Solicitacao:
    """Build the draft request that renews a concluded parent."""
    now = now or datetime.utcnow()
    return Solicitacao(
        protocolo=renewal_protocol(parent),
        beneficiario_id=parent.beneficiario_id,
        solicitante_id=parent.solicitante_id,
        tipo_beneficio=parent.tipo_beneficio,
        unidade_id=parent.unidade_id,
        tecnico_id=parent.tecnico_id,
        status=RequestStatus.RASCUNHO,
        valor=parent.valor,
        renovacao_automatica=True,
        contador_renovacoes=parent.contador_renovacoes + 1,
        solicitacao_original_id=parent.id,
        observacoes=f"Renovação automática da solicitação {parent.protocolo}",
        created_by=created_by,
        updated_by=created_by,
        created_at=now,
        updated_at=now
    )


def copy_benefit_data(
    data: Optional[DadosBeneficio],
    renewal: Solicitacao,
    created_by: str
) -> Optional[DadosBeneficio]:
    """Deep-copy type-specific data onto the renewal request."""
    if data is None:
        return None
    return DadosBeneficio(
        solicitacao_id=renewal.id,
        tipo=data.tipo,
        dados=copy.deepcopy(data.dados),
        created_by=created_by,
        updated_by=created_by
    )
