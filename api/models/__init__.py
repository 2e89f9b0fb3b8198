# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas for the benefit request workflow engine.
"""

# Base models
from .base import BaseEntity, VersionedEntity, generate_object_id

# Enumerations
from .enums import (
    RequestStatus,
    TERMINAL_STATUSES,
    BenefitType,
    PendencyStatus,
    ApprovalStrategy,
    ApprovalStatus,
    Decision,
    JudicialDirective,
    Periodicity,
    InstallmentStatus,
    HistoryReason,
    Role
)

# Core entities
from .entities import (
    Solicitacao,
    DadosBeneficio,
    Pendencia,
    AcaoAprovacao,
    AprovadorConfigurado,
    AprovadorDesignado,
    SolicitacaoAprovacao,
    DeterminacaoJudicial,
    HistoricoStatus,
    ParcelaPagamento,
    Pagamento,
    UserContext
)

__all__ = [
    # Base
    "BaseEntity",
    "VersionedEntity",
    "generate_object_id",

    # Enums
    "RequestStatus",
    "TERMINAL_STATUSES",
    "BenefitType",
    "PendencyStatus",
    "ApprovalStrategy",
    "ApprovalStatus",
    "Decision",
    "JudicialDirective",
    "Periodicity",
    "InstallmentStatus",
    "HistoryReason",
    "Role",

    # Entities
    "Solicitacao",
    "DadosBeneficio",
    "Pendencia",
    "AcaoAprovacao",
    "AprovadorConfigurado",
    "AprovadorDesignado",
    "SolicitacaoAprovacao",
    "DeterminacaoJudicial",
    "HistoricoStatus",
    "ParcelaPagamento",
    "Pagamento",
    "UserContext",
]
