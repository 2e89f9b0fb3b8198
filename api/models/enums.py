# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the benefit request workflow engine.

Values are the persisted strings of the municipal benefits schema and must
not be renamed.
"""

from enum import Enum


class RequestStatus(str, Enum):
    """Benefit request (solicitacao) workflow status."""
    RASCUNHO = "rascunho"
    ABERTA = "aberta"
    EM_ANALISE = "em_analise"
    PENDENTE = "pendente"
    AGUARDANDO_DOCUMENTOS = "aguardando_documentos"
    APROVADA = "aprovada"
    INDEFERIDA = "indeferida"
    LIBERADA = "liberada"
    EM_PROCESSAMENTO = "em_processamento"
    CONCLUIDA = "concluida"
    ARQUIVADA = "arquivada"
    REJEITADA = "rejeitada"
    CANCELADA = "cancelada"


TERMINAL_STATUSES = frozenset({
    RequestStatus.CONCLUIDA,
    RequestStatus.CANCELADA,
    RequestStatus.ARQUIVADA,
    RequestStatus.INDEFERIDA,
    RequestStatus.REJEITADA,
})


class BenefitType(str, Enum):
    """Benefit types handled by the engine."""
    NATALIDADE = "natalidade"
    ALUGUEL_SOCIAL = "aluguel_social"
    FUNERAL = "funeral"
    CESTA_BASICA = "cesta_basica"


class PendencyStatus(str, Enum):
    """Pendency lifecycle status."""
    ABERTA = "aberta"
    EM_RESOLUCAO = "em_resolucao"
    RESOLVIDA = "resolvida"
    CANCELADA = "cancelada"


class ApprovalStrategy(str, Enum):
    """How the approvers of an action are consulted."""
    SEQUENCIAL = "sequencial"
    PARALELA = "paralela"


class ApprovalStatus(str, Enum):
    """Aggregate status of a per-request approval."""
    PENDENTE = "pendente"
    APROVADA = "aprovada"
    REJEITADA = "rejeitada"
    CANCELADA = "cancelada"


class Decision(str, Enum):
    """Individual approver decision."""
    PENDENTE = "pendente"
    APROVADO = "aprovado"
    REJEITADO = "rejeitado"


class JudicialDirective(str, Enum):
    """Kind of court determination linked to a request."""
    CONCESSAO = "concessao"
    SUSPENSAO = "suspensao"
    CANCELAMENTO = "cancelamento"
    ALTERACAO = "alteracao"


class Periodicity(str, Enum):
    """Payment periodicity of a benefit."""
    UNICA = "unica"
    MENSAL = "mensal"
    BIMESTRAL = "bimestral"
    TRIMESTRAL = "trimestral"
    SEMESTRAL = "semestral"
    ANUAL = "anual"


class InstallmentStatus(str, Enum):
    """Payment installment status."""
    PENDENTE = "pendente"
    PAGA = "paga"
    CANCELADA = "cancelada"


class HistoryReason(str, Enum):
    """Why a status history row was written."""
    CRIACAO = "criacao"
    TRANSICAO = "transicao"
    DETERMINACAO_JUDICIAL = "determinacao_judicial"
    RENOVACAO_ENCERRADA = "renovacao_encerrada"


class Role(str, Enum):
    """User roles recognised at the access-control boundary."""
    ADMIN = "admin"
    GESTOR = "gestor"
    COORDENADOR = "coordenador"
    TECNICO = "tecnico"
    ASSISTENTE_SOCIAL = "assistente_social"
    AUDITOR = "auditor"
