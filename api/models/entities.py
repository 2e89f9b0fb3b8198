# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the benefit request workflow engine.
"""

from datetime import datetime, date
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, VersionedEntity, generate_object_id
from .enums import (
    RequestStatus,
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


APPROVED_STAGE = {
    RequestStatus.APROVADA.value,
    RequestStatus.LIBERADA.value,
    RequestStatus.EM_PROCESSAMENTO.value,
    RequestStatus.CONCLUIDA.value,
}

RELEASED_STAGE = {
    RequestStatus.LIBERADA.value,
    RequestStatus.EM_PROCESSAMENTO.value,
    RequestStatus.CONCLUIDA.value,
}


class Solicitacao(VersionedEntity):
    """Citizen benefit request."""

    protocolo: str = Field(..., min_length=1, max_length=40, description="Unique protocol number")
    beneficiario_id: str = Field(..., description="Beneficiary citizen ID")
    solicitante_id: str = Field(..., description="Requesting citizen ID")
    tipo_beneficio: BenefitType = Field(..., description="Benefit type")
    unidade_id: str = Field(..., description="Attending unit ID")
    tecnico_id: str = Field(..., description="Assigned technician user ID")
    status: RequestStatus = Field(default=RequestStatus.RASCUNHO, description="Workflow status")
    valor: Optional[float] = Field(None, ge=0, description="Requested benefit value")
    aprovador_id: Optional[str] = Field(None, description="User ID who approved")
    data_aprovacao: Optional[datetime] = Field(None, description="Approval timestamp")
    liberador_id: Optional[str] = Field(None, description="User ID who released")
    data_liberacao: Optional[datetime] = Field(None, description="Release timestamp")
    data_conclusao: Optional[datetime] = Field(None, description="Conclusion timestamp")
    determinacao_judicial_flag: bool = Field(default=False, description="Linked to a court determination")
    determinacao_judicial_id: Optional[str] = Field(None, description="Court determination ID")
    renovacao_automatica: bool = Field(default=False, description="Automatic renewal enabled")
    contador_renovacoes: int = Field(default=0, ge=0, description="Number of renewals so far")
    data_proxima_renovacao: Optional[date] = Field(None, description="Next renewal due date")
    solicitacao_original_id: Optional[str] = Field(None, description="Previous request in the renewal chain")
    observacoes: Optional[str] = Field(None, max_length=2000, description="Free-text notes")

    @field_validator('protocolo')
    @classmethod
    def validate_protocolo(cls, v):
        """Validate protocol number."""
        if not v.strip():
            raise ValueError('Protocol number cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_stage_timestamps(self):
        """Approval and release timestamps exist only once the stage was reached."""
        if self.status in APPROVED_STAGE and self.data_aprovacao is None:
            raise ValueError('data_aprovacao is required once the request is approved')

        if self.status in RELEASED_STAGE and self.data_liberacao is None:
            raise ValueError('data_liberacao is required once the request is released')

        if self.status == RequestStatus.RASCUNHO and (self.data_aprovacao or self.data_liberacao):
            raise ValueError('Draft requests cannot carry approval or release timestamps')

        if self.solicitacao_original_id and self.solicitacao_original_id == self.id:
            raise ValueError('Request cannot be its own original request')

        return self


class DadosBeneficio(BaseEntity):
    """Type-specific data attached to exactly one request."""

    solicitacao_id: str = Field(..., description="Owning request ID")
    tipo: BenefitType = Field(..., description="Discriminator, must match the request benefit type")
    dados: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")


class Pendencia(VersionedEntity):
    """Blocking issue raised against a request."""

    solicitacao_id: str = Field(..., description="Owning request ID")
    descricao: str = Field(..., min_length=1, max_length=1000, description="What must be fixed")
    registrado_por_id: str = Field(..., description="User ID who raised the pendency")
    prazo_resolucao: Optional[datetime] = Field(None, description="Resolution deadline")
    status: PendencyStatus = Field(default=PendencyStatus.ABERTA, description="Pendency status")
    resolvido_por_id: Optional[str] = Field(None, description="User ID who resolved")
    data_resolucao: Optional[datetime] = Field(None, description="Resolution timestamp")
    observacao_resolucao: Optional[str] = Field(None, max_length=1000, description="Resolution note")

    @field_validator('descricao')
    @classmethod
    def validate_descricao(cls, v):
        """Validate description."""
        if not v.strip():
            raise ValueError('Pendency description cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_resolution_fields(self):
        """Resolved pendencies must record who resolved them and when."""
        if self.status == PendencyStatus.RESOLVIDA and (not self.resolvido_por_id or not self.data_resolucao):
            raise ValueError('resolvido_por_id and data_resolucao are required when status is resolvida')
        return self


class AcaoAprovacao(BaseModel):
    """Template describing who must sign off on a critical action."""

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    codigo: str = Field(..., min_length=1, description="Action code")
    descricao: Optional[str] = Field(None, description="Human-readable description")
    estrategia: ApprovalStrategy = Field(default=ApprovalStrategy.SEQUENCIAL, description="Approval strategy")
    min_aprovadores: Optional[int] = Field(None, ge=1, description="Minimum approvers, all assigned when unset")
    limite_rejeicoes: int = Field(default=1, ge=1, description="Rejections that reject the aggregate (parallel only)")
    perfis_permitidos: List[Role] = Field(default_factory=list, description="Roles eligible to approve")
    unidade_id: Optional[str] = Field(None, description="Restrict approvers to this unit")
    valor_minimo: Optional[float] = Field(None, ge=0, description="Approval required from this value on")
    ativa: bool = Field(default=True, description="Whether the action is active")


class AprovadorConfigurado(BaseModel):
    """Eligible approver for an approval action template."""

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    acao_codigo: str = Field(..., description="Approval action code")
    usuario_id: str = Field(..., description="Approver user ID")
    ordem: int = Field(default=1, ge=1, description="Order index for sequential strategy")
    valor_limite: Optional[float] = Field(None, ge=0, description="Authority ceiling")
    ativo: bool = Field(default=True, description="Whether the approver is active")


class AprovadorDesignado(BaseModel):
    """Approver assigned to a concrete request approval."""

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    usuario_id: str = Field(..., description="Approver user ID")
    ordem: int = Field(..., ge=1, description="Order index")
    decisao: Decision = Field(default=Decision.PENDENTE, description="Individual decision")
    justificativa: Optional[str] = Field(None, max_length=2000, description="Decision justification")
    anexos: List[str] = Field(default_factory=list, description="Attachment references")
    data_decisao: Optional[datetime] = Field(None, description="Decision timestamp")
    delegado_por_id: Optional[str] = Field(None, description="Approver who delegated this slot")
    justificativa_delegacao: Optional[str] = Field(None, max_length=2000, description="Delegation justification")


class SolicitacaoAprovacao(VersionedEntity):
    """Per-request instantiation of an approval action."""

    solicitacao_id: str = Field(..., description="Request under approval")
    acao_codigo: str = Field(..., description="Approval action code")
    estrategia: ApprovalStrategy = Field(..., description="Approval strategy")
    quorum: int = Field(..., ge=1, description="Approvals needed")
    limite_rejeicoes: int = Field(default=1, ge=1, description="Rejections that reject the aggregate")
    status: ApprovalStatus = Field(default=ApprovalStatus.PENDENTE, description="Aggregate status")
    aprovadores: List[AprovadorDesignado] = Field(default_factory=list, description="Assigned approvers")
    dispensada_judicialmente: bool = Field(default=False, description="Made irrelevant by a court determination")
    data_conclusao: Optional[datetime] = Field(None, description="When the aggregate became terminal")
    motivo_cancelamento: Optional[str] = Field(None, max_length=1000, description="Why the approval was cancelled")

    @model_validator(mode='after')
    def validate_quorum(self):
        """Quorum cannot exceed the number of assigned approvers."""
        if self.aprovadores and self.quorum > len(self.aprovadores):
            raise ValueError('Quorum cannot exceed the number of assigned approvers')
        return self

    def find_approver(self, usuario_id: str) -> Optional[AprovadorDesignado]:
        """Return the assigned approver entry for a user, if any."""
        for approver in self.aprovadores:
            if approver.usuario_id == usuario_id:
                return approver
        return None


class DeterminacaoJudicial(BaseEntity):
    """Court determination linked to a request."""

    solicitacao_id: str = Field(..., description="Affected request ID")
    tipo: JudicialDirective = Field(..., description="Directive type")
    numero_processo: str = Field(..., min_length=1, description="Court case number")
    orgao_judicial: Optional[str] = Field(None, description="Issuing court")
    data_determinacao: datetime = Field(default_factory=datetime.utcnow, description="Determination date")
    ativa: bool = Field(default=True, description="Whether the determination is in force")
    observacao: Optional[str] = Field(None, max_length=2000, description="Notes")


class HistoricoStatus(BaseModel):
    """Append-only status history row."""

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    solicitacao_id: str = Field(..., description="Request ID")
    status_anterior: Optional[RequestStatus] = Field(None, description="Status before the change")
    status_novo: RequestStatus = Field(..., description="Status after the change")
    usuario_id: str = Field(..., description="Acting user ID")
    data: datetime = Field(default_factory=datetime.utcnow, description="Change timestamp")
    observacao: Optional[str] = Field(None, description="Free-text observation")
    motivo: HistoryReason = Field(default=HistoryReason.TRANSICAO, description="Why the row was written")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, description="Schema version")


class ParcelaPagamento(BaseModel):
    """Single installment of a payment."""

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    numero: int = Field(..., ge=1, description="Installment number")
    valor: float = Field(..., ge=0, description="Installment value")
    data_vencimento: date = Field(..., description="Due date")
    status: InstallmentStatus = Field(default=InstallmentStatus.PENDENTE, description="Installment status")
    data_pagamento: Optional[datetime] = Field(None, description="Payment timestamp")

    @model_validator(mode='after')
    def validate_payment_date(self):
        """Paid installments must record when they were paid."""
        if self.status == InstallmentStatus.PAGA and self.data_pagamento is None:
            raise ValueError('data_pagamento is required when installment is paga')
        return self


class Pagamento(BaseEntity):
    """Payment created when a request is released."""

    solicitacao_id: str = Field(..., description="Released request ID")
    tipo_beneficio: BenefitType = Field(..., description="Benefit type")
    periodicidade: Periodicity = Field(..., description="Payment periodicity")
    valor_total: float = Field(..., ge=0, description="Sum of all installments")
    parcelas: List[ParcelaPagamento] = Field(default_factory=list, description="Installments")

    @model_validator(mode='after')
    def validate_installments(self):
        """Unique payments have exactly one installment."""
        if self.periodicidade == Periodicity.UNICA and len(self.parcelas) != 1:
            raise ValueError('Unique payments must have exactly one installment')
        return self


class UserContext(BaseModel):
    """Acting user as resolved at the access-control boundary."""

    user_id: str = Field(..., description="Authenticated user ID")
    role: Role = Field(..., description="Resolved user role")
    unidade_id: Optional[str] = Field(None, description="User's unit, None for global users")
    name: Optional[str] = Field(None, description="User display name")
    permissions: List[str] = Field(default_factory=list, description="User's effective permissions")
    ativo: bool = Field(default=True, description="Whether the user is active")

    model_config = ConfigDict(
        use_enum_values=True
    )

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions
