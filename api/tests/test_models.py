# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for Pydantic models.
"""

import pytest
from datetime import datetime, date
from pydantic import ValidationError
from bson import ObjectId

from models.entities import (
    Solicitacao, Pendencia, SolicitacaoAprovacao, AprovadorDesignado,
    HistoricoStatus, Pagamento, ParcelaPagamento, UserContext, AcaoAprovacao
)
from models.enums import RequestStatus, PendencyStatus, Periodicity, InstallmentStatus


def request_data(**overrides):
    data = {
        "protocolo": "2024-000001",
        "beneficiario_id": str(ObjectId()),
        "solicitante_id": str(ObjectId()),
        "tipo_beneficio": "funeral",
        "unidade_id": str(ObjectId()),
        "tecnico_id": str(ObjectId()),
        "created_by": "tecnico-1",
        "updated_by": "tecnico-1"
    }
    data.update(overrides)
    return data


class TestSolicitacaoModel:
    """Test Solicitacao model validation."""

    def test_valid_request(self):
        """Test valid request creation with defaults."""
        request = Solicitacao(**request_data())

        assert request.status == "rascunho"
        assert request.version == 1
        assert request.contador_renovacoes == 0
        assert request.renovacao_automatica is False
        assert ObjectId.is_valid(request.id)
        assert isinstance(request.created_at, datetime)

    def test_protocol_is_stripped(self):
        request = Solicitacao(**request_data(protocolo="  2024-000002  "))
        assert request.protocolo == "2024-000002"

    def test_blank_protocol_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Solicitacao(**request_data(protocolo="   "))
        assert "Protocol number cannot be empty" in str(exc_info.value)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            Solicitacao(**request_data(status="suspensa"))

    def test_unknown_benefit_type_rejected(self):
        with pytest.raises(ValidationError):
            Solicitacao(**request_data(tipo_beneficio="bolsa_familia"))

    def test_approved_requires_approval_timestamp(self):
        with pytest.raises(ValidationError) as exc_info:
            Solicitacao(**request_data(status=RequestStatus.APROVADA))
        assert "data_aprovacao is required" in str(exc_info.value)

    def test_released_requires_release_timestamp(self):
        with pytest.raises(ValidationError) as exc_info:
            Solicitacao(**request_data(status="liberada", data_aprovacao=datetime(2024, 3, 1)))
        assert "data_liberacao is required" in str(exc_info.value)

    def test_draft_cannot_carry_stage_timestamps(self):
        with pytest.raises(ValidationError):
            Solicitacao(**request_data(data_aprovacao=datetime(2024, 3, 1)))

    def test_request_cannot_renew_itself(self):
        request_id = str(ObjectId())
        with pytest.raises(ValidationError):
            Solicitacao(**request_data(id=request_id, solicitacao_original_id=request_id))

    def test_version_must_be_positive(self):
        with pytest.raises(ValidationError):
            Solicitacao(**request_data(version=0))


class TestPendenciaModel:
    """Test Pendencia model validation."""

    def test_resolved_requires_resolver(self):
        with pytest.raises(ValidationError) as exc_info:
            Pendencia(
                solicitacao_id="req-1",
                descricao="Falta comprovante de residência",
                registrado_por_id="tecnico-1",
                status=PendencyStatus.RESOLVIDA,
                created_by="tecnico-1",
                updated_by="tecnico-1"
            )
        assert "resolvido_por_id and data_resolucao are required" in str(exc_info.value)

    def test_description_is_stripped(self):
        pendency = Pendencia(
            solicitacao_id="req-1",
            descricao="  Falta RG  ",
            registrado_por_id="tecnico-1",
            created_by="tecnico-1",
            updated_by="tecnico-1"
        )
        assert pendency.descricao == "Falta RG"
        assert pendency.status == "aberta"


class TestApprovalModels:
    """Test approval template and instance models."""

    def test_quorum_cannot_exceed_approvers(self):
        with pytest.raises(ValidationError):
            SolicitacaoAprovacao(
                solicitacao_id="req-1",
                acao_codigo="conceder_beneficio",
                estrategia="paralela",
                quorum=3,
                aprovadores=[
                    AprovadorDesignado(usuario_id="a", ordem=1),
                    AprovadorDesignado(usuario_id="b", ordem=1)
                ],
                created_by="tecnico-1",
                updated_by="tecnico-1"
            )

    def test_find_approver(self):
        approval = SolicitacaoAprovacao(
            solicitacao_id="req-1",
            acao_codigo="conceder_beneficio",
            estrategia="sequencial",
            quorum=1,
            aprovadores=[AprovadorDesignado(usuario_id="a", ordem=1)],
            created_by="tecnico-1",
            updated_by="tecnico-1"
        )
        assert approval.find_approver("a").ordem == 1
        assert approval.find_approver("b") is None

    def test_action_template_is_frozen(self):
        action = AcaoAprovacao(codigo="conceder_beneficio")
        assert action.limite_rejeicoes == 1
        assert action.min_aprovadores is None
        with pytest.raises(ValidationError):
            action.codigo = "outra"


class TestHistoricoStatusModel:
    """Test history rows."""

    def test_history_row_is_immutable(self):
        entry = HistoricoStatus(
            solicitacao_id="req-1",
            status_anterior="aberta",
            status_novo="em_analise",
            usuario_id="tecnico-1"
        )
        assert entry.motivo == "transicao"
        with pytest.raises(ValidationError):
            entry.status_novo = "aprovada"


class TestPagamentoModel:
    """Test payment models."""

    def test_unique_payment_has_one_installment(self):
        installments = [
            ParcelaPagamento(numero=1, valor=100.0, data_vencimento=date(2024, 3, 15)),
            ParcelaPagamento(numero=2, valor=100.0, data_vencimento=date(2024, 4, 15))
        ]
        with pytest.raises(ValidationError):
            Pagamento(
                solicitacao_id="req-1",
                tipo_beneficio="funeral",
                periodicidade=Periodicity.UNICA,
                valor_total=200.0,
                parcelas=installments,
                created_by="sistema",
                updated_by="sistema"
            )

    def test_paid_installment_requires_payment_date(self):
        with pytest.raises(ValidationError):
            ParcelaPagamento(
                numero=1,
                valor=100.0,
                data_vencimento=date(2024, 3, 15),
                status=InstallmentStatus.PAGA
            )


class TestUserContext:
    """Test user context helpers."""

    def test_has_permission(self):
        user = UserContext(user_id="u1", role="gestor", permissions=["solicitacao:aprovar"])
        assert user.has_permission("solicitacao:aprovar")
        assert not user.has_permission("pagamento:gerenciar")
        assert user.role == "gestor"
