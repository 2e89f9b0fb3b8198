# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import itertools
import pytest
from datetime import datetime
from typing import Dict, Any
from unittest.mock import Mock

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'

from models.entities import AprovadorConfigurado
from domain.catalog import build_default_catalog
from services.amqp import Notifier, PublishResult
from services.engine import WorkflowEngine
from services.repository import InMemoryWorkflowRepository


FIXED_NOW = datetime(2024, 3, 15, 10, 0, 0)

_protocols = itertools.count(1)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_notifier() -> Mock:
    """Notifier double that records every event and always succeeds."""
    notifier = Mock(spec=Notifier)
    notifier.notify.side_effect = lambda event, payload: PublishResult(
        success=True, correlation_id="test-correlation", exchange="test", routing_key=event
    )
    return notifier


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def catalog():
    """Default benefit catalog."""
    return build_default_catalog()


@pytest.fixture
def repository():
    """Fresh in-memory repository."""
    return InMemoryWorkflowRepository()


@pytest.fixture
def notifier():
    return make_notifier()


@pytest.fixture
def configured_approvers():
    """Two sequential approvers of the default concession action."""
    return [
        AprovadorConfigurado(acao_codigo="conceder_beneficio", usuario_id="coord-1", ordem=1),
        AprovadorConfigurado(acao_codigo="conceder_beneficio", usuario_id="gestor-1", ordem=2),
    ]


@pytest.fixture
def engine(repository, notifier, catalog, configured_approvers):
    """Workflow engine on the in-memory repository with a fixed clock."""
    workflow = WorkflowEngine(
        repository,
        notifier,
        catalog,
        configured_approvers=configured_approvers,
        clock=fixed_clock,
        base_delay=0
    )
    workflow.register_user({"id": "tecnico-1", "role": "tecnico", "unidade_id": "unidade-1"})
    workflow.register_user({"id": "coord-1", "role": {"nome": "coordenador"}, "unidade_id": "unidade-1"})
    workflow.register_user({"id": "gestor-1", "role": "gestor"})
    return workflow


@pytest.fixture
def benefit_payloads() -> Dict[str, Dict[str, Any]]:
    """Valid type-specific payloads per benefit type, relative to FIXED_NOW."""
    return {
        "natalidade": {"data_provavel_parto": "2024-05-01"},
        "aluguel_social": {"motivo": "despejo", "valor_aluguel": 800, "prazo_meses": 3},
        "funeral": {"data_obito": "2024-03-10", "possui_certidao_obito": True},
        "cesta_basica": {
            "quantidade_pessoas_familia": 4,
            "tipo_entrega": "presencial",
            "quantidade_parcelas": 3
        },
    }


@pytest.fixture
def sample_request_fields():
    """Factory of Solicitacao fields with a unique protocol."""
    def build(tipo: str = "aluguel_social", **overrides) -> Dict[str, Any]:
        fields = {
            "protocolo": f"2024-{next(_protocols):06d}",
            "beneficiario_id": "cidadao-1",
            "solicitante_id": "cidadao-1",
            "tipo_beneficio": tipo,
            "unidade_id": "unidade-1",
            "tecnico_id": "tecnico-1",
        }
        fields.update(overrides)
        return fields
    return build


@pytest.fixture
def create_request(engine, sample_request_fields, benefit_payloads):
    """Create a draft request of a benefit type with valid data."""
    def create(tipo: str = "aluguel_social", data: Any = None, **overrides):
        payload = benefit_payloads[tipo] if data is None else data
        return engine.create_request(sample_request_fields(tipo, **overrides), payload, "tecnico-1")
    return create


@pytest.fixture
def request_in_analysis(engine, create_request):
    """Create a request and move it to em_analise."""
    def create(tipo: str = "aluguel_social", **overrides):
        request = create_request(tipo, **overrides)
        engine.transition(request.id, "aberta", "tecnico-1")
        return engine.transition(request.id, "em_analise", "tecnico-1")
    return create


@pytest.fixture
def approved_request(engine, request_in_analysis):
    """Create a request and take it through both sequential approvals."""
    def create(tipo: str = "aluguel_social", **overrides):
        request = request_in_analysis(tipo, **overrides)
        approval = engine.request_approval(request.id, "tecnico-1")
        engine.decide(approval.id, "coord-1", "aprovado", "Documentação completa")
        engine.decide(approval.id, "gestor-1", "aprovado", "De acordo")
        return engine.get_request(request.id)
    return create
