# SPDX-License-Identifier: Apache-2.0

"""
Fixtures for acceptance scenarios run against the full workflow engine.
"""

import os
import itertools
import pytest
from datetime import datetime

os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('OTEL_ENABLED', 'false')

from models.entities import AprovadorConfigurado
from services.amqp import LoggingNotifier
from services.engine import create_workflow_engine
from services.repository import InMemoryWorkflowRepository
from settings import WorkflowSettings


SCENARIO_NOW = datetime(2024, 3, 15, 10, 0, 0)

_protocols = itertools.count(1)


@pytest.fixture
def workflow():
    """Engine as wired for production, on in-memory storage."""
    engine = create_workflow_engine(
        WorkflowSettings(environment='test', conflict_base_delay_ms=0),
        repository=InMemoryWorkflowRepository(),
        notifier=LoggingNotifier(),
        configured_approvers=[
            AprovadorConfigurado(acao_codigo="conceder_beneficio", usuario_id="coord-1", ordem=1),
            AprovadorConfigurado(acao_codigo="conceder_beneficio", usuario_id="gestor-1", ordem=2),
        ],
        clock=lambda: SCENARIO_NOW
    )
    engine.register_user({"id": "tecnico-1", "role": "tecnico", "unidade_id": "unidade-1"})
    engine.register_user({"id": "coord-1", "role": {"nome": "coordenador"}, "unidade_id": "unidade-1"})
    engine.register_user({"id": "gestor-1", "role": "gestor"})
    return engine


@pytest.fixture
def new_request(workflow):
    """Create a draft request for a citizen."""
    def create(tipo, data, **overrides):
        fields = {
            "protocolo": "2024-%06d" % (900000 + next(_protocols)),
            "beneficiario_id": "cidadao-1",
            "solicitante_id": "cidadao-1",
            "tipo_beneficio": tipo,
            "unidade_id": "unidade-1",
            "tecnico_id": "tecnico-1",
        }
        fields.update(overrides)
        return workflow.create_request(fields, data, "tecnico-1")
    return create
