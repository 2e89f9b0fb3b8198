# SPDX-License-Identifier: Apache-2.0

"""
Runtime settings for the benefit workflow engine, read from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


@dataclass(frozen=True)
class WorkflowSettings:
    """Engine configuration."""
    environment: str = 'development'
    mongodb_uri: Optional[str] = None
    mongodb_database: Optional[str] = None
    amqp_url: Optional[str] = None
    amqp_enabled: bool = False
    workflow_exchange: str = 'beneficios.workflow'

    # Eligibility limits
    funeral_max_dias_apos_obito: int = 30
    natalidade_max_dias_apos_nascimento: int = 90
    aluguel_social_valor_maximo: float = 1200.0
    aluguel_social_max_meses: int = 6
    cesta_basica_max_pessoas: int = 20
    cesta_basica_max_parcelas: int = 6

    # Optimistic concurrency retry
    conflict_max_attempts: int = 3
    conflict_base_delay_ms: int = 50

    @property
    def conflict_base_delay(self) -> float:
        return self.conflict_base_delay_ms / 1000.0

    @property
    def uses_mongodb(self) -> bool:
        return bool(self.mongodb_uri)

    @classmethod
    def from_env(cls) -> "WorkflowSettings":
        """Build settings from environment variables."""
        return cls(
            environment=os.getenv('ENVIRONMENT', 'development'),
            mongodb_uri=os.getenv('MONGODB_URI'),
            mongodb_database=os.getenv('MONGODB_DATABASE'),
            amqp_url=os.getenv('AMQP_URL'),
            amqp_enabled=_env_bool('AMQP_ENABLED', 'false'),
            workflow_exchange=os.getenv('WORKFLOW_EXCHANGE', 'beneficios.workflow'),
            funeral_max_dias_apos_obito=int(os.getenv('FUNERAL_MAX_DIAS_APOS_OBITO', '30')),
            natalidade_max_dias_apos_nascimento=int(os.getenv('NATALIDADE_MAX_DIAS_APOS_NASCIMENTO', '90')),
            aluguel_social_valor_maximo=float(os.getenv('ALUGUEL_SOCIAL_VALOR_MAXIMO', '1200')),
            aluguel_social_max_meses=int(os.getenv('ALUGUEL_SOCIAL_MAX_MESES', '6')),
            cesta_basica_max_pessoas=int(os.getenv('CESTA_BASICA_MAX_PESSOAS', '20')),
            cesta_basica_max_parcelas=int(os.getenv('CESTA_BASICA_MAX_PARCELAS', '6')),
            conflict_max_attempts=int(os.getenv('CONFLICT_MAX_ATTEMPTS', '3')),
            conflict_base_delay_ms=int(os.getenv('CONFLICT_BASE_DELAY_MS', '50'))
        )
