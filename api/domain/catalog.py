# SPDX-License-Identifier: Apache-2.0

"""
Immutable lookup tables for persisted enumerations and benefit configuration.

Tables are built once at process start and shared read-only afterwards.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Type, TypeVar
from enum import Enum

from models.enums import (
    RequestStatus, BenefitType, PendencyStatus, JudicialDirective,
    Periodicity, Decision, ApprovalStatus, ApprovalStrategy
)
from .errors import SchemaViolation

E = TypeVar("E", bound=Enum)


def _build_lookup(enum_cls: Type[E]) -> Mapping[str, E]:
    return MappingProxyType({member.value: member for member in enum_cls})


STATUS_LOOKUP = _build_lookup(RequestStatus)
BENEFIT_TYPE_LOOKUP = _build_lookup(BenefitType)
PENDENCY_STATUS_LOOKUP = _build_lookup(PendencyStatus)
DIRECTIVE_LOOKUP = _build_lookup(JudicialDirective)
PERIODICITY_LOOKUP = _build_lookup(Periodicity)
DECISION_LOOKUP = _build_lookup(Decision)
APPROVAL_STATUS_LOOKUP = _build_lookup(ApprovalStatus)
STRATEGY_LOOKUP = _build_lookup(ApprovalStrategy)


def coerce_enum(lookup: Mapping[str, E], value: Any, kind: str) -> E:
    """
    Convert a persisted string (or enum member) into its enum member.

    Raises:
        SchemaViolation: if the value is not part of the fixed set
    """
    raw = value.value if isinstance(value, Enum) else value
    member = lookup.get(raw) if isinstance(raw, str) else None
    if member is None:
        raise SchemaViolation(
            f"Unknown {kind} value: {value!r}",
            {"kind": kind, "value": str(value)}
        )
    return member


def coerce_status(value: Any) -> RequestStatus:
    return coerce_enum(STATUS_LOOKUP, value, "status")


def coerce_benefit_type(value: Any) -> BenefitType:
    return coerce_enum(BENEFIT_TYPE_LOOKUP, value, "tipo_beneficio")


def coerce_pendency_status(value: Any) -> PendencyStatus:
    return coerce_enum(PENDENCY_STATUS_LOOKUP, value, "status_pendencia")


def coerce_directive(value: Any) -> JudicialDirective:
    return coerce_enum(DIRECTIVE_LOOKUP, value, "tipo_determinacao")


def coerce_periodicity(value: Any) -> Periodicity:
    return coerce_enum(PERIODICITY_LOOKUP, value, "periodicidade")


def coerce_decision(value: Any) -> Decision:
    return coerce_enum(DECISION_LOOKUP, value, "decisao")


def coerce_approval_status(value: Any) -> ApprovalStatus:
    return coerce_enum(APPROVAL_STATUS_LOOKUP, value, "status_aprovacao")


def coerce_strategy(value: Any) -> ApprovalStrategy:
    return coerce_enum(STRATEGY_LOOKUP, value, "estrategia")


@dataclass(frozen=True)
class BenefitConfig:
    """Per benefit type configuration."""
    tipo: BenefitType
    periodicidade: Periodicity
    parcelas_padrao: int = 1
    max_parcelas: int = 1
    valor_referencia: Optional[float] = None
    max_renovacoes: Optional[int] = 0
    dias_antecedencia_renovacao: int = 7
    acao_aprovacao: Optional[str] = None
    limites: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


class BenefitCatalog:
    """Read-only registry of benefit configurations keyed by benefit type."""

    def __init__(self, configs: Iterable[BenefitConfig]):
        table: Dict[BenefitType, BenefitConfig] = {}
        for config in configs:
            table[coerce_benefit_type(config.tipo)] = config
        self._table = MappingProxyType(table)

    def get(self, benefit_type: Any) -> BenefitConfig:
        """Return the configuration of a benefit type."""
        tipo = coerce_benefit_type(benefit_type)
        config = self._table.get(tipo)
        if config is None:
            raise SchemaViolation(
                f"No configuration loaded for benefit type {tipo.value}",
                {"tipo_beneficio": tipo.value}
            )
        return config

    def limit(self, benefit_type: Any, name: str, default: Any = None) -> Any:
        """Return a validation limit configured for a benefit type."""
        return self.get(benefit_type).limites.get(name, default)

    def __contains__(self, benefit_type: Any) -> bool:
        try:
            return coerce_benefit_type(benefit_type) in self._table
        except SchemaViolation:
            return False

    def __len__(self) -> int:
        return len(self._table)


def build_default_catalog(
    funeral_max_dias_apos_obito: int = 30,
    natalidade_max_dias_apos_nascimento: int = 90,
    aluguel_social_valor_maximo: float = 1200.0,
    aluguel_social_max_meses: int = 6,
    cesta_basica_max_pessoas: int = 20,
    cesta_basica_max_parcelas: int = 6
) -> BenefitCatalog:
    """Build the catalog of the four municipal benefits."""
    return BenefitCatalog([
        BenefitConfig(
            tipo=BenefitType.NATALIDADE,
            periodicidade=Periodicity.UNICA,
            valor_referencia=500.0,
            max_renovacoes=0,
            acao_aprovacao="conceder_beneficio",
            limites=MappingProxyType({
                "max_dias_apos_nascimento": natalidade_max_dias_apos_nascimento,
                "max_dias_antes_parto": 30,
                "max_dias_gestacao": 280,
                "max_filhos": 20,
            }),
        ),
        BenefitConfig(
            tipo=BenefitType.ALUGUEL_SOCIAL,
            periodicidade=Periodicity.MENSAL,
            parcelas_padrao=aluguel_social_max_meses,
            max_parcelas=aluguel_social_max_meses,
            max_renovacoes=2,
            dias_antecedencia_renovacao=15,
            acao_aprovacao="conceder_beneficio",
            limites=MappingProxyType({
                "valor_maximo": aluguel_social_valor_maximo,
                "max_meses": aluguel_social_max_meses,
            }),
        ),
        BenefitConfig(
            tipo=BenefitType.FUNERAL,
            periodicidade=Periodicity.UNICA,
            valor_referencia=1500.0,
            max_renovacoes=0,
            acao_aprovacao="conceder_beneficio",
            limites=MappingProxyType({
                "max_dias_apos_obito": funeral_max_dias_apos_obito,
            }),
        ),
        BenefitConfig(
            tipo=BenefitType.CESTA_BASICA,
            periodicidade=Periodicity.MENSAL,
            parcelas_padrao=3,
            max_parcelas=cesta_basica_max_parcelas,
            valor_referencia=150.0,
            max_renovacoes=3,
            acao_aprovacao="conceder_beneficio",
            limites=MappingProxyType({
                "max_pessoas": cesta_basica_max_pessoas,
                "max_parcelas": cesta_basica_max_parcelas,
            }),
        ),
    ])
