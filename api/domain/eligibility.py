# SPDX-License-Identifier: Apache-2.0

"""
Eligibility validation for type-specific benefit data.

Pure functions with no side effects. Validation never stops at the first
problem: every violated field is reported so the technician can fix the
whole form in one round-trip.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from models.enums import BenefitType
from .catalog import BenefitCatalog, build_default_catalog, coerce_benefit_type
from .errors import FieldError


MOTIVOS_ALUGUEL_SOCIAL = frozenset({
    "calamidade", "desastre", "vulnerabilidade", "despejo",
    "violencia", "area_risco", "outro"
})

TIPOS_ENTREGA_CESTA_BASICA = frozenset({
    "presencial", "entrega_domicilio", "cartao_alimentacao", "vale_alimentacao"
})


@dataclass
class ValidationResult:
    """Result of type-specific data validation."""
    is_valid: bool
    errors: List[FieldError] = field(default_factory=list)

    @property
    def fields(self) -> List[str]:
        return [error.field for error in self.errors]


def parse_date(value: Any) -> Optional[date]:
    """
    Parse an ISO date, datetime or date string.

    Returns:
        Parsed date or None if the value cannot be interpreted
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _is_present(payload: Dict[str, Any], name: str) -> bool:
    value = payload.get(name)
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _validate_date_field(
    payload: Dict[str, Any],
    name: str,
    errors: List[FieldError]
) -> Optional[date]:
    parsed = parse_date(payload.get(name))
    if parsed is None:
        errors.append(FieldError(name, f"Campo {name} contém uma data inválida", "invalid_date"))
    return parsed


def validate_natalidade(payload: Dict[str, Any], catalog: BenefitCatalog, today: date) -> List[FieldError]:
    """Validate birth aid data."""
    errors: List[FieldError] = []
    limits = catalog.get(BenefitType.NATALIDADE).limites

    has_due_date = _is_present(payload, "data_provavel_parto")
    has_birth_date = _is_present(payload, "data_nascimento")

    if not has_due_date and not has_birth_date:
        errors.append(FieldError(
            "data_provavel_parto",
            "Informe a data provável do parto ou a data de nascimento",
            "required"
        ))

    if has_due_date:
        due_date = _validate_date_field(payload, "data_provavel_parto", errors)
        if due_date is not None:
            days = (due_date - today).days
            if days < -limits.get("max_dias_antes_parto", 30):
                errors.append(FieldError("data_provavel_parto", "Data provável do parto muito antiga", "out_of_range"))
            elif days > limits.get("max_dias_gestacao", 280):
                errors.append(FieldError("data_provavel_parto", "Data provável do parto muito distante", "out_of_range"))

    if has_birth_date:
        birth_date = _validate_date_field(payload, "data_nascimento", errors)
        if birth_date is not None:
            if birth_date > today:
                errors.append(FieldError("data_nascimento", "Data de nascimento não pode ser futura", "out_of_range"))
            elif (today - birth_date).days > limits.get("max_dias_apos_nascimento", 90):
                errors.append(FieldError("data_nascimento", "Prazo para solicitação após o nascimento excedido", "out_of_range"))

    if payload.get("ja_tem_filhos"):
        children = _as_int(payload.get("quantidade_filhos"))
        if children is None or children <= 0:
            errors.append(FieldError("quantidade_filhos", "É obrigatório informar a quantidade de filhos", "required"))
        elif children > limits.get("max_filhos", 20):
            errors.append(FieldError("quantidade_filhos", "Quantidade de filhos acima do permitido", "out_of_range"))

    return errors


def validate_aluguel_social(payload: Dict[str, Any], catalog: BenefitCatalog, today: date) -> List[FieldError]:
    """Validate social rent data."""
    errors: List[FieldError] = []
    limits = catalog.get(BenefitType.ALUGUEL_SOCIAL).limites

    if not _is_present(payload, "motivo"):
        errors.append(FieldError("motivo", "Campo motivo é obrigatório", "required"))
    elif payload["motivo"] not in MOTIVOS_ALUGUEL_SOCIAL:
        errors.append(FieldError("motivo", f"Motivo inválido: {payload['motivo']}", "invalid_choice"))

    if not _is_present(payload, "valor_aluguel"):
        errors.append(FieldError("valor_aluguel", "Campo valor_aluguel é obrigatório", "required"))
    else:
        rent = _as_number(payload.get("valor_aluguel"))
        if rent is None or rent <= 0:
            errors.append(FieldError("valor_aluguel", "Valor do aluguel deve ser maior que zero", "out_of_range"))
        elif limits.get("valor_maximo") is not None and rent > limits["valor_maximo"]:
            errors.append(FieldError("valor_aluguel", "Valor do aluguel acima do teto municipal", "out_of_range"))

    if _is_present(payload, "prazo_meses"):
        months = _as_int(payload.get("prazo_meses"))
        if months is None or months < 1 or months > limits.get("max_meses", 6):
            errors.append(FieldError("prazo_meses", "Prazo em meses fora do intervalo permitido", "out_of_range"))

    return errors


def validate_funeral(payload: Dict[str, Any], catalog: BenefitCatalog, today: date) -> List[FieldError]:
    """Validate funeral aid data."""
    errors: List[FieldError] = []
    max_days = catalog.limit(BenefitType.FUNERAL, "max_dias_apos_obito", 30)

    if not _is_present(payload, "data_obito"):
        errors.append(FieldError("data_obito", "Campo data_obito é obrigatório", "required"))
    else:
        death_date = _validate_date_field(payload, "data_obito", errors)
        if death_date is not None:
            if death_date > today:
                errors.append(FieldError("data_obito", "Data do óbito não pode ser futura", "out_of_range"))
            elif (today - death_date).days > max_days:
                errors.append(FieldError(
                    "data_obito",
                    f"Solicitação deve ser feita em até {max_days} dias após o óbito",
                    "out_of_range"
                ))

    if payload.get("possui_certidao_obito") is not True:
        errors.append(FieldError("possui_certidao_obito", "Certidão de óbito é obrigatória", "required"))

    return errors


def validate_cesta_basica(payload: Dict[str, Any], catalog: BenefitCatalog, today: date) -> List[FieldError]:
    """Validate food basket data."""
    errors: List[FieldError] = []
    limits = catalog.get(BenefitType.CESTA_BASICA).limites

    if not _is_present(payload, "quantidade_pessoas_familia"):
        errors.append(FieldError("quantidade_pessoas_familia", "Campo quantidade_pessoas_familia é obrigatório", "required"))
    else:
        family_size = _as_int(payload.get("quantidade_pessoas_familia"))
        if family_size is None or family_size < 1:
            errors.append(FieldError("quantidade_pessoas_familia", "Composição familiar deve ter ao menos uma pessoa", "out_of_range"))
        elif family_size > limits.get("max_pessoas", 20):
            errors.append(FieldError("quantidade_pessoas_familia", "Composição familiar acima do permitido", "out_of_range"))

    if not _is_present(payload, "tipo_entrega"):
        errors.append(FieldError("tipo_entrega", "Campo tipo_entrega é obrigatório", "required"))
    elif payload["tipo_entrega"] not in TIPOS_ENTREGA_CESTA_BASICA:
        errors.append(FieldError("tipo_entrega", f"Tipo de entrega inválido: {payload['tipo_entrega']}", "invalid_choice"))

    if _is_present(payload, "quantidade_parcelas"):
        installments = _as_int(payload.get("quantidade_parcelas"))
        if installments is None or installments < 1 or installments > limits.get("max_parcelas", 6):
            errors.append(FieldError("quantidade_parcelas", "Quantidade de parcelas fora do intervalo permitido", "out_of_range"))

    return errors


RULES: Dict[BenefitType, Callable[[Dict[str, Any], BenefitCatalog, date], List[FieldError]]] = {
    BenefitType.NATALIDADE: validate_natalidade,
    BenefitType.ALUGUEL_SOCIAL: validate_aluguel_social,
    BenefitType.FUNERAL: validate_funeral,
    BenefitType.CESTA_BASICA: validate_cesta_basica,
}

_DEFAULT_CATALOG = build_default_catalog()


def validate(
    benefit_type: Any,
    payload: Any,
    catalog: Optional[BenefitCatalog] = None,
    today: Optional[date] = None
) -> ValidationResult:
    """
    Validate type-specific benefit data.

    Args:
        benefit_type: Benefit type (enum member or persisted string)
        payload: Type-specific data dictionary
        catalog: Benefit catalog with validation limits
        today: Reference date for relative date rules

    Returns:
        ValidationResult listing every violated field

    Raises:
        SchemaViolation: if the benefit type is unknown
    """
    tipo = coerce_benefit_type(benefit_type)
    catalog = catalog or _DEFAULT_CATALOG
    today = today or date.today()

    if not isinstance(payload, dict):
        return ValidationResult(
            is_valid=False,
            errors=[FieldError("dados", "Dados do benefício devem ser um objeto", "invalid_type")]
        )

    errors = RULES[tipo](payload, catalog, today)
    return ValidationResult(is_valid=len(errors) == 0, errors=errors)
