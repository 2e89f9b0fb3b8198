# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for type-specific eligibility validation.
"""

import pytest
from datetime import date, datetime

from models.enums import BenefitType
from domain.catalog import build_default_catalog
from domain.eligibility import validate, parse_date
from domain.errors import SchemaViolation


TODAY = date(2024, 3, 15)


class TestParseDate:
    """Test lenient date parsing."""

    def test_parses_supported_shapes(self):
        assert parse_date("2024-03-01") == date(2024, 3, 1)
        assert parse_date("2024-03-01T08:30:00") == date(2024, 3, 1)
        assert parse_date(datetime(2024, 3, 1, 8, 30)) == date(2024, 3, 1)
        assert parse_date(date(2024, 3, 1)) == date(2024, 3, 1)

    def test_unparseable_values(self):
        assert parse_date("01/03/2024") is None
        assert parse_date("") is None
        assert parse_date(None) is None
        assert parse_date(20240301) is None


class TestNatalidadeValidation:
    """Test birth aid rules."""

    def test_due_date_is_enough(self):
        result = validate("natalidade", {"data_provavel_parto": "2024-05-01"}, today=TODAY)
        assert result.is_valid
        assert result.errors == []

    def test_birth_date_is_enough(self):
        result = validate(BenefitType.NATALIDADE, {"data_nascimento": "2024-03-01"}, today=TODAY)
        assert result.is_valid

    def test_missing_both_dates(self):
        result = validate("natalidade", {}, today=TODAY)

        assert not result.is_valid
        assert "data_provavel_parto" in result.fields
        assert result.errors[0].code == "required"

    def test_future_birth_date(self):
        result = validate("natalidade", {"data_nascimento": "2024-04-01"}, today=TODAY)
        assert result.fields == ["data_nascimento"]

    def test_birth_too_long_ago(self):
        result = validate("natalidade", {"data_nascimento": "2023-10-01"}, today=TODAY)
        assert result.fields == ["data_nascimento"]
        assert result.errors[0].code == "out_of_range"

    def test_due_date_too_far(self):
        result = validate("natalidade", {"data_provavel_parto": "2025-03-01"}, today=TODAY)
        assert result.fields == ["data_provavel_parto"]

    def test_children_count_required(self):
        result = validate(
            "natalidade",
            {"data_provavel_parto": "2024-05-01", "ja_tem_filhos": True},
            today=TODAY
        )
        assert result.fields == ["quantidade_filhos"]

    def test_invalid_date_format(self):
        result = validate("natalidade", {"data_provavel_parto": "01/05/2024"}, today=TODAY)
        assert result.errors[0].code == "invalid_date"


class TestAluguelSocialValidation:
    """Test social rent rules."""

    def test_valid_payload(self):
        result = validate(
            "aluguel_social",
            {"motivo": "despejo", "valor_aluguel": 800, "prazo_meses": 3},
            today=TODAY
        )
        assert result.is_valid

    def test_reports_every_violation(self):
        """All violated fields are reported at once."""
        result = validate("aluguel_social", {"prazo_meses": 12}, today=TODAY)

        assert not result.is_valid
        assert set(result.fields) == {"motivo", "valor_aluguel", "prazo_meses"}

    def test_unknown_reason(self):
        result = validate("aluguel_social", {"motivo": "mudanca", "valor_aluguel": 500}, today=TODAY)
        assert result.fields == ["motivo"]
        assert result.errors[0].code == "invalid_choice"

    def test_rent_above_ceiling(self):
        result = validate("aluguel_social", {"motivo": "despejo", "valor_aluguel": 5000}, today=TODAY)
        assert result.fields == ["valor_aluguel"]

    def test_ceiling_follows_catalog(self):
        catalog = build_default_catalog(aluguel_social_valor_maximo=6000.0)
        result = validate(
            "aluguel_social", {"motivo": "despejo", "valor_aluguel": 5000}, catalog, TODAY
        )
        assert result.is_valid

    def test_non_positive_rent(self):
        result = validate("aluguel_social", {"motivo": "outro", "valor_aluguel": 0}, today=TODAY)
        assert result.fields == ["valor_aluguel"]


class TestFuneralValidation:
    """Test funeral aid rules."""

    def test_valid_payload(self):
        result = validate(
            "funeral", {"data_obito": "2024-03-10", "possui_certidao_obito": True}, today=TODAY
        )
        assert result.is_valid

    def test_death_outside_window(self):
        result = validate(
            "funeral", {"data_obito": "2024-01-02", "possui_certidao_obito": True}, today=TODAY
        )
        assert result.fields == ["data_obito"]
        assert "30 dias" in result.errors[0].message

    def test_missing_certificate_and_date(self):
        result = validate("funeral", {"possui_certidao_obito": False}, today=TODAY)
        assert set(result.fields) == {"data_obito", "possui_certidao_obito"}


class TestCestaBasicaValidation:
    """Test food basket rules."""

    def test_valid_payload(self):
        result = validate(
            "cesta_basica",
            {"quantidade_pessoas_familia": 4, "tipo_entrega": "presencial"},
            today=TODAY
        )
        assert result.is_valid

    def test_family_size_and_delivery(self):
        result = validate(
            "cesta_basica",
            {"quantidade_pessoas_familia": 0, "tipo_entrega": "drone"},
            today=TODAY
        )
        assert set(result.fields) == {"quantidade_pessoas_familia", "tipo_entrega"}

    def test_installments_above_maximum(self):
        result = validate(
            "cesta_basica",
            {"quantidade_pessoas_familia": 2, "tipo_entrega": "presencial", "quantidade_parcelas": 9},
            today=TODAY
        )
        assert result.fields == ["quantidade_parcelas"]


class TestValidateDispatch:
    """Test benefit type dispatch."""

    def test_unknown_benefit_type(self):
        with pytest.raises(SchemaViolation) as exc_info:
            validate("bolsa_familia", {}, today=TODAY)
        assert exc_info.value.details["value"] == "bolsa_familia"
        assert exc_info.value.fatal

    def test_payload_must_be_an_object(self):
        result = validate("funeral", ["data_obito"], today=TODAY)
        assert result.fields == ["dados"]
