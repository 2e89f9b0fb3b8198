# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for role resolution and authorization checks.
"""

import pytest

from models.enums import Role
from models.entities import AcaoAprovacao, UserContext
from domain.errors import SchemaViolation
from domain.authorization import (
    resolve_role, permissions_for_role, build_user_context,
    check_permission, can_approve_action
)


class TestRoleResolution:
    """Test the two stored role shapes."""

    def test_plain_string(self):
        assert resolve_role("coordenador") == Role.COORDENADOR
        assert resolve_role(" Gestor ") == Role.GESTOR

    def test_role_record(self):
        assert resolve_role({"nome": "tecnico"}) == Role.TECNICO
        assert resolve_role({"id": "r1", "codigo": "admin"}) == Role.ADMIN
        assert resolve_role(Role.AUDITOR) == Role.AUDITOR

    @pytest.mark.parametrize("raw", ["supervisor", {"nome": "diretor"}, {}, None, 3])
    def test_unknown_role(self, raw):
        with pytest.raises(SchemaViolation):
            resolve_role(raw)

    def test_permissions(self):
        assert "solicitacao:aprovar" in permissions_for_role(Role.GESTOR)
        assert "solicitacao:aprovar" not in permissions_for_role(Role.TECNICO)
        assert permissions_for_role(Role.AUDITOR) == []

    def test_build_user_context(self):
        user = build_user_context({
            "_id": "u-9",
            "perfil": {"nome": "coordenador"},
            "unidade_id": "unidade-2",
            "nome": "Maria"
        })

        assert user.user_id == "u-9"
        assert user.role == "coordenador"
        assert user.unidade_id == "unidade-2"
        assert user.name == "Maria"
        assert user.ativo
        assert user.has_permission("pendencia:gerenciar")


class TestApprovalAuthorization:
    """Test who may sign off on an approval action."""

    def setup_method(self):
        """Set up test fixtures."""
        self.action = AcaoAprovacao(
            codigo="conceder_beneficio",
            perfis_permitidos=[Role.COORDENADOR, Role.GESTOR]
        )

    def user(self, role):
        return UserContext(user_id=f"{role}-1", role=role, permissions=permissions_for_role(Role(role)))

    def test_check_permission(self):
        result = check_permission(self.user("tecnico"), "solicitacao:aprovar")

        assert not result.allowed
        assert result.missing_permissions == ["solicitacao:aprovar"]
        assert check_permission(self.user("gestor"), "solicitacao:aprovar").allowed

    def test_allowed_role(self):
        assert can_approve_action(self.user("coordenador"), self.action).allowed

    def test_role_without_permission(self):
        result = can_approve_action(self.user("tecnico"), self.action)
        assert not result.allowed
        assert "solicitacao:aprovar" in result.reason

    def test_role_not_listed_by_action(self):
        result = can_approve_action(self.user("admin"), self.action)
        assert not result.allowed
        assert "conceder_beneficio" in result.reason

    def test_action_without_role_list(self):
        action = AcaoAprovacao(codigo="pagamento_extra")
        assert can_approve_action(self.user("admin"), action).allowed
