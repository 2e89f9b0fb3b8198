# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for role-based access control.

Roles arrive from storage either as a plain enum string or as a foreign-keyed
role record. Both shapes are resolved once, at the access-control boundary,
into the single ``Role`` type; the rest of the engine never compares raw
role strings.
"""

from types import MappingProxyType
from typing import List, Dict, Any, Mapping, Optional, FrozenSet
from dataclasses import dataclass, field

from models.enums import Role
from models.entities import UserContext, AcaoAprovacao
from .errors import SchemaViolation


ROLE_LOOKUP: Mapping[str, Role] = MappingProxyType({role.value: role for role in Role})

ROLE_PERMISSIONS: Mapping[Role, FrozenSet[str]] = MappingProxyType({
    Role.ADMIN: frozenset({
        "solicitacao:criar", "solicitacao:transicionar", "solicitacao:aprovar",
        "pendencia:gerenciar", "determinacao:aplicar", "pagamento:gerenciar"
    }),
    Role.GESTOR: frozenset({
        "solicitacao:transicionar", "solicitacao:aprovar", "pendencia:gerenciar",
        "determinacao:aplicar", "pagamento:gerenciar"
    }),
    Role.COORDENADOR: frozenset({
        "solicitacao:transicionar", "solicitacao:aprovar", "pendencia:gerenciar"
    }),
    Role.TECNICO: frozenset({
        "solicitacao:criar", "solicitacao:transicionar", "pendencia:gerenciar"
    }),
    Role.ASSISTENTE_SOCIAL: frozenset({
        "solicitacao:criar", "solicitacao:transicionar", "pendencia:gerenciar"
    }),
    Role.AUDITOR: frozenset(),
})


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    missing_permissions: List[str] = field(default_factory=list)


def resolve_role(raw: Any) -> Role:
    """
    Resolve a role from an enum string, a Role, or a role record.

    Role records are dictionaries carrying the role name under ``nome``,
    ``name`` or ``codigo``.

    Raises:
        SchemaViolation: if the role is unknown
    """
    if isinstance(raw, Role):
        return raw

    name = raw
    if isinstance(raw, dict):
        name = raw.get("nome") or raw.get("name") or raw.get("codigo")

    if isinstance(name, str):
        role = ROLE_LOOKUP.get(name.strip().lower())
        if role is not None:
            return role

    raise SchemaViolation(f"Unknown role: {raw!r}", {"kind": "role", "value": str(raw)})


def permissions_for_role(role: Role) -> List[str]:
    """Return the sorted permissions granted to a role."""
    return sorted(ROLE_PERMISSIONS[resolve_role(role)])


def build_user_context(record: Dict[str, Any]) -> UserContext:
    """
    Build a user context from a stored user record.

    Args:
        record: User record with ``id``, ``role`` (string or record),
            optional ``unidade_id``, ``nome`` and ``ativo``

    Returns:
        UserContext with the resolved role and its permissions
    """
    role = resolve_role(record.get("role") or record.get("perfil"))
    return UserContext(
        user_id=str(record.get("id") or record.get("_id")),
        role=role,
        unidade_id=record.get("unidade_id"),
        name=record.get("nome") or record.get("name"),
        permissions=permissions_for_role(role),
        ativo=record.get("ativo", True)
    )


def check_permission(user_context: UserContext, required_permission: str) -> AuthorizationResult:
    """
    Check if user has a specific permission.

    Args:
        user_context: User context with permissions
        required_permission: Permission string to check

    Returns:
        AuthorizationResult indicating if permission is granted
    """
    if user_context.has_permission(required_permission):
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Missing required permission: {required_permission}",
        missing_permissions=[required_permission]
    )


def can_approve_action(user_context: UserContext, action: AcaoAprovacao) -> AuthorizationResult:
    """
    Check if a user's role may sign off on an approval action.

    Args:
        user_context: User context with resolved role
        action: Approval action template

    Returns:
        AuthorizationResult indicating if the role qualifies
    """
    perm_check = check_permission(user_context, "solicitacao:aprovar")
    if not perm_check.allowed:
        return perm_check

    if action.perfis_permitidos:
        allowed_roles = {resolve_role(role) for role in action.perfis_permitidos}
        if resolve_role(user_context.role) not in allowed_roles:
            return AuthorizationResult(
                allowed=False,
                reason=f"Role {user_context.role} cannot approve {action.codigo}"
            )

    return AuthorizationResult(allowed=True)
