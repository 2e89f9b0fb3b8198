# SPDX-License-Identifier: Apache-2.0

"""
Judicial determination domain logic.

Court determinations force a request status regardless of the normal
analysis and approval gates.
"""

from types import MappingProxyType
from typing import List, Mapping, Optional

from models.enums import JudicialDirective, RequestStatus
from models.entities import DeterminacaoJudicial, Solicitacao
from .catalog import coerce_directive, coerce_status
from .errors import InvalidTransition
from .workflow import is_terminal, transition_path


DIRECTIVE_TARGETS: Mapping[JudicialDirective, Optional[RequestStatus]] = MappingProxyType({
    JudicialDirective.CONCESSAO: RequestStatus.LIBERADA,
    JudicialDirective.SUSPENSAO: RequestStatus.CANCELADA,
    JudicialDirective.CANCELAMENTO: RequestStatus.ARQUIVADA,
    JudicialDirective.ALTERACAO: None,
})


def target_for_directive(directive) -> Optional[RequestStatus]:
    """Status forced by a directive; None when the directive forces none."""
    return DIRECTIVE_TARGETS[coerce_directive(directive)]


def is_in_force(determination: Optional[DeterminacaoJudicial], request: Solicitacao) -> bool:
    """Check whether a determination is active and linked to the request."""
    if determination is None or not determination.ativa:
        return False
    return determination.solicitacao_id == request.id


def bypasses_approval(determination: Optional[DeterminacaoJudicial], request: Solicitacao) -> bool:
    """An active concessao makes pending approval results irrelevant."""
    return (
        is_in_force(determination, request)
        and coerce_directive(determination.tipo) == JudicialDirective.CONCESSAO
    )


def override_path(request: Solicitacao, determination: DeterminacaoJudicial) -> List[RequestStatus]:
    """
    Statuses the request walks through to reach the forced target.

    Returns:
        Ordered steps along the allow-listed graph, empty when nothing is forced

    Raises:
        InvalidTransition: if the request is terminal or the target is unreachable
    """
    if is_terminal(request.status):
        raise InvalidTransition(
            f"Request {request.id} is {request.status} and cannot be overridden",
            {"solicitacao_id": request.id, "status_atual": request.status}
        )

    target = target_for_directive(determination.tipo)
    if target is None:
        return []
    return transition_path(coerce_status(request.status), target)
