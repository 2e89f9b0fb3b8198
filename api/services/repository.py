# SPDX-License-Identifier: Apache-2.0

"""
Persistence interface of the workflow engine and its in-memory implementation.

Every save of a versioned record is an atomic compare-and-set on ``version``:
the write only lands when the stored version equals the expected one, and the
saved copy carries ``version + 1``. History rows are append-only.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from models.entities import (
    Solicitacao, DadosBeneficio, Pendencia, SolicitacaoAprovacao,
    DeterminacaoJudicial, HistoricoStatus, Pagamento
)
from models.enums import ApprovalStatus
from domain.errors import ConcurrentModification, DuplicateRecord, NotFound

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class WorkflowRepository(ABC):
    """Storage collaborator of the workflow engine."""

    # Requests

    @abstractmethod
    def create_request(self, request: Solicitacao) -> Solicitacao:
        """Insert a new request; the protocol must be unique."""

    @abstractmethod
    def load_request(self, request_id: str) -> Solicitacao:
        """Load a request or raise NotFound."""

    @abstractmethod
    def save_request(self, request: Solicitacao, expected_version: int) -> Solicitacao:
        """Compare-and-set a request against ``expected_version``."""

    @abstractmethod
    def find_requests(self, **filters: Any) -> List[Solicitacao]:
        """Find requests whose fields equal the given filters."""

    def find_renewals(self, parent_id: str) -> List[Solicitacao]:
        """Requests spawned as renewals of a parent request."""
        return self.find_requests(solicitacao_original_id=parent_id)

    # History

    @abstractmethod
    def append_history(self, entry: HistoricoStatus) -> None:
        """Append an immutable history row."""

    @abstractmethod
    def list_history(self, request_id: str) -> List[HistoricoStatus]:
        """History rows of a request in append order."""

    # Benefit data

    @abstractmethod
    def load_benefit_data(self, request_id: str) -> Optional[DadosBeneficio]:
        """Type-specific data of a request, if any."""

    @abstractmethod
    def save_benefit_data(self, data: DadosBeneficio) -> DadosBeneficio:
        """Insert or replace the type-specific data of a request."""

    # Approvals

    @abstractmethod
    def create_approval(self, approval: SolicitacaoAprovacao) -> SolicitacaoAprovacao:
        """Insert a per-request approval."""

    @abstractmethod
    def load_approval(self, approval_id: str) -> SolicitacaoAprovacao:
        """Load an approval or raise NotFound."""

    @abstractmethod
    def save_approval(self, approval: SolicitacaoAprovacao, expected_version: int) -> SolicitacaoAprovacao:
        """Compare-and-set an approval against ``expected_version``."""

    @abstractmethod
    def list_approvals(self, request_id: Optional[str] = None) -> List[SolicitacaoAprovacao]:
        """Approvals of a request, or every approval when no request is given."""

    @abstractmethod
    def list_pending_approvals(self, approver_id: str) -> List[SolicitacaoAprovacao]:
        """Pending approvals assigning ``approver_id``, whatever its turn."""

    @abstractmethod
    def delete_approval(self, approval_id: str) -> None:
        """Remove an approval whose creation lost a race on its request."""

    # Pendencies

    @abstractmethod
    def create_pendency(self, pendency: Pendencia) -> Pendencia:
        """Insert a pendency."""

    @abstractmethod
    def load_pendency(self, pendency_id: str) -> Pendencia:
        """Load a pendency or raise NotFound."""

    @abstractmethod
    def save_pendency(self, pendency: Pendencia, expected_version: int) -> Pendencia:
        """Compare-and-set a pendency against ``expected_version``."""

    @abstractmethod
    def list_pendencies(self, request_id: Optional[str] = None) -> List[Pendencia]:
        """Pendencies of a request, or every pendency when no request is given."""

    @abstractmethod
    def delete_pendency(self, pendency_id: str) -> None:
        """Remove a pendency whose creation lost a race on its request."""

    # Court determinations

    @abstractmethod
    def save_determination(self, determination: DeterminacaoJudicial) -> DeterminacaoJudicial:
        """Insert or replace a court determination."""

    @abstractmethod
    def load_determination(self, determination_id: str) -> DeterminacaoJudicial:
        """Load a court determination or raise NotFound."""

    @abstractmethod
    def list_determinations(self, request_id: str) -> List[DeterminacaoJudicial]:
        """Court determinations linked to a request."""

    # Payments

    @abstractmethod
    def create_payment(self, payment: Pagamento) -> Pagamento:
        """Insert the payment of a request; one payment per request."""

    @abstractmethod
    def load_payment(self, payment_id: str) -> Pagamento:
        """Load a payment or raise NotFound."""

    @abstractmethod
    def save_payment(self, payment: Pagamento) -> Pagamento:
        """Replace a payment."""

    @abstractmethod
    def find_payment(self, request_id: str) -> Optional[Pagamento]:
        """Payment of a request, if created."""


def _normalize(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(document.get(key) == _normalize(value) for key, value in filters.items())


class InMemoryWorkflowRepository(WorkflowRepository):
    """
    Thread-safe in-memory repository.

    Records are stored as plain dictionaries and every read returns a fresh
    model, so callers never share mutable state with the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._requests: Dict[str, Dict[str, Any]] = {}
        self._history: List[Dict[str, Any]] = []
        self._benefit_data: Dict[str, Dict[str, Any]] = {}
        self._approvals: Dict[str, Dict[str, Any]] = {}
        self._pendencies: Dict[str, Dict[str, Any]] = {}
        self._determinations: Dict[str, Dict[str, Any]] = {}
        self._payments: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def _dump(model: BaseModel) -> Dict[str, Any]:
        return copy.deepcopy(model.model_dump())

    @staticmethod
    def _restore(model_cls: Type[M], document: Dict[str, Any]) -> M:
        return model_cls.model_validate(copy.deepcopy(document))

    def _load(self, table: Dict[str, Dict[str, Any]], model_cls: Type[M], record_id: str, kind: str) -> M:
        with self._lock:
            document = table.get(record_id)
            if document is None:
                raise NotFound(f"{kind} {record_id} not found", {"kind": kind, "id": record_id})
            return self._restore(model_cls, document)

    def _insert(self, table: Dict[str, Dict[str, Any]], model: M, kind: str) -> M:
        with self._lock:
            if model.id in table:
                raise DuplicateRecord(f"{kind} {model.id} already exists", {"kind": kind, "id": model.id})
            table[model.id] = self._dump(model)
            return self._restore(type(model), table[model.id])

    def _compare_and_set(self, table: Dict[str, Dict[str, Any]], model: M, expected_version: int, kind: str) -> M:
        with self._lock:
            stored = table.get(model.id)
            if stored is None:
                raise NotFound(f"{kind} {model.id} not found", {"kind": kind, "id": model.id})

            if stored["version"] != expected_version:
                logger.info(
                    f"Version conflict on {kind} {model.id}",
                    extra={"extra_fields": {
                        "kind": kind,
                        "id": model.id,
                        "expected_version": expected_version,
                        "stored_version": stored["version"]
                    }}
                )
                raise ConcurrentModification(
                    f"{kind} {model.id} was modified concurrently",
                    {
                        "kind": kind,
                        "id": model.id,
                        "expected_version": expected_version,
                        "stored_version": stored["version"]
                    }
                )

            document = self._dump(model)
            document["version"] = expected_version + 1
            table[model.id] = document
            return self._restore(type(model), document)

    # Requests

    def create_request(self, request: Solicitacao) -> Solicitacao:
        with self._lock:
            for stored in self._requests.values():
                if stored["protocolo"] == request.protocolo:
                    raise DuplicateRecord(
                        f"Protocol {request.protocolo} already exists",
                        {"kind": "solicitacao", "protocolo": request.protocolo}
                    )
                if (
                    request.solicitacao_original_id
                    and stored["solicitacao_original_id"] == request.solicitacao_original_id
                ):
                    raise DuplicateRecord(
                        f"Request {request.solicitacao_original_id} was already renewed",
                        {"kind": "solicitacao", "solicitacao_original_id": request.solicitacao_original_id}
                    )
            return self._insert(self._requests, request, "solicitacao")

    def load_request(self, request_id: str) -> Solicitacao:
        return self._load(self._requests, Solicitacao, request_id, "solicitacao")

    def save_request(self, request: Solicitacao, expected_version: int) -> Solicitacao:
        return self._compare_and_set(self._requests, request, expected_version, "solicitacao")

    def find_requests(self, **filters: Any) -> List[Solicitacao]:
        with self._lock:
            return [
                self._restore(Solicitacao, document)
                for document in self._requests.values()
                if _matches(document, filters)
            ]

    # History

    def append_history(self, entry: HistoricoStatus) -> None:
        with self._lock:
            self._history.append(self._dump(entry))

    def list_history(self, request_id: str) -> List[HistoricoStatus]:
        with self._lock:
            return [
                self._restore(HistoricoStatus, document)
                for document in self._history
                if document["solicitacao_id"] == request_id
            ]

    # Benefit data

    def load_benefit_data(self, request_id: str) -> Optional[DadosBeneficio]:
        with self._lock:
            document = self._benefit_data.get(request_id)
            return self._restore(DadosBeneficio, document) if document else None

    def save_benefit_data(self, data: DadosBeneficio) -> DadosBeneficio:
        with self._lock:
            self._benefit_data[data.solicitacao_id] = self._dump(data)
            return self._restore(DadosBeneficio, self._benefit_data[data.solicitacao_id])

    # Approvals

    def create_approval(self, approval: SolicitacaoAprovacao) -> SolicitacaoAprovacao:
        return self._insert(self._approvals, approval, "aprovacao")

    def load_approval(self, approval_id: str) -> SolicitacaoAprovacao:
        return self._load(self._approvals, SolicitacaoAprovacao, approval_id, "aprovacao")

    def save_approval(self, approval: SolicitacaoAprovacao, expected_version: int) -> SolicitacaoAprovacao:
        return self._compare_and_set(self._approvals, approval, expected_version, "aprovacao")

    def list_approvals(self, request_id: Optional[str] = None) -> List[SolicitacaoAprovacao]:
        with self._lock:
            return [
                self._restore(SolicitacaoAprovacao, document)
                for document in self._approvals.values()
                if request_id is None or document["solicitacao_id"] == request_id
            ]

    def list_pending_approvals(self, approver_id: str) -> List[SolicitacaoAprovacao]:
        with self._lock:
            return [
                self._restore(SolicitacaoAprovacao, document)
                for document in self._approvals.values()
                if document["status"] == ApprovalStatus.PENDENTE.value
                and any(a["usuario_id"] == approver_id for a in document["aprovadores"])
            ]

    def delete_approval(self, approval_id: str) -> None:
        with self._lock:
            self._approvals.pop(approval_id, None)

    # Pendencies

    def create_pendency(self, pendency: Pendencia) -> Pendencia:
        return self._insert(self._pendencies, pendency, "pendencia")

    def load_pendency(self, pendency_id: str) -> Pendencia:
        return self._load(self._pendencies, Pendencia, pendency_id, "pendencia")

    def save_pendency(self, pendency: Pendencia, expected_version: int) -> Pendencia:
        return self._compare_and_set(self._pendencies, pendency, expected_version, "pendencia")

    def list_pendencies(self, request_id: Optional[str] = None) -> List[Pendencia]:
        with self._lock:
            return [
                self._restore(Pendencia, document)
                for document in self._pendencies.values()
                if request_id is None or document["solicitacao_id"] == request_id
            ]

    def delete_pendency(self, pendency_id: str) -> None:
        with self._lock:
            self._pendencies.pop(pendency_id, None)

    # Court determinations

    def save_determination(self, determination: DeterminacaoJudicial) -> DeterminacaoJudicial:
        with self._lock:
            self._determinations[determination.id] = self._dump(determination)
            return self._restore(DeterminacaoJudicial, self._determinations[determination.id])

    def load_determination(self, determination_id: str) -> DeterminacaoJudicial:
        return self._load(self._determinations, DeterminacaoJudicial, determination_id, "determinacao")

    def list_determinations(self, request_id: str) -> List[DeterminacaoJudicial]:
        with self._lock:
            return [
                self._restore(DeterminacaoJudicial, document)
                for document in self._determinations.values()
                if document["solicitacao_id"] == request_id
            ]

    # Payments

    def create_payment(self, payment: Pagamento) -> Pagamento:
        with self._lock:
            if any(doc["solicitacao_id"] == payment.solicitacao_id for doc in self._payments.values()):
                raise DuplicateRecord(
                    f"Request {payment.solicitacao_id} already has a payment",
                    {"kind": "pagamento", "solicitacao_id": payment.solicitacao_id}
                )
            return self._insert(self._payments, payment, "pagamento")

    def load_payment(self, payment_id: str) -> Pagamento:
        return self._load(self._payments, Pagamento, payment_id, "pagamento")

    def save_payment(self, payment: Pagamento) -> Pagamento:
        with self._lock:
            if payment.id not in self._payments:
                raise NotFound(f"pagamento {payment.id} not found", {"kind": "pagamento", "id": payment.id})
            self._payments[payment.id] = self._dump(payment)
            return self._restore(Pagamento, self._payments[payment.id])

    def find_payment(self, request_id: str) -> Optional[Pagamento]:
        with self._lock:
            for document in self._payments.values():
                if document["solicitacao_id"] == request_id:
                    return self._restore(Pagamento, document)
            return None
