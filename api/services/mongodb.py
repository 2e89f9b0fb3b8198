# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer and MongoDB-backed workflow repository.
"""

import os
import logging
from datetime import date, datetime
from enum import Enum
from typing import List, Dict, Optional, Any, Type, TypeVar
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError
)
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from models.entities import (
    Solicitacao, DadosBeneficio, Pendencia, SolicitacaoAprovacao,
    DeterminacaoJudicial, HistoricoStatus, Pagamento
)
from models.enums import ApprovalStatus
from domain.errors import ConcurrentModification, DuplicateRecord, NotFound, SchemaViolation
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

REQUESTS = "solicitacoes"
HISTORY = "historico_status"
BENEFIT_DATA = "dados_beneficio"
APPROVALS = "solicitacao_aprovacoes"
PENDENCIES = "pendencias"
DETERMINATIONS = "determinacoes_judiciais"
PAYMENTS = "pagamentos"

WORKFLOW_COLLECTIONS = (REQUESTS, HISTORY, BENEFIT_DATA, APPROVALS, PENDENCIES, DETERMINATIONS, PAYMENTS)


class MongoDBService:
    """MongoDB service with connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/beneficios_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'beneficios_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    # Index Management

    def create_indexes(self) -> None:
        """Create uniqueness and lookup indexes for the workflow collections."""
        logger.info("Creating MongoDB indexes...")

        requests = self.get_collection(REQUESTS)
        requests.create_index("protocolo", unique=True)
        requests.create_index(
            "solicitacao_original_id",
            unique=True,
            partialFilterExpression={"solicitacao_original_id": {"$type": "string"}}
        )
        requests.create_index([("status", ASCENDING), ("tipo_beneficio", ASCENDING)])
        requests.create_index([("renovacao_automatica", ASCENDING), ("status", ASCENDING)])
        requests.create_index([("unidade_id", ASCENDING), ("created_at", DESCENDING)])

        history = self.get_collection(HISTORY)
        history.create_index([("solicitacao_id", ASCENDING), ("data", ASCENDING)])
        history.create_index("trace_id")

        self.get_collection(BENEFIT_DATA).create_index("solicitacao_id", unique=True)
        approvals = self.get_collection(APPROVALS)
        approvals.create_index([("solicitacao_id", ASCENDING), ("status", ASCENDING)])
        approvals.create_index([("aprovadores.usuario_id", ASCENDING), ("status", ASCENDING)])

        pendencies = self.get_collection(PENDENCIES)
        pendencies.create_index([("solicitacao_id", ASCENDING), ("status", ASCENDING)])
        pendencies.create_index([("status", ASCENDING), ("prazo_resolucao", ASCENDING)])

        self.get_collection(DETERMINATIONS).create_index([("solicitacao_id", ASCENDING), ("ativa", ASCENDING)])
        self.get_collection(PAYMENTS).create_index("solicitacao_id", unique=True)

        logger.info("MongoDB indexes created successfully")


def _to_bson(value: Any) -> Any:
    """BSON has no date type, dates are stored at midnight."""
    if isinstance(value, dict):
        return {key: _to_bson(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_bson(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


class MongoWorkflowRepository(WorkflowRepository):
    """
    Workflow repository backed by MongoDB.

    Versioned saves filter ``update_one`` on the expected version, so a stale
    writer matches no document and gets ``ConcurrentModification``.
    """

    def __init__(self, mongodb_service: MongoDBService):
        self.mongodb_service = mongodb_service

    def _collection(self, name: str) -> Collection:
        return self.mongodb_service.get_collection(name)

    @staticmethod
    def _object_id(record_id: str) -> ObjectId:
        try:
            return ObjectId(record_id)
        except (InvalidId, TypeError):
            raise NotFound(f"Invalid ObjectId format: {record_id}", {"id": str(record_id)})

    def _to_document(self, model: BaseModel) -> Dict[str, Any]:
        document = _to_bson(model.model_dump())
        document["_id"] = self._object_id(document.pop("id"))
        return document

    @staticmethod
    def _from_document(model_cls: Type[M], document: Dict[str, Any]) -> M:
        document = dict(document)
        document["id"] = str(document.pop("_id"))
        try:
            return model_cls.model_validate(document)
        except ValueError as e:
            raise SchemaViolation(
                f"Stored {model_cls.__name__} {document['id']} is invalid: {e}",
                {"kind": model_cls.__name__, "id": document["id"]}
            )

    def _load(self, collection: str, model_cls: Type[M], record_id: str) -> M:
        document = self._collection(collection).find_one({"_id": self._object_id(record_id)})
        if document is None:
            raise NotFound(f"{collection} {record_id} not found", {"kind": collection, "id": record_id})
        return self._from_document(model_cls, document)

    def _insert(self, collection: str, model: M) -> M:
        document = self._to_document(model)
        try:
            self._collection(collection).insert_one(document)
        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise DuplicateRecord(
                f"Record violates a unique index of {collection}",
                {"kind": collection, "id": model.id, "key": str(getattr(e, "details", None) or e)}
            )
        logger.debug(f"Created document in {collection}: {model.id}")
        return self._from_document(type(model), document)

    def _compare_and_set(self, collection: str, model: M, expected_version: int) -> M:
        document = self._to_document(model)
        object_id = document.pop("_id")
        document["version"] = expected_version + 1

        result = self._collection(collection).update_one(
            {"_id": object_id, "version": expected_version},
            {"$set": document}
        )
        if result.matched_count == 0:
            stored = self._collection(collection).find_one({"_id": object_id}, {"version": 1})
            if stored is None:
                raise NotFound(f"{collection} {model.id} not found", {"kind": collection, "id": model.id})
            logger.info(
                f"Version conflict on {collection} {model.id}",
                extra={"extra_fields": {
                    "collection": collection,
                    "id": model.id,
                    "expected_version": expected_version,
                    "stored_version": stored.get("version")
                }}
            )
            raise ConcurrentModification(
                f"{collection} {model.id} was modified concurrently",
                {
                    "kind": collection,
                    "id": model.id,
                    "expected_version": expected_version,
                    "stored_version": stored.get("version")
                }
            )

        document["_id"] = object_id
        return self._from_document(type(model), document)

    def _find(self, collection: str, model_cls: Type[M], query: Dict[str, Any], sort=None) -> List[M]:
        cursor = self._collection(collection).find(_to_bson(query))
        if sort:
            cursor = cursor.sort(sort)
        return [self._from_document(model_cls, document) for document in cursor]

    # Requests

    def create_request(self, request: Solicitacao) -> Solicitacao:
        return self._insert(REQUESTS, request)

    def load_request(self, request_id: str) -> Solicitacao:
        return self._load(REQUESTS, Solicitacao, request_id)

    def save_request(self, request: Solicitacao, expected_version: int) -> Solicitacao:
        return self._compare_and_set(REQUESTS, request, expected_version)

    def find_requests(self, **filters: Any) -> List[Solicitacao]:
        query = dict(filters)
        if "id" in query:
            query["_id"] = self._object_id(query.pop("id"))
        return self._find(REQUESTS, Solicitacao, query, [("created_at", ASCENDING)])

    # History

    def append_history(self, entry: HistoricoStatus) -> None:
        self._collection(HISTORY).insert_one(self._to_document(entry))

    def list_history(self, request_id: str) -> List[HistoricoStatus]:
        return self._find(
            HISTORY, HistoricoStatus, {"solicitacao_id": request_id},
            [("data", ASCENDING), ("_id", ASCENDING)]
        )

    # Benefit data

    def load_benefit_data(self, request_id: str) -> Optional[DadosBeneficio]:
        document = self._collection(BENEFIT_DATA).find_one({"solicitacao_id": request_id})
        return self._from_document(DadosBeneficio, document) if document else None

    def save_benefit_data(self, data: DadosBeneficio) -> DadosBeneficio:
        document = self._to_document(data)
        object_id = document.pop("_id")
        self._collection(BENEFIT_DATA).update_one(
            {"solicitacao_id": data.solicitacao_id},
            {"$set": document, "$setOnInsert": {"_id": object_id}},
            upsert=True
        )
        return self.load_benefit_data(data.solicitacao_id)

    # Approvals

    def create_approval(self, approval: SolicitacaoAprovacao) -> SolicitacaoAprovacao:
        return self._insert(APPROVALS, approval)

    def load_approval(self, approval_id: str) -> SolicitacaoAprovacao:
        return self._load(APPROVALS, SolicitacaoAprovacao, approval_id)

    def save_approval(self, approval: SolicitacaoAprovacao, expected_version: int) -> SolicitacaoAprovacao:
        return self._compare_and_set(APPROVALS, approval, expected_version)

    def list_approvals(self, request_id: Optional[str] = None) -> List[SolicitacaoAprovacao]:
        query = {"solicitacao_id": request_id} if request_id is not None else {}
        return self._find(APPROVALS, SolicitacaoAprovacao, query, [("_id", ASCENDING)])

    def list_pending_approvals(self, approver_id: str) -> List[SolicitacaoAprovacao]:
        query = {"aprovadores.usuario_id": approver_id, "status": ApprovalStatus.PENDENTE.value}
        return self._find(APPROVALS, SolicitacaoAprovacao, query, [("_id", ASCENDING)])

    def delete_approval(self, approval_id: str) -> None:
        self._collection(APPROVALS).delete_one({"_id": self._object_id(approval_id)})

    # Pendencies

    def create_pendency(self, pendency: Pendencia) -> Pendencia:
        return self._insert(PENDENCIES, pendency)

    def load_pendency(self, pendency_id: str) -> Pendencia:
        return self._load(PENDENCIES, Pendencia, pendency_id)

    def save_pendency(self, pendency: Pendencia, expected_version: int) -> Pendencia:
        return self._compare_and_set(PENDENCIES, pendency, expected_version)

    def list_pendencies(self, request_id: Optional[str] = None) -> List[Pendencia]:
        query = {"solicitacao_id": request_id} if request_id is not None else {}
        return self._find(PENDENCIES, Pendencia, query, [("_id", ASCENDING)])

    def delete_pendency(self, pendency_id: str) -> None:
        self._collection(PENDENCIES).delete_one({"_id": self._object_id(pendency_id)})

    # Court determinations

    def save_determination(self, determination: DeterminacaoJudicial) -> DeterminacaoJudicial:
        document = self._to_document(determination)
        self._collection(DETERMINATIONS).replace_one({"_id": document["_id"]}, document, upsert=True)
        return self._from_document(DeterminacaoJudicial, document)

    def load_determination(self, determination_id: str) -> DeterminacaoJudicial:
        return self._load(DETERMINATIONS, DeterminacaoJudicial, determination_id)

    def list_determinations(self, request_id: str) -> List[DeterminacaoJudicial]:
        return self._find(
            DETERMINATIONS, DeterminacaoJudicial, {"solicitacao_id": request_id},
            [("data_determinacao", ASCENDING)]
        )

    # Payments

    def create_payment(self, payment: Pagamento) -> Pagamento:
        return self._insert(PAYMENTS, payment)

    def load_payment(self, payment_id: str) -> Pagamento:
        return self._load(PAYMENTS, Pagamento, payment_id)

    def save_payment(self, payment: Pagamento) -> Pagamento:
        document = self._to_document(payment)
        result = self._collection(PAYMENTS).replace_one({"_id": document["_id"]}, document)
        if result.matched_count == 0:
            raise NotFound(f"{PAYMENTS} {payment.id} not found", {"kind": PAYMENTS, "id": payment.id})
        return self._from_document(Pagamento, document)

    def find_payment(self, request_id: str) -> Optional[Pagamento]:
        document = self._collection(PAYMENTS).find_one({"solicitacao_id": request_id})
        return self._from_document(Pagamento, document) if document else None

