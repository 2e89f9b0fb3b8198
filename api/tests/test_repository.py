# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the workflow repositories.
"""

import pytest
from datetime import date, datetime
from unittest.mock import Mock, MagicMock, patch
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from models.entities import Solicitacao, Pagamento, ParcelaPagamento, HistoricoStatus
from domain.errors import ConcurrentModification, DuplicateRecord, NotFound, SchemaViolation
from services.repository import InMemoryWorkflowRepository
from services.mongodb import (
    MongoDBService, MongoWorkflowRepository, APPROVALS, PENDENCIES, REQUESTS, PAYMENTS, _to_bson
)


def make_request(**overrides):
    data = {
        "protocolo": "2024-400001",
        "beneficiario_id": "cidadao-1",
        "solicitante_id": "cidadao-1",
        "tipo_beneficio": "cesta_basica",
        "unidade_id": "unidade-1",
        "tecnico_id": "tecnico-1",
        "created_by": "tecnico-1",
        "updated_by": "tecnico-1"
    }
    data.update(overrides)
    return Solicitacao(**data)


def make_payment(request_id):
    return Pagamento(
        solicitacao_id=request_id,
        tipo_beneficio="funeral",
        periodicidade="unica",
        valor_total=1500.0,
        parcelas=[ParcelaPagamento(numero=1, valor=1500.0, data_vencimento=date(2024, 3, 15))],
        created_by="gestor-1",
        updated_by="gestor-1"
    )


class TestInMemoryRepository:
    """Test compare-and-set semantics of the in-memory repository."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repository = InMemoryWorkflowRepository()
        self.request = self.repository.create_request(make_request())

    def test_save_with_current_version_increments_by_one(self):
        changed = self.request.model_copy(update={"observacoes": "Visita domiciliar agendada"})

        saved = self.repository.save_request(changed, self.request.version)

        assert saved.version == self.request.version + 1
        assert self.repository.load_request(self.request.id).observacoes == "Visita domiciliar agendada"

    def test_save_with_stale_version_fails(self):
        self.repository.save_request(self.request, self.request.version)

        with pytest.raises(ConcurrentModification) as exc_info:
            self.repository.save_request(self.request, self.request.version)

        assert exc_info.value.details["expected_version"] == 1
        assert exc_info.value.details["stored_version"] == 2
        assert self.repository.load_request(self.request.id).version == 2

    def test_loaded_models_are_copies(self):
        loaded = self.repository.load_request(self.request.id)
        loaded.observacoes = "alterado sem salvar"
        assert self.repository.load_request(self.request.id).observacoes is None

    def test_missing_records(self):
        with pytest.raises(NotFound):
            self.repository.load_request("missing")
        with pytest.raises(NotFound):
            self.repository.save_request(make_request(protocolo="2024-400099"), 1)
        assert self.repository.load_benefit_data("missing") is None
        assert self.repository.find_payment("missing") is None

    def test_unique_protocol(self):
        with pytest.raises(DuplicateRecord):
            self.repository.create_request(make_request())

    def test_one_renewal_per_parent(self):
        self.repository.create_request(make_request(protocolo="2024-400001-R1", solicitacao_original_id=self.request.id))
        with pytest.raises(DuplicateRecord):
            self.repository.create_request(
                make_request(protocolo="2024-400001-R1b", solicitacao_original_id=self.request.id)
            )
        assert len(self.repository.find_renewals(self.request.id)) == 1

    def test_one_payment_per_request(self):
        self.repository.create_payment(make_payment(self.request.id))
        with pytest.raises(DuplicateRecord):
            self.repository.create_payment(make_payment(self.request.id))

    def test_find_requests_accepts_enum_filters(self):
        from models.enums import RequestStatus

        assert len(self.repository.find_requests(status=RequestStatus.RASCUNHO)) == 1
        assert self.repository.find_requests(status="aberta") == []

    def test_history_keeps_append_order(self):
        for previous, new in [(None, "rascunho"), ("rascunho", "aberta")]:
            self.repository.append_history(HistoricoStatus(
                solicitacao_id=self.request.id, status_anterior=previous, status_novo=new, usuario_id="u"
            ))
        assert [h.status_novo for h in self.repository.list_history(self.request.id)] == ["rascunho", "aberta"]
        assert self.repository.list_history("other") == []


class TestMongoWorkflowRepository:
    """Test the MongoDB repository against mocked collections."""

    def setup_method(self):
        """Set up test fixtures."""
        self.collections = {}
        self.mongodb_service = Mock()
        self.mongodb_service.get_collection.side_effect = (
            lambda name: self.collections.setdefault(name, MagicMock())
        )
        self.repository = MongoWorkflowRepository(self.mongodb_service)
        self.request = make_request()

    def stored_document(self, model):
        document = _to_bson(model.model_dump())
        document["_id"] = ObjectId(document.pop("id"))
        return document

    def test_to_bson_converts_dates_and_enums(self):
        from models.enums import RequestStatus

        converted = _to_bson({"d": date(2024, 5, 31), "s": RequestStatus.ABERTA, "l": [date(2024, 1, 1)]})

        assert converted == {
            "d": datetime(2024, 5, 31),
            "s": "aberta",
            "l": [datetime(2024, 1, 1)]
        }

    def test_create_request_inserts_with_object_id(self):
        created = self.repository.create_request(self.request)

        document = self.collections[REQUESTS].insert_one.call_args.args[0]
        assert document["_id"] == ObjectId(self.request.id)
        assert "id" not in document
        assert created.id == self.request.id

    def test_duplicate_key_becomes_duplicate_record(self):
        self.mongodb_service.get_collection(REQUESTS).insert_one.side_effect = DuplicateKeyError("E11000")

        with pytest.raises(DuplicateRecord):
            self.repository.create_request(self.request)

    def test_compare_and_set_filters_on_version(self):
        collection = self.mongodb_service.get_collection(REQUESTS)
        collection.update_one.return_value = Mock(matched_count=1)

        saved = self.repository.save_request(self.request, 1)

        query, update = collection.update_one.call_args.args
        assert query == {"_id": ObjectId(self.request.id), "version": 1}
        assert update["$set"]["version"] == 2
        assert saved.version == 2

    def test_stale_version_raises_concurrent_modification(self):
        collection = self.mongodb_service.get_collection(REQUESTS)
        collection.update_one.return_value = Mock(matched_count=0)
        collection.find_one.return_value = {"_id": ObjectId(self.request.id), "version": 3}

        with pytest.raises(ConcurrentModification) as exc_info:
            self.repository.save_request(self.request, 1)
        assert exc_info.value.details["stored_version"] == 3

    def test_save_missing_request_raises_not_found(self):
        collection = self.mongodb_service.get_collection(REQUESTS)
        collection.update_one.return_value = Mock(matched_count=0)
        collection.find_one.return_value = None

        with pytest.raises(NotFound):
            self.repository.save_request(self.request, 1)

    def test_load_request(self):
        self.mongodb_service.get_collection(REQUESTS).find_one.return_value = self.stored_document(self.request)

        loaded = self.repository.load_request(self.request.id)

        assert loaded.id == self.request.id
        assert loaded.protocolo == self.request.protocolo

    def test_invalid_object_id_is_not_found(self):
        with pytest.raises(NotFound):
            self.repository.load_request("not-an-object-id")

    def test_unknown_stored_status_is_schema_violation(self):
        document = self.stored_document(self.request)
        document["status"] = "suspensa"
        self.mongodb_service.get_collection(REQUESTS).find_one.return_value = document

        with pytest.raises(SchemaViolation):
            self.repository.load_request(self.request.id)

    def test_stored_dates_load_back_as_dates(self):
        payment = make_payment(self.request.id)
        self.mongodb_service.get_collection(PAYMENTS).find_one.return_value = self.stored_document(payment)

        loaded = self.repository.find_payment(self.request.id)

        assert loaded.parcelas[0].data_vencimento == date(2024, 3, 15)

    def test_find_requests_converts_filters(self):
        from models.enums import RequestStatus

        collection = self.mongodb_service.get_collection(REQUESTS)
        collection.find.return_value.sort.return_value = [self.stored_document(self.request)]

        found = self.repository.find_requests(status=RequestStatus.CONCLUIDA, renovacao_automatica=True)

        assert collection.find.call_args.args[0] == {"status": "concluida", "renovacao_automatica": True}
        assert [r.id for r in found] == [self.request.id]

    def test_pending_approvals_query_the_approver_index(self):
        collection = self.mongodb_service.get_collection(APPROVALS)
        collection.find.return_value.sort.return_value = []

        assert self.repository.list_pending_approvals("coord-1") == []
        assert collection.find.call_args.args[0] == {"aprovadores.usuario_id": "coord-1", "status": "pendente"}

    def test_delete_pendency_by_object_id(self):
        pendency_id = str(ObjectId())

        self.repository.delete_pendency(pendency_id)

        self.collections[PENDENCIES].delete_one.assert_called_once_with({"_id": ObjectId(pendency_id)})


class TestMongoDBService:
    """Test the MongoDB connection service."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = MongoDBService("mongodb://db:27017/beneficios_test", "beneficios_test")

    @patch("services.mongodb.MongoClient")
    def test_health_check(self, mock_client_cls):
        client = mock_client_cls.return_value
        client.admin.command.return_value = {"ok": 1}
        client.server_info.return_value = {"version": "7.0.5"}

        health = self.service.health_check()

        assert health["status"] == "healthy"
        assert health["ping"]
        assert health["version"] == "7.0.5"
        assert mock_client_cls.call_args.args[0] == "mongodb://db:27017/beneficios_test"

    @patch("services.mongodb.MongoClient")
    def test_health_check_unreachable(self, mock_client_cls):
        mock_client_cls.return_value.admin.command.side_effect = ServerSelectionTimeoutError("timeout")

        with pytest.raises(ServerSelectionTimeoutError):
            self.service.client

        health = self.service.health_check()
        assert health["status"] == "unhealthy"
        assert "timeout" in health["error"]

    @patch("services.mongodb.MongoClient")
    def test_create_indexes_enforces_uniqueness(self, mock_client_cls):
        database = MagicMock()
        mock_client_cls.return_value.__getitem__.return_value = database

        self.service.create_indexes()

        requests = database[REQUESTS]
        unique_fields = [
            call.args[0] for call in requests.create_index.call_args_list
            if call.kwargs.get("unique")
        ]
        assert "protocolo" in unique_fields
        assert "solicitacao_original_id" in unique_fields

    @patch("services.mongodb.MongoClient")
    def test_close_connection(self, mock_client_cls):
        self.service.client
        self.service.close_connection()

        mock_client_cls.return_value.close.assert_called_once()
        assert self.service._client is None


class TestIndexReport:
    """Test the index report of the index creation script."""

    def test_unique_indexes_are_flagged(self):
        from scripts.create_indexes import describe_indexes

        mongodb_service = Mock()
        mongodb_service.get_collection.return_value.index_information.return_value = {
            "_id_": {"key": [("_id", 1)]},
            "protocolo_1": {"key": [("protocolo", 1)], "unique": True}
        }

        report = describe_indexes(mongodb_service)

        assert report[REQUESTS] == ["_id_", "protocolo_1 (unique)"]
        assert set(report) >= {REQUESTS, APPROVALS, PENDENCIES, PAYMENTS}
