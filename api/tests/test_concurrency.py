# SPDX-License-Identifier: Apache-2.0

"""
Tests for optimistic concurrency on workflow records.
"""

import threading
import pytest
from concurrent.futures import ThreadPoolExecutor

from domain.errors import ApprovalIncomplete, Blocked, ConcurrentModification, InvalidTransition, NotFound
from domain.retry import retry_on_conflict
from services.repository import InMemoryWorkflowRepository


class InterleavingRepository(InMemoryWorkflowRepository):
    """Repository where another writer bumps the request before the next saves."""

    def __init__(self):
        super().__init__()
        self.interleave = 0

    def save_request(self, request, expected_version):
        if self.interleave > 0:
            self.interleave -= 1
            stored = self.load_request(request.id)
            super().save_request(stored, stored.version)
        return super().save_request(request, expected_version)


class RacingRepository(InMemoryWorkflowRepository):
    """Repository that runs a competing write right before a request is saved in a given status."""

    def __init__(self):
        super().__init__()
        self.race = None
        self.race_status = None

    def save_request(self, request, expected_version):
        if self.race is not None and request.status == self.race_status:
            race, self.race = self.race, None
            race()
        return super().save_request(request, expected_version)


class TestRetryOnConflict:
    """Test the conflict retry helper."""

    def setup_method(self):
        """Set up test fixtures."""
        self.delays = []

    def test_returns_first_success(self):
        assert retry_on_conflict(lambda: "ok", sleep=self.delays.append) == "ok"
        assert self.delays == []

    def test_retries_conflicts_with_backoff(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise ConcurrentModification("conflict", {"id": "sol-1"})
            return len(calls)

        result = retry_on_conflict(operation, max_attempts=3, base_delay=0.1, sleep=self.delays.append)

        assert result == 3
        assert self.delays == [0.1, 0.2]

    def test_gives_up_after_max_attempts(self):
        def operation():
            raise ConcurrentModification("conflict")

        with pytest.raises(ConcurrentModification):
            retry_on_conflict(operation, max_attempts=2, base_delay=0.1, sleep=self.delays.append)
        assert self.delays == [0.1]

    def test_other_errors_are_not_retried(self):
        calls = []

        def operation():
            calls.append(1)
            raise NotFound("missing")

        with pytest.raises(NotFound):
            retry_on_conflict(operation, sleep=self.delays.append)
        assert len(calls) == 1


class TestLostUpdates:
    """Test that concurrent writers never lose a status change."""

    @pytest.fixture
    def repository(self):
        return InterleavingRepository()

    def test_lost_race_is_retried_against_fresh_state(self, engine, create_request):
        request = create_request("funeral")
        engine.repository.interleave = 1

        moved = engine.transition(request.id, "aberta", "tecnico-1")

        assert moved.status == "aberta"
        assert moved.version == 3
        rows = [r for r in engine.history(request.id) if r.status_novo == "aberta"]
        assert len(rows) == 1

    def test_caller_holding_a_version_is_not_retried(self, engine, create_request):
        request = create_request("funeral")
        engine.repository.interleave = 1

        with pytest.raises(ConcurrentModification):
            engine.transition(request.id, "aberta", "tecnico-1", expected_version=request.version)

        assert engine.get_request(request.id).status == "rascunho"
        assert len(engine.history(request.id)) == 1

    def test_persistent_conflicts_surface(self, engine, create_request):
        request = create_request("funeral")
        engine.repository.interleave = engine.max_attempts

        with pytest.raises(ConcurrentModification):
            engine.transition(request.id, "aberta", "tecnico-1")
        assert engine.get_request(request.id).status == "rascunho"


class TestConcurrentWriters:
    """Test threads racing on the same request."""

    def race(self, workers, action):
        barrier = threading.Barrier(workers)
        outcomes = []

        def run(_):
            barrier.wait()
            try:
                action()
                outcomes.append("ok")
            except (ConcurrentModification, InvalidTransition) as e:
                outcomes.append(e.code)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            list(executor.map(run, range(workers)))
        return outcomes

    def test_same_version_has_single_winner(self, engine, create_request):
        request = create_request("funeral")
        engine.transition(request.id, "aberta", "tecnico-1")
        version = engine.get_request(request.id).version

        outcomes = self.race(8, lambda: engine.transition(
            request.id, "em_analise", "tecnico-1", expected_version=version
        ))

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} == {"concurrent_modification"}
        stored = engine.get_request(request.id)
        assert stored.version == version + 1
        assert [r.status_novo for r in engine.history(request.id)].count("em_analise") == 1

    def test_retried_writers_see_the_winner(self, engine, create_request):
        request = create_request("funeral")
        engine.transition(request.id, "aberta", "tecnico-1")

        outcomes = self.race(8, lambda: engine.transition(request.id, "em_analise", "tecnico-1"))

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {"invalid_transition", "concurrent_modification"}
        assert [r.status_novo for r in engine.history(request.id)].count("em_analise") == 1


class TestGateWritesRacingTransitions:
    """Test pendency and approval writes landing between a gate check and its commit."""

    @pytest.fixture
    def repository(self):
        return RacingRepository()

    def race_before(self, engine, status, write):
        engine.repository.race_status = status
        engine.repository.race = write

    def test_pendency_opened_mid_transition_blocks_it(self, engine, request_in_analysis):
        request = request_in_analysis("funeral")
        engine.judicial.register(request.id, "concessao", "0001234-56.2024.8.26.0100", "gestor-1")
        opened = []
        self.race_before(engine, "aprovada", lambda: opened.append(
            engine.pendencies.open(request.id, "Falta certidão de óbito", "tecnico-1")
        ))

        with pytest.raises(Blocked) as exc_info:
            engine.transition(request.id, "aprovada", "gestor-1")

        assert exc_info.value.pendency_ids == [opened[0].id]
        assert engine.get_request(request.id).status == "em_analise"
        assert [p.id for p in engine.pendencies.list_open(request.id)] == [opened[0].id]
        assert "aprovada" not in [r.status_novo for r in engine.history(request.id)]

    def test_holder_of_pre_pendency_version_conflicts(self, engine, request_in_analysis):
        request = request_in_analysis("funeral")
        engine.judicial.register(request.id, "concessao", "0001234-56.2024.8.26.0100", "gestor-1")
        self.race_before(engine, "aprovada", lambda: engine.pendencies.open(request.id, "Falta RG", "tecnico-1"))

        with pytest.raises(ConcurrentModification):
            engine.transition(request.id, "aprovada", "gestor-1", expected_version=request.version)

        assert engine.get_request(request.id).status == "em_analise"

    def test_approval_instantiated_mid_transition_blocks_it(self, engine, request_in_analysis):
        request = request_in_analysis("funeral")
        approval = engine.request_approval(request.id, "tecnico-1")
        engine.approvals.record_decision(approval.id, "coord-1", "aprovado")
        engine.approvals.record_decision(approval.id, "gestor-1", "aprovado")
        self.race_before(engine, "aprovada", lambda: engine.request_approval(request.id, "tecnico-1"))

        with pytest.raises(ApprovalIncomplete):
            engine.transition(request.id, "aprovada", "gestor-1")

        assert engine.get_request(request.id).status == "em_analise"
        assert len(engine.repository.list_approvals(request.id)) == 2

    def test_transition_racing_a_pendency_open_sees_it(self, engine, request_in_analysis):
        request = request_in_analysis("funeral")
        engine.judicial.register(request.id, "concessao", "0001234-56.2024.8.26.0100", "gestor-1")
        refused = []

        def approve():
            try:
                engine.transition(request.id, "aprovada", "gestor-1")
            except Blocked as e:
                refused.append(e)

        self.race_before(engine, "em_analise", approve)

        pendency = engine.pendencies.open(request.id, "Falta RG", "tecnico-1")

        assert [e.pendency_ids for e in refused] == [[pendency.id]]
        assert engine.get_request(request.id).status == "em_analise"
        assert engine.get_request(request.id).version == request.version + 1


class TestGateWritesLosingRaces:
    """Test that pendency and approval creations retried after a conflict leave no orphans."""

    @pytest.fixture
    def repository(self):
        return InterleavingRepository()

    def test_pendency_open(self, engine, request_in_analysis):
        request = request_in_analysis("funeral")
        engine.repository.interleave = 1

        pendency = engine.pendencies.open(request.id, "Falta comprovante de residência", "tecnico-1")

        assert [p.id for p in engine.repository.list_pendencies(request.id)] == [pendency.id]
        assert engine.get_request(request.id).version == request.version + 2

    def test_approval_instantiation(self, engine, request_in_analysis):
        request = request_in_analysis("funeral")
        engine.repository.interleave = 1

        approval = engine.request_approval(request.id, "tecnico-1")

        assert [a.id for a in engine.repository.list_approvals(request.id)] == [approval.id]
