"""Unit tests for the PostgreSQL non-form profile repository's transaction handling."""

import pytest

from semantic_query.domain.entities import NonFormColumnProfile
from semantic_query.infrastructure.database.repositories import PgNonFormProfileRepository


# ── Fakes ──


class FakeResult:
    def scalar_one_or_none(self):
        return None


class FakeSavepoint:
    def __init__(self, session: "SavepointSession"):
        self._session = session

    async def __aenter__(self):
        self._session.pending = []
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self._session.persisted.extend(self._session.pending)
        else:
            self._session.rolled_back += 1
        self._session.pending = None
        return False


class SavepointSession:
    """Records which statements survive their savepoint; fails the Nth execute."""

    def __init__(self, fail_on_call: int | None = None):
        self._fail_on_call = fail_on_call
        self.calls = 0
        self.pending: list[int] | None = None
        self.persisted: list[int] = []
        self.rolled_back = 0

    def begin_nested(self) -> FakeSavepoint:
        return FakeSavepoint(self)

    async def execute(self, stmt):
        self.calls += 1
        if self.pending is None:
            raise AssertionError("statement executed outside a savepoint")
        if self.calls == self._fail_on_call:
            raise RuntimeError("expected 768 dimensions, not 3")
        self.pending.append(self.calls)
        return FakeResult()


def _profile(column_name: str) -> NonFormColumnProfile:
    return NonFormColumnProfile(
        table_name="rpt.Measurement",
        column_name=column_name,
        data_type="decimal",
        semantic_concept="wound area",
        confidence=0.9,
        is_review_required=False,
    )


# ── Tests ──


class TestUpsert:
    @pytest.mark.asyncio
    async def test_failed_row_rolls_back_only_its_savepoint(self):
        session = SavepointSession(fail_on_call=2)
        repo = PgNonFormProfileRepository(session)

        await repo.upsert("customer-1", _profile("area"), discovery_run_id="run-1")
        with pytest.raises(RuntimeError, match="768 dimensions"):
            await repo.upsert("customer-1", _profile("depth"), discovery_run_id="run-1")
        await repo.upsert("customer-1", _profile("length"), discovery_run_id="run-1")

        assert session.persisted == [1, 3]
        assert session.rolled_back == 1

    @pytest.mark.asyncio
    async def test_every_write_gets_its_own_savepoint(self):
        session = SavepointSession()
        repo = PgNonFormProfileRepository(session)

        for name in ("area", "depth", "length"):
            await repo.upsert("customer-1", _profile(name))

        assert session.persisted == [1, 2, 3]
        assert session.rolled_back == 0


class TestGetStored:
    @pytest.mark.asyncio
    async def test_lookup_runs_in_a_savepoint(self):
        session = SavepointSession()
        repo = PgNonFormProfileRepository(session)

        assert await repo.get_stored("customer-1", "rpt.Measurement", "area") is None
        assert session.persisted == [1]

    @pytest.mark.asyncio
    async def test_failed_lookup_does_not_poison_later_writes(self):
        session = SavepointSession(fail_on_call=1)
        repo = PgNonFormProfileRepository(session)

        with pytest.raises(RuntimeError):
            await repo.get_stored("customer-1", "rpt.Measurement", "area")
        await repo.upsert("customer-1", _profile("area"))

        assert session.rolled_back == 1
        assert session.persisted == [2]
