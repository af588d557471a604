"""ImportResult status derivation and finalization."""

from datetime import datetime, timedelta, timezone

import pytest

from Metaport.identity import ActorIdentity, run_as
from Metaport.result import ImportResult, OperationStatus, ResultFinalizedError
from Metaport.schemas import ImportRequest

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _result() -> ImportResult:
    r = ImportResult(request=ImportRequest(), identity=ActorIdentity(user="u"))
    r.started_at = T0
    return r


def test_clean_drain_is_success():
    r = _result()
    r.increment_metric("entity:created", 2)
    status = r.finalize(creation_order=["a", "b"], resume_position=2, ended_at=T0 + timedelta(seconds=1))
    assert status is OperationStatus.SUCCESS
    assert r.metric("duration") == 1000


def test_abort_with_progress_is_partial():
    r = _result()
    r.increment_metric("entity:updated")
    r.abort({"kind": "FatalPersistence"})
    assert r.finalize(creation_order=["a"], resume_position=1, ended_at=T0) is OperationStatus.PARTIAL_SUCCESS


def test_abort_without_progress_is_fail():
    r = _result()
    r.increment_metric("entity:failed")
    r.abort({"kind": "EntityRejected"})
    assert r.finalize(creation_order=[], resume_position=0, ended_at=T0) is OperationStatus.FAIL


def test_finalized_result_is_frozen():
    r = _result()
    r.finalize(creation_order=[], resume_position=0, ended_at=T0)
    with pytest.raises(ResultFinalizedError):
        r.increment_metric("entity:created")
    with pytest.raises(ResultFinalizedError):
        r.finalize(creation_order=[], resume_position=0, ended_at=T0)


def test_to_dict_uses_wire_names():
    r = _result()
    r.finalize(creation_order=["a"], resume_position=1, ended_at=T0)
    d = r.to_dict()
    assert d["status"] == "SUCCESS"
    assert d["creationOrder"] == ["a"]
    assert d["resumePosition"] == 1
    assert d["identity"] == {"user": "u", "host": None, "clientAddress": None}


@pytest.mark.asyncio
async def test_run_as_passes_identity_and_propagates_errors():
    who = ActorIdentity(user="carol")

    async def work(identity):
        return identity.user

    assert await run_as(who, work) == "carol"

    async def failing(identity):
        raise ValueError("nope")

    with pytest.raises(ValueError):
        await run_as(who, failing)


def test_entity_failure_counted_and_listed():
    r = _result()
    r.record_entity_failure("g1", "hive_table")
    assert r.failed_entities == ["g1"]
    assert r.metric("entity:failed") == 1
    assert r.metric("entity:hive_table:failed") == 1
    r.finalize(creation_order=["g1"], resume_position=1, ended_at=T0)
    assert r.to_dict()["failedEntities"] == ["g1"]
