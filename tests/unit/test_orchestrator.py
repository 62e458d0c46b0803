from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List

import psycopg
import pytest

from pgrefetch.domain.models import ModelDescriptor, NativeQuery, Statement
from pgrefetch.errors import (
    BadConnectionError,
    CommitError,
    CompileError,
    ConfigurationError,
    ConversionError,
    NoPrimaryKeyError,
    QueryError,
    TransactionError,
)
from pgrefetch.infrastructure.transactions import TransactionManager
from pgrefetch.orchestrator import UpdateOrchestrator
from tests.fakes import FakePool, InMemoryTableExecutor, PassthroughCompiler

BEGIN = "BEGIN ISOLATION LEVEL READ COMMITTED"


def _orchestrator(
    pool: FakePool, executor: InMemoryTableExecutor, compiler: Any = None
) -> UpdateOrchestrator:
    return UpdateOrchestrator(
        TransactionManager(pool),
        compiler=compiler or PassthroughCompiler(),
        executor=executor,
    )


class _FailingUpdateCompiler(PassthroughCompiler):
    def compile(self, statement: Statement) -> NativeQuery:
        if statement.operation == "update":
            raise CompileError("cannot compile update")
        return super().compile(statement)


@pytest.mark.asyncio
async def test_update_returns_post_image_for_single_row(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    executor = InMemoryTableExecutor(users_rows)
    compiler = PassthroughCompiler()

    records = await _orchestrator(fake_pool, executor, compiler).update(
        "users", users_model, {"id": 1}, {"name": "Bob"}
    )

    assert records == [{"id": 1, "name": "Bob", "active": True}]
    assert executor.kinds == ["select", "update", "select"]
    refetch = compiler.compiled[-1]
    assert refetch.operation == "find"
    assert refetch.where == {"id": {"in": [1]}}
    assert refetch.match_none is False

    (conn,) = fake_pool.handed_out
    assert conn.statements == [BEGIN, "COMMIT"]
    assert fake_pool.release_count(conn) == 1


@pytest.mark.asyncio
async def test_update_returns_every_matching_row_with_values_applied(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    executor = InMemoryTableExecutor(users_rows)

    records = await _orchestrator(fake_pool, executor).update(
        "users", users_model, {"active": True}, {"name": "Zed"}
    )

    assert len(records) == 2
    assert sorted(record["id"] for record in records) == [1, 2]
    assert all(record["name"] == "Zed" for record in records)
    assert all(isinstance(record["active"], bool) for record in records)
    # Untouched row stays as it was.
    assert users_rows[2]["name"] == "Dave"


@pytest.mark.asyncio
async def test_update_matching_nothing_still_runs_refetch_with_empty_key_set(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    executor = InMemoryTableExecutor(users_rows)
    compiler = PassthroughCompiler()

    records = await _orchestrator(fake_pool, executor, compiler).update(
        "users", users_model, {"id": 99}, {"name": "Nobody"}
    )

    assert records == []
    assert executor.kinds == ["select", "update", "select"]
    assert compiler.compiled[-1].match_none is True
    assert fake_pool.handed_out[0].statements == [BEGIN, "COMMIT"]


@pytest.mark.asyncio
async def test_update_without_matches_is_idempotent(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    executor = InMemoryTableExecutor(users_rows)
    orchestrator = _orchestrator(fake_pool, executor)
    snapshot = copy.deepcopy(users_rows)

    first = await orchestrator.update("users", users_model, {"id": 42}, {"name": "X"})
    second = await orchestrator.update("users", users_model, {"id": 42}, {"name": "X"})

    assert first == second == []
    assert users_rows == snapshot
    assert len(fake_pool.handed_out) == 2
    assert all(fake_pool.release_count(conn) == 1 for conn in fake_pool.handed_out)


@pytest.mark.asyncio
async def test_second_run_after_criteria_stops_matching_returns_empty(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    orchestrator = _orchestrator(fake_pool, InMemoryTableExecutor(users_rows))

    first = await orchestrator.update("users", users_model, {"name": "Alice"}, {"name": "Bob"})
    second = await orchestrator.update("users", users_model, {"name": "Alice"}, {"name": "Bob"})

    assert first == [{"id": 1, "name": "Bob", "active": True}]
    assert second == []


@pytest.mark.asyncio
async def test_find_failure_skips_update_and_releases_once(
    fake_pool: FakePool,
    users_model: ModelDescriptor,
    users_rows: List[Dict[str, Any]],
    query_error: QueryError,
) -> None:
    executor = InMemoryTableExecutor(users_rows, fail_on={0: query_error})

    with pytest.raises(QueryError) as excinfo:
        await _orchestrator(fake_pool, executor).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    assert excinfo.value is query_error
    assert executor.kinds == ["select"]
    (conn,) = fake_pool.handed_out
    assert conn.statements == [BEGIN, "ROLLBACK"]
    assert fake_pool.release_count(conn) == 1


@pytest.mark.asyncio
async def test_update_failure_skips_refetch_and_rolls_back_once(
    fake_pool: FakePool,
    users_model: ModelDescriptor,
    users_rows: List[Dict[str, Any]],
    query_error: QueryError,
) -> None:
    executor = InMemoryTableExecutor(users_rows, fail_on={1: query_error})

    with pytest.raises(QueryError) as excinfo:
        await _orchestrator(fake_pool, executor).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    assert excinfo.value is query_error
    assert executor.kinds == ["select", "update"]
    (conn,) = fake_pool.handed_out
    assert conn.statements.count("ROLLBACK") == 1
    assert "COMMIT" not in conn.statements
    assert fake_pool.release_count(conn) == 1


@pytest.mark.asyncio
async def test_rollback_failure_does_not_replace_update_error(
    users_model: ModelDescriptor, users_rows: List[Dict[str, Any]], query_error: QueryError
) -> None:
    pool = FakePool(fail_on={"ROLLBACK": psycopg.OperationalError("connection lost")})
    executor = InMemoryTableExecutor(users_rows, fail_on={1: query_error})

    with pytest.raises(QueryError) as excinfo:
        await _orchestrator(pool, executor).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    assert excinfo.value is query_error
    assert pool.release_count(pool.handed_out[0]) == 1


@pytest.mark.asyncio
async def test_refetch_failure_rolls_back(
    fake_pool: FakePool,
    users_model: ModelDescriptor,
    users_rows: List[Dict[str, Any]],
    query_error: QueryError,
) -> None:
    executor = InMemoryTableExecutor(users_rows, fail_on={2: query_error})

    with pytest.raises(QueryError):
        await _orchestrator(fake_pool, executor).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    assert executor.kinds == ["select", "update", "select"]
    assert fake_pool.handed_out[0].statements == [BEGIN, "ROLLBACK"]


@pytest.mark.asyncio
async def test_compile_failure_inside_transaction_rolls_back(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    executor = InMemoryTableExecutor(users_rows)

    with pytest.raises(CompileError):
        await _orchestrator(fake_pool, executor, _FailingUpdateCompiler()).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    assert executor.kinds == ["select"]
    assert fake_pool.handed_out[0].statements == [BEGIN, "ROLLBACK"]
    assert fake_pool.release_count(fake_pool.handed_out[0]) == 1


@pytest.mark.asyncio
async def test_commit_failure_is_reported_distinctly_and_releases_once(
    users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    pool = FakePool(fail_on={"COMMIT": psycopg.OperationalError("could not commit")})

    with pytest.raises(CommitError) as excinfo:
        await _orchestrator(pool, InMemoryTableExecutor(users_rows)).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    assert not isinstance(excinfo.value, QueryError)
    assert excinfo.value.kind == "commitError"
    (conn,) = pool.handed_out
    assert conn.statements == [BEGIN, "COMMIT"]
    assert pool.release_count(conn) == 1


@pytest.mark.asyncio
async def test_acquire_failure_is_bad_connection_and_runs_nothing(
    users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    pool = FakePool(getconn_errors=[psycopg.OperationalError("no route to host")])
    executor = InMemoryTableExecutor(users_rows)

    with pytest.raises(BadConnectionError) as excinfo:
        await _orchestrator(pool, executor).update("users", users_model, {"id": 1}, {"name": "B"})

    assert excinfo.value.kind == "badConnection"
    assert executor.calls == []
    assert pool.released == []


@pytest.mark.asyncio
async def test_begin_failure_releases_connection_and_runs_nothing(
    users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    pool = FakePool(fail_on={"BEGIN": psycopg.OperationalError("cannot begin")})
    executor = InMemoryTableExecutor(users_rows)

    with pytest.raises(TransactionError):
        await _orchestrator(pool, executor).update("users", users_model, {"id": 1}, {"name": "B"})

    assert executor.calls == []
    assert pool.release_count(pool.handed_out[0]) == 1


@pytest.mark.asyncio
async def test_missing_model_fails_before_connecting(fake_pool: FakePool) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        await _orchestrator(fake_pool, InMemoryTableExecutor([])).update(
            "users", None, {"id": 1}, {"name": "Bob"}
        )

    assert excinfo.value.kind == "invalidConfiguration"
    assert fake_pool.getconn_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("primary_key", [None, [], ["id", "email"], "missing"])
async def test_unusable_primary_key_fails_before_connecting(
    fake_pool: FakePool, primary_key: Any
) -> None:
    model = ModelDescriptor(primary_key=primary_key, db_schema={"id": "number", "email": "string"})

    with pytest.raises(NoPrimaryKeyError):
        await _orchestrator(fake_pool, InMemoryTableExecutor([])).update(
            "users", model, {"id": 1}, {"email": "x"}
        )

    assert fake_pool.getconn_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("criteria", "values"),
    [
        ({"id": {"between": [1, 2]}}, {"name": "Bob"}),
        ({"id": 1}, {}),
        ({"where": {"id": 1}, "limit": 1}, {"name": "Bob"}),
    ],
)
async def test_conversion_failure_fails_before_connecting(
    fake_pool: FakePool, users_model: ModelDescriptor, criteria: Dict[str, Any], values: Dict[str, Any]
) -> None:
    with pytest.raises(ConversionError):
        await _orchestrator(fake_pool, InMemoryTableExecutor([])).update(
            "users", users_model, criteria, values
        )

    assert fake_pool.getconn_calls == 0


@pytest.mark.asyncio
async def test_rows_without_primary_key_column_roll_back(
    fake_pool: FakePool, users_model: ModelDescriptor
) -> None:
    executor = InMemoryTableExecutor([{"name": "Alice"}])

    with pytest.raises(NoPrimaryKeyError):
        await _orchestrator(fake_pool, executor).update(
            "users", users_model, {"name": "Alice"}, {"name": "Bob"}
        )

    assert executor.kinds == ["select"]
    assert fake_pool.handed_out[0].statements == [BEGIN, "ROLLBACK"]


@pytest.mark.asyncio
async def test_cancellation_mid_update_still_rolls_back_and_releases(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    executor = InMemoryTableExecutor(users_rows, fail_on={1: asyncio.CancelledError()})

    with pytest.raises(asyncio.CancelledError):
        await _orchestrator(fake_pool, executor).update(
            "users", users_model, {"id": 1}, {"name": "Bob"}
        )

    (conn,) = fake_pool.handed_out
    assert conn.statements == [BEGIN, "ROLLBACK"]
    assert fake_pool.release_count(conn) == 1


@pytest.mark.asyncio
async def test_concurrent_updates_use_separate_connections(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    orchestrator = _orchestrator(fake_pool, InMemoryTableExecutor(users_rows))

    first, second = await asyncio.gather(
        orchestrator.update("users", users_model, {"id": 1}, {"name": "Bob"}),
        orchestrator.update("users", users_model, {"id": 3}, {"active": True}),
    )

    assert first == [{"id": 1, "name": "Bob", "active": True}]
    assert second == [{"id": 3, "name": "Dave", "active": True}]
    assert len(fake_pool.handed_out) == 2
    assert fake_pool.handed_out[0] is not fake_pool.handed_out[1]
    assert all(fake_pool.release_count(conn) == 1 for conn in fake_pool.handed_out)


@pytest.mark.asyncio
async def test_statements_carry_model_column_types(
    fake_pool: FakePool, users_model: ModelDescriptor, users_rows: List[Dict[str, Any]]
) -> None:
    compiler = PassthroughCompiler()

    await _orchestrator(fake_pool, InMemoryTableExecutor(users_rows), compiler).update(
        "users", users_model, {"id": 1}, {"name": "Bob"}
    )

    find, update, _ = compiler.compiled
    assert find.column_types == users_model.db_schema
    assert update.column_types == users_model.db_schema
