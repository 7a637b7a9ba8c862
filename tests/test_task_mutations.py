# tests/test_task_mutations.py

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from gtaskall.accounts.registry import Account, AccountRegistry, AccountStatus
from gtaskall.core.errors import MutationError, RemoteTaskError, TaskNotFoundError, UnauthorizedError
from gtaskall.tasks.task_collection import TaskCollection
from gtaskall.tasks.task_models import Priority, TaskList, TaskState
from gtaskall.tasks.task_mutations import BoardColumn, TaskMutator, is_local_id, new_local_id

from .fakes import TODAY, FakeSync, FakeTaskStore, make_task

NOW = datetime(2024, 3, 20, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def sync() -> FakeSync:
    return FakeSync()


@pytest.fixture()
def mutator(
    collection: TaskCollection, registry: AccountRegistry, store: FakeTaskStore, sync: FakeSync, alice: Account
) -> TaskMutator:
    collection.publish(
        {
            "LA": [
                make_task("t1", "Write report", list_id="LA", account_id="a1", due=TODAY),
                make_task("t2", "Call bank", list_id="LA", account_id="a1"),
            ]
        },
        [TaskList(id="LA", title="Work", account_id="a1")],
    )
    return TaskMutator(
        collection,
        registry,
        store,
        sync=sync,
        now=lambda: NOW,
        id_factory=lambda: "local-test0001",
    )


@pytest.mark.asyncio
async def test_complete_is_optimistic_then_reconciled(
    mutator: TaskMutator, collection: TaskCollection, sync: FakeSync
) -> None:
    pending = asyncio.create_task(mutator.complete("t1"))
    await asyncio.sleep(0)

    local = collection.find("t1")
    assert local.state == TaskState.COMPLETED
    assert collection.has_pending(local.key)

    result = await pending

    assert result.state == TaskState.COMPLETED
    assert result.completed_at == NOW
    assert result.updated == datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)
    assert result.account_id == "a1"
    assert result.account_email == "alice@example.com"
    assert collection.find("t1") == result
    assert not collection.has_pending(result.key)
    assert sync.requests == 1


@pytest.mark.asyncio
async def test_failed_mutation_rolls_back_exactly(
    mutator: TaskMutator, collection: TaskCollection, store: FakeTaskStore, sync: FakeSync
) -> None:
    before = collection.find("t1")
    store.patch_error = RemoteTaskError("boom", status_code=500)

    with pytest.raises(MutationError) as exc:
        await mutator.reschedule("t1", date(2024, 4, 1))

    assert exc.value.action == "reschedule"
    assert collection.find("t1") == before
    assert not collection.has_pending(before.key)
    assert sync.requests == 0


@pytest.mark.asyncio
async def test_unauthorized_mutation_expires_account(
    mutator: TaskMutator, collection: TaskCollection, store: FakeTaskStore, registry: AccountRegistry
) -> None:
    before = collection.find("t2")
    store.fail["tok-a"] = UnauthorizedError()

    with pytest.raises(MutationError) as exc:
        await mutator.complete("t2")

    assert isinstance(exc.value.cause, UnauthorizedError)
    assert registry.get("a1").status == AccountStatus.EXPIRED
    assert collection.find("t2") == before

    # Further mutations are refused locally until the account is reconnected.
    calls = len(store.calls)
    with pytest.raises(MutationError):
        await mutator.complete("t2")
    assert len(store.calls) == calls


@pytest.mark.asyncio
async def test_optimistic_change_survives_a_concurrent_publish(
    mutator: TaskMutator, collection: TaskCollection
) -> None:
    stale = collection.find("t1")
    pending = asyncio.create_task(mutator.edit("t1", title="Write final report"))
    await asyncio.sleep(0)

    collection.publish({"LA": [stale]}, collection.lists())
    assert collection.find("t1").title == "Write final report"

    await pending
    assert collection.find("t1").title == "Write final report"


@pytest.mark.asyncio
async def test_create_swaps_local_id_for_server_id(
    mutator: TaskMutator, collection: TaskCollection, sync: FakeSync
) -> None:
    pending = asyncio.create_task(mutator.create("LA", "  New task  ", due=TODAY, priority=Priority.P1))
    await asyncio.sleep(0)

    local = collection.find("local-test0001")
    assert local is not None
    assert local.title == "New task"
    assert local.account_id == "a1"

    created = await pending

    assert created.id == "srv-1"
    assert created.priority == Priority.P1
    assert collection.find("local-test0001") is None
    assert collection.find("srv-1").account_email == "alice@example.com"
    assert sync.requests == 1


@pytest.mark.asyncio
async def test_failed_create_removes_local_copy(
    mutator: TaskMutator, collection: TaskCollection, store: FakeTaskStore
) -> None:
    store.insert_error = RemoteTaskError("nope")
    count = len(collection)

    with pytest.raises(MutationError):
        await mutator.create("LA", "Doomed")

    assert collection.find("local-test0001") is None
    assert len(collection) == count


@pytest.mark.asyncio
async def test_create_validates_input(mutator: TaskMutator) -> None:
    with pytest.raises(ValueError):
        await mutator.create("LA", "   ")
    with pytest.raises(TaskNotFoundError):
        await mutator.create("missing-list", "x")


@pytest.mark.asyncio
async def test_task_still_being_created_cannot_be_mutated(mutator: TaskMutator, collection: TaskCollection) -> None:
    collection.upsert(make_task("local-abcd1234", "draft", list_id="LA", account_id="a1"))
    with pytest.raises(MutationError):
        await mutator.complete("local-abcd1234")


@pytest.mark.asyncio
async def test_unknown_task_raises(mutator: TaskMutator) -> None:
    with pytest.raises(TaskNotFoundError):
        await mutator.complete("nope")


@pytest.mark.asyncio
async def test_board_moves_update_state(mutator: TaskMutator, collection: TaskCollection) -> None:
    doing = await mutator.move_to_column("t1", BoardColumn.IN_PROGRESS)
    assert doing.state == TaskState.IN_PROGRESS
    assert doing.completed_at is None

    done = await mutator.move_to_column("t1", BoardColumn.DONE)
    assert done.state == TaskState.COMPLETED
    assert done.completed_at == NOW

    back = await mutator.move_to_column("t1", BoardColumn.TODO)
    assert back.state == TaskState.TODO
    assert back.completed_at is None
    assert back.due == TODAY


@pytest.mark.asyncio
async def test_todo_column_restores_remembered_due_date(mutator: TaskMutator) -> None:
    await mutator.move_to_column("t1", BoardColumn.IN_PROGRESS)
    cleared = await mutator.reschedule("t1", None)
    assert cleared.due is None

    restored = await mutator.move_to_column("t1", BoardColumn.TODO)
    assert restored.due == TODAY


@pytest.mark.asyncio
async def test_move_to_a_day_reschedules(mutator: TaskMutator) -> None:
    moved = await mutator.move_to_column("t2", date(2024, 3, 25))
    assert moved.due == date(2024, 3, 25)


@pytest.mark.asyncio
async def test_move_to_same_column_is_a_no_op(mutator: TaskMutator, store: FakeTaskStore) -> None:
    await mutator.move_to_column("t2", BoardColumn.TODO)
    assert store.calls == []


@pytest.mark.asyncio
async def test_edit_changes_only_given_fields(mutator: TaskMutator, store: FakeTaskStore) -> None:
    edited = await mutator.edit("t2", priority=Priority.P2, color="#22c55e", recurring=True)

    assert edited.title == "Call bank"
    assert edited.priority == Priority.P2
    assert edited.color == "#22c55e"
    assert edited.recurring is True

    cleared = await mutator.edit("t2", color=None)
    assert cleared.color is None

    calls = len(store.calls)
    assert await mutator.edit("t2") == cleared
    assert len(store.calls) == calls

    with pytest.raises(ValueError):
        await mutator.edit("t2", title="  ")


@pytest.mark.asyncio
async def test_uncomplete_clears_completion(mutator: TaskMutator) -> None:
    await mutator.complete("t2")
    reopened = await mutator.uncomplete("t2")
    assert reopened.state == TaskState.TODO
    assert reopened.completed_at is None


@pytest.mark.asyncio
async def test_mutation_schedules_debounced_sync_on_engine(state, clock) -> None:
    # A finished cycle pushes the baseline out, so only the debounce decides next_due_at.
    await state.engine.run_cycle()
    state.registry.add_account(Account(id="a1", email="alice@example.com", access_token="tok-a"))
    state.collection.publish(
        {"LA": [make_task("t9", "x", list_id="LA", account_id="a1")]},
        [TaskList(id="LA", title="Work", account_id="a1")],
    )

    await state.mutator.complete("t9")

    assert state.engine.next_due_at == pytest.approx(clock.now + 2.0)


def test_board_column_parse_aliases() -> None:
    assert BoardColumn.parse("Done") == BoardColumn.DONE
    assert BoardColumn.parse("in-progress") == BoardColumn.IN_PROGRESS
    assert BoardColumn.parse("doing") == BoardColumn.IN_PROGRESS
    assert BoardColumn.parse("to do") == BoardColumn.TODO
    with pytest.raises(ValueError):
        BoardColumn.parse("someday")


def test_local_ids() -> None:
    lid = new_local_id()
    assert is_local_id(lid)
    assert not is_local_id("srv-1")


@pytest.mark.asyncio
async def test_edit_rejects_malformed_color(
    mutator: TaskMutator, collection: TaskCollection, store: FakeTaskStore
) -> None:
    before = collection.find("t2")

    with pytest.raises(ValueError):
        await mutator.edit("t2", color="red")

    assert collection.find("t2") == before
    assert store.calls == []

    edited = await mutator.edit("t2", color=" #22C55E ")
    assert edited.color == "#22c55e"
    assert edited.notes == before.notes


@pytest.mark.asyncio
async def test_create_rejects_malformed_color(mutator: TaskMutator, collection: TaskCollection) -> None:
    count = len(collection)
    with pytest.raises(ValueError):
        await mutator.create("LA", "Painted", color="#12345")
    assert len(collection) == count


@pytest.mark.asyncio
async def test_second_change_waits_for_the_first_to_settle(
    mutator: TaskMutator, collection: TaskCollection, store: FakeTaskStore
) -> None:
    before = collection.find("t1")
    store.patch_error = RemoteTaskError("rejected", status_code=409)
    first = asyncio.create_task(mutator.complete("t1"))
    await asyncio.sleep(0)

    with pytest.raises(MutationError) as exc:
        await mutator.edit("t1", title="Renamed")
    assert exc.value.action == "edit"

    with pytest.raises(MutationError):
        await first

    final = collection.find("t1")
    assert final == before
    assert final.state == TaskState.TODO
    assert store.calls == [("patch", "t1")]

    # Once settled the task accepts changes again.
    store.patch_error = None
    assert (await mutator.edit("t1", title="Renamed")).title == "Renamed"


@pytest.mark.asyncio
async def test_remembered_due_is_dropped_when_a_sync_no_longer_returns_the_task(
    mutator: TaskMutator, collection: TaskCollection
) -> None:
    await mutator.complete("t1")
    lists = collection.lists()

    # Gone from the remote store, then recreated under the same id without a date.
    collection.publish({"LA": [collection.find("t2")]}, lists)
    collection.publish(
        {"LA": [make_task("t1", "Write report", list_id="LA", account_id="a1", state=TaskState.COMPLETED)]},
        lists,
    )

    back = await mutator.move_to_column("t1", BoardColumn.TODO)
    assert back.state == TaskState.TODO
    assert back.due is None


@pytest.mark.asyncio
async def test_remembered_due_survives_while_the_task_is_still_synced(
    mutator: TaskMutator, collection: TaskCollection
) -> None:
    await mutator.complete("t1")
    await mutator.reschedule("t1", None)
    collection.publish({"LA": collection.snapshot()}, collection.lists())

    back = await mutator.move_to_column("t1", BoardColumn.TODO)
    assert back.due == TODAY
