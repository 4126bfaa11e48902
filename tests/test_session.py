import asyncio
import logging

import pytest

from daytodo_client.drag import DragIntent
from daytodo_client.errors import SessionClosed, ValidationFailure
from daytodo_client.session import DaySession
from conftest import FakeTaskStore, make_tasks

DAY = '2025-03-14'


def _ids(tasks):
    return [(t.id, t.done, t.order) for t in tasks]


def _session(rows, store_cls=FakeTaskStore):
    tasks = make_tasks(rows, DAY)
    store = store_cls(tasks)
    return store, DaySession(store, DAY, tasks=tasks)


class GatedStore(FakeTaskStore):
    """Fetches read the data immediately but return only once released."""

    def __init__(self, tasks=None):
        super().__init__(tasks)
        self.gates = []

    async def fetch_tasks_for_period(self, period_key):
        result = await super().fetch_tasks_for_period(period_key)
        if self.gates:
            await self.gates.pop(0).wait()
        return result


@pytest.mark.asyncio
async def test_reorder_persists_every_changed_task():
    store, session = _session([('A', False, 0), ('B', False, 1), ('C', False, 2)])
    outcome = await session.reorder('A', 'C')
    assert outcome.ok and outcome.attempted == 3
    assert [t.id for t in session.pending] == ['B', 'C', 'A']
    sent = {c[1]: c[2] for c in store.updates()}
    assert sent == {'B': {'order': 0, 'done': False}, 'C': {'order': 1, 'done': False}, 'A': {'order': 2, 'done': False}}
    # a successful batch does not refetch
    assert store.fetch_count == 0


@pytest.mark.asyncio
async def test_cross_partition_reorder_sends_done_and_order():
    store, session = _session([('A', False, 0), ('X', True, 0), ('Y', True, 1)])
    await session.reorder('A', 'Y')
    assert session.pending == []
    assert [(t.id, t.order) for t in session.completed] == [('X', 0), ('A', 1), ('Y', 2)]
    assert store.tasks['A'].done is True and store.tasks['A'].order == 1


@pytest.mark.asyncio
async def test_failed_batch_resyncs_whole_day(caplog):
    store, session = _session([('A', False, 0), ('B', False, 1), ('C', False, 2)])
    store.fail_all = True
    with caplog.at_level(logging.WARNING, logger='daytodo_client.session'):
        outcome = await session.reorder('A', 'C')
    assert not outcome.ok
    assert outcome.failed == 3 and outcome.resynced
    # optimistic order is gone; the mirror matches the server again
    assert _ids(session.tasks) == [('A', False, 0), ('B', False, 1), ('C', False, 2)]
    assert store.fetch_count == 1
    assert any('resyncing' in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_partial_failure_installs_server_state():
    store, session = _session([('A', False, 0), ('B', False, 1), ('C', False, 2)])
    store.fail_updates = {'C'}
    outcome = await session.reorder('A', 'C')
    assert not outcome.ok and outcome.failed == 1
    server = {t.id: (t.done, t.order) for t in store.tasks.values()}
    assert {t.id: (t.done, t.order) for t in session.tasks} == server


@pytest.mark.asyncio
async def test_stale_resync_is_discarded():
    store, session = _session([('A', False, 0), ('B', False, 1)], store_cls=GatedStore)
    gate = asyncio.Event()
    store.gates = [gate]
    first = asyncio.ensure_future(session.resync())
    await asyncio.sleep(0)
    store.tasks['A'] = store.tasks['A'].model_copy(update={'order': 5})
    assert await session.resync() is True
    gate.set()
    assert await first is False
    assert _ids(session.tasks) == [('B', False, 1), ('A', False, 5)]


@pytest.mark.asyncio
async def test_unknown_ids_are_ignored():
    store, session = _session([('A', False, 0)])
    outcome = await session.reorder('A', 'ghost')
    assert outcome.ok and outcome.attempted == 0
    assert store.calls == []


@pytest.mark.asyncio
async def test_handle_intent_applies_before_persisting():
    store, session = _session([('A', False, 0), ('B', False, 1), ('C', False, 2)])
    fut = session.handle_intent(DragIntent('A', 'C'))
    assert fut is not None
    assert [t.id for t in session.pending] == ['B', 'C', 'A']
    assert store.calls == []
    await session.drain()
    assert (await fut).ok
    assert store.tasks['A'].order == 2


@pytest.mark.asyncio
async def test_handle_intent_on_self_does_nothing():
    store, session = _session([('A', False, 0), ('B', False, 1)])
    assert session.handle_intent(DragIntent('A', 'A')) is None


@pytest.mark.asyncio
async def test_edit_rolls_back_on_failure():
    store, session = _session([('A', False, 0), ('B', False, 1)])
    seen = []
    session.subscribe(lambda tasks: seen.append([t.title for t in tasks]))
    store.fail_all = True
    store.fail_fetch = True
    assert await session.on_update_todo('A', {'title': 'renamed'}) is False
    assert seen[0] == ['renamed', 'task B']
    assert [t.title for t in session.tasks] == ['task A', 'task B']


@pytest.mark.asyncio
async def test_edit_success_is_revalidated():
    store, session = _session([('A', False, 0)])
    assert await session.update_task('A', {'title': '  renamed  ', 'done': True}) is True
    assert store.tasks['A'].title == 'renamed'
    assert session.tasks[0].done is True
    assert store.fetch_count == 1


@pytest.mark.asyncio
async def test_moving_task_to_other_day_removes_it():
    store, session = _session([('A', False, 0), ('B', False, 1)])
    assert await session.update_task('A', {'date': '2025-03-15'})
    assert [t.id for t in session.tasks] == ['B']


@pytest.mark.asyncio
async def test_empty_title_edit_is_rejected_without_calls():
    store, session = _session([('A', False, 0)])
    with pytest.raises(ValidationFailure):
        await session.update_task('A', {'title': '   '})
    assert await session.on_update_todo('A', {'title': ''}) is False
    assert store.calls == []


@pytest.mark.asyncio
async def test_update_with_nothing_editable_is_noop():
    store, session = _session([('A', False, 0)])
    assert await session.update_task('A', {'colour': 'red', 'title': None}) is True
    assert store.calls == []


@pytest.mark.asyncio
async def test_delete_success_and_failure():
    store, session = _session([('A', False, 0), ('B', False, 1)])
    assert await session.on_delete_todo('A') is True
    assert [t.id for t in session.tasks] == ['B']

    store.fail_all = True
    store.fail_fetch = True
    assert await session.delete_task('B') is False
    assert [t.id for t in session.tasks] == ['B']
    assert await session.delete_task('missing') is False


@pytest.mark.asyncio
async def test_add_task_appends_to_pending():
    store, session = _session([('A', False, 0), ('B', False, 3), ('X', True, 0)])
    created = await session.on_add_todo('  buy milk ')
    assert created is not None and created.title == 'buy milk'
    assert ('create', DAY, 'buy milk', 4) in store.calls
    assert [t.title for t in session.pending][-1] == 'buy milk'


@pytest.mark.asyncio
async def test_add_task_validation_and_failure():
    store, session = _session([('A', False, 0)])
    with pytest.raises(ValidationFailure):
        await session.add_task('')
    assert await session.on_add_todo('   ') is None
    assert store.calls == []

    store.fail_all = True
    assert await session.add_task('later') is None
    assert [t.id for t in session.tasks] == ['A']


@pytest.mark.asyncio
async def test_load_keeps_only_this_day():
    store = FakeTaskStore(make_tasks([('A', False, 0)], DAY) + make_tasks([('Z', False, 0)], '2025-03-20'))
    session = DaySession(store, DAY)
    assert session.tasks == []
    await session.load()
    assert [t.id for t in session.tasks] == ['A']
    assert store.calls == [('fetch', '2025-03')]


@pytest.mark.asyncio
async def test_close_detaches_but_lets_batches_finish():
    store, session = _session([('A', False, 0), ('B', False, 1)])
    calls = []
    session.subscribe(calls.append)
    session.handle_intent(DragIntent('A', 'B'))
    session.close()
    assert session.closed
    await session.drain()
    assert store.tasks['A'].order == 1
    with pytest.raises(SessionClosed):
        await session.reorder('A', 'B')
    assert session.handle_intent(DragIntent('B', 'A')) is None
    session.replace_from_server([])
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_async_context_manager_loads_and_closes():
    store = FakeTaskStore(make_tasks([('A', False, 0)], DAY))
    async with DaySession(store, DAY) as session:
        assert [t.id for t in session.tasks] == ['A']
    assert session.closed


@pytest.mark.asyncio
async def test_failed_batch_without_resync_restores_previous_order():
    store, session = _session([('A', False, 0), ('B', False, 1), ('C', False, 2)])
    store.fail_all = True
    store.fail_fetch = True
    outcome = await session.reorder('A', 'C')
    assert not outcome.ok and not outcome.resynced
    assert outcome.rolled_back
    assert _ids(session.tasks) == [('A', False, 0), ('B', False, 1), ('C', False, 2)]


@pytest.mark.asyncio
async def test_dropped_batch_without_resync_restores_previous_order():
    store, session = _session([('A', False, 0), ('X', True, 0)])
    store.fail_all = True
    store.fail_fetch = True
    fut = session.handle_intent(DragIntent('A', 'completed'))
    assert [t.id for t in session.completed] == ['X', 'A']
    await session.drain()
    assert (await fut).rolled_back
    assert _ids(session.tasks) == [('A', False, 0), ('X', True, 0)]


@pytest.mark.asyncio
async def test_newer_state_is_not_overwritten_by_rollback():
    store, session = _session([('A', False, 0), ('B', False, 1)])
    store.fail_all = True
    store.fail_fetch = True
    fut = session.handle_intent(DragIntent('A', 'B'))
    # server state pushed in before the batch settles wins
    session.replace_from_server(make_tasks([('B', False, 0), ('A', False, 1), ('N', False, 2)], DAY))
    await session.drain()
    assert not (await fut).rolled_back
    assert [t.id for t in session.tasks] == ['B', 'A', 'N']
