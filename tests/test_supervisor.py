"""
Tests for TaskSupervisor (fire-and-forget background tasks).
"""

import asyncio

import pytest

from dealbot.verification import TaskSupervisor


async def _succeed():
    await asyncio.sleep(0)
    return 'ok'


async def _fail():
    await asyncio.sleep(0)
    raise ValueError('background failure')


class TestTaskSupervisor:
    @pytest.mark.asyncio
    async def test_tracks_until_done(self, supervisor):
        task = supervisor.spawn(_succeed(), name='ok-task')

        assert supervisor.active_count == 1
        assert await supervisor.wait_all(timeout=1)
        assert supervisor.active_count == 0
        assert task.result() == 'ok'
        assert supervisor.failures == []

    @pytest.mark.asyncio
    async def test_failure_recorded_with_context(self, supervisor):
        supervisor.spawn(_fail(), name='bad-task', deal_id='d-1')

        await supervisor.wait_all(timeout=1)

        assert len(supervisor.failures) == 1
        failure = supervisor.failures[0]
        assert failure.name == 'bad-task'
        assert failure.context == {'deal_id': 'd-1'}
        assert str(failure.error) == 'background failure'

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self, supervisor):
        ok = supervisor.spawn(_succeed(), name='ok')
        supervisor.spawn(_fail(), name='bad')

        await supervisor.wait_all(timeout=1)

        assert ok.result() == 'ok'
        assert [f.name for f in supervisor.failures] == ['bad']

    @pytest.mark.asyncio
    async def test_wait_all_times_out(self, supervisor):
        never = asyncio.Event()
        supervisor.spawn(never.wait(), name='stuck')

        assert not await supervisor.wait_all(timeout=0.05)
        assert supervisor.active_count == 1

        await supervisor.cancel_all()
        assert supervisor.active_count == 0

    @pytest.mark.asyncio
    async def test_waits_for_tasks_spawned_while_waiting(self, supervisor):
        finished = []

        async def child():
            finished.append('child')

        async def parent():
            await asyncio.sleep(0)
            supervisor.spawn(child(), name='child')

        supervisor.spawn(parent(), name='parent')

        assert await supervisor.wait_all(timeout=1)
        assert finished == ['child']

    @pytest.mark.asyncio
    async def test_cancel_is_not_a_failure(self):
        supervisor = TaskSupervisor()
        supervisor.spawn(asyncio.sleep(10), name='sleeper')

        await supervisor.cancel_all()

        assert supervisor.failures == []

    @pytest.mark.asyncio
    async def test_wait_all_with_nothing_running(self, supervisor):
        assert await supervisor.wait_all()
