import asyncio
import os
import signal

import pytest

from shellhost.engine.supervisor import InterpreterEngine
from tests.helpers import posix_config, requires_posix_shell, wait_until_dead

pytestmark = requires_posix_shell


async def _kill(process):
    os.kill(process.pid, signal.SIGKILL)
    await process.wait(5)


@pytest.mark.asyncio
async def test_active_count_covers_both_registries(engine):
    await engine.launch()
    await engine.create_session("persistent")

    assert engine.active_process_count() == 2
    assert len(engine.list_processes()) == 2


@pytest.mark.asyncio
async def test_sweep_removes_only_exited_processes(engine):
    alive = await engine.launch()
    dead = await engine.launch()
    session = await engine.create_session("gone")
    await _kill(dead)
    await _kill(session)

    cleaned = engine.sweep()

    assert cleaned == 2
    assert engine.active.get(alive.pid) is alive
    assert engine.active.get(dead.pid) is None
    assert "gone" not in engine.sessions
    assert dead.released and session.released
    assert engine.active_process_count() == 1
    assert await engine.execute(alive, "echo still here", timeout=5) == "still here"


@pytest.mark.asyncio
async def test_sweep_with_nothing_to_do(engine):
    await engine.launch()

    assert engine.sweep() == 0
    assert engine.active_process_count() == 1


@pytest.mark.asyncio
async def test_sweep_does_not_block_running_commands(engine):
    process = await engine.launch()

    command = asyncio.ensure_future(engine.execute(process, "sleep 0.3; echo ok", timeout=5))
    await asyncio.sleep(0.1)
    assert engine.sweep() == 0

    assert await command == "ok"


@pytest.mark.asyncio
async def test_cleanup_all_kills_everything(engine):
    processes = [await engine.launch(), await engine.launch()]
    processes.append(await engine.create_session("persistent"))

    count = await engine.cleanup_all()

    assert count == 3
    assert engine.active_process_count() == 0
    assert all(p.has_exited for p in processes)
    assert engine.get_session("persistent") is None


@pytest.mark.asyncio
async def test_periodic_sweep_runs():
    async with InterpreterEngine(posix_config(cleanup_interval=0.1)) as eng:
        assert eng.cleanup.running
        process = await eng.launch()
        await _kill(process)

        await asyncio.sleep(0.35)

        assert eng.active_process_count() == 0
        assert process.released

    assert not eng.cleanup.running


@pytest.mark.asyncio
async def test_stop_cleans_up_processes():
    eng = InterpreterEngine(posix_config())
    await eng.start()
    process = await eng.launch()

    await eng.stop()

    assert process.has_exited
    assert eng.active_process_count() == 0


@pytest.mark.asyncio
async def test_cleanup_all_kills_child_processes(engine):
    process = await engine.launch()
    child = int(await engine.execute(process, "sleep 60 & echo $!", timeout=5))

    await engine.cleanup_all()

    assert process.has_exited
    assert wait_until_dead(child)


@pytest.mark.asyncio
async def test_cleanup_all_kills_children_of_exited_interpreter(engine):
    process = await engine.launch()
    child = int(await engine.execute(process, "sleep 60 & echo $!", timeout=5))
    os.kill(process.pid, signal.SIGKILL)
    assert await process.wait_exited(5.0)

    assert await engine.cleanup_all() == 1
    assert wait_until_dead(child)
