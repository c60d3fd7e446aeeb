"""Command/response protocol against a real shell."""

import asyncio
import logging
import os
import signal

import pytest

from shellhost.engine.executor import CommandExecutor, new_marker
from shellhost.errors import (
    CommandTimeoutError,
    EngineError,
    PipeClosedError,
    ProcessExitedError,
)
from tests.helpers import requires_posix_shell

pytestmark = requires_posix_shell


def test_markers_are_unique():
    markers = {new_marker() for _ in range(100)}
    assert len(markers) == 100
    assert all(m.startswith("END_COMMAND_") for m in markers)


@pytest.mark.asyncio
async def test_echo_hello(engine):
    process = await engine.launch()

    result = await engine.execute(process, "echo hello", timeout=5)

    assert result == "hello"


@pytest.mark.asyncio
async def test_result_never_contains_marker(engine):
    process = await engine.launch()

    for command in ("echo one", "printf 'a\\nb\\n'", "true", "ls /"):
        result = await engine.execute(process, command, timeout=5)
        assert "END_COMMAND_" not in result

    assert await engine.execute(process, "true", timeout=5) == ""


@pytest.mark.asyncio
async def test_multiline_output_is_trimmed(engine):
    process = await engine.launch()

    result = await engine.execute(process, "echo; echo first; echo second; echo", timeout=5)

    assert result == "first\nsecond"


@pytest.mark.asyncio
async def test_back_to_back_commands_do_not_mix(engine):
    process = await engine.launch()

    first = await engine.execute(process, "echo first", timeout=5)
    second = await engine.execute(process, "echo second", timeout=5)

    assert first == "first"
    assert second == "second"


@pytest.mark.asyncio
async def test_state_persists_between_commands(engine):
    process = await engine.launch()

    await engine.execute(process, "GREETING=persisted", timeout=5)

    assert await engine.execute(process, 'echo "$GREETING"', timeout=5) == "persisted"


@pytest.mark.asyncio
async def test_stderr_does_not_reach_result(engine, caplog):
    process = await engine.launch()

    with caplog.at_level(logging.WARNING, logger="shellhost.engine.process"):
        result = await engine.execute(process, "echo out; echo oops >&2", timeout=5)
        await asyncio.sleep(0.1)

    assert result == "out"
    assert any("oops" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_activity_timestamp_updated(engine):
    process = await engine.launch()
    before = process.last_activity_at
    await asyncio.sleep(0.05)

    await engine.execute(process, "echo tick", timeout=5)

    assert process.last_activity_at > before


@pytest.mark.asyncio
async def test_timeout_leaves_process_running(engine):
    process = await engine.launch()

    with pytest.raises(CommandTimeoutError) as info:
        await engine.execute(process, "sleep 2", timeout=0.3)

    assert info.value.timeout == 0.3
    assert info.value.pid == process.pid
    assert info.value.elapsed >= 0.3
    assert not process.has_exited
    assert engine.active.get(process.pid) is process


@pytest.mark.asyncio
async def test_terminate_on_timeout_is_opt_in(engine):
    process = await engine.launch()

    with pytest.raises(CommandTimeoutError):
        await engine.execute(process, "sleep 5", timeout=0.2, terminate_on_timeout=True)

    assert process.has_exited
    assert engine.active_process_count() == 0


@pytest.mark.asyncio
async def test_externally_killed_process(engine):
    process = await engine.launch()
    os.kill(process.pid, signal.SIGKILL)
    await process.wait(5)

    with pytest.raises(ProcessExitedError) as info:
        await asyncio.wait_for(engine.execute(process, "echo hi", timeout=5), 2)

    assert info.value.exit_code == -signal.SIGKILL


@pytest.mark.asyncio
async def test_exit_during_command(engine):
    process = await engine.launch()

    with pytest.raises(ProcessExitedError) as info:
        await engine.execute(process, "exit 3", timeout=5)

    assert info.value.exit_code == 3
    assert "Exit Code: 3" in str(info.value)


@pytest.mark.asyncio
async def test_closed_stdin_is_a_pipe_error(engine):
    process = await engine.launch()
    process.release()

    with pytest.raises(PipeClosedError):
        await engine.execute(process, "echo hi", timeout=5)


@pytest.mark.asyncio
async def test_empty_command_rejected(engine):
    process = await engine.launch()

    with pytest.raises(ValueError):
        await engine.execute(process, "   ", timeout=5)


@pytest.mark.asyncio
async def test_stale_output_warning_is_advisory(engine, caplog):
    process = await engine.launch()
    executor = CommandExecutor(poll_interval=0.02, stale_warning_after=0.1)

    with caplog.at_level(logging.WARNING, logger="shellhost.engine.executor"):
        result = await executor.execute(process, "sleep 0.4; echo done", timeout=5)

    assert result == "done"
    warnings = [r for r in caplog.records if "may be hanging" in r.getMessage()]
    assert len(warnings) == 1


@pytest.mark.asyncio
async def test_commands_on_one_process_are_serialized(engine):
    process = await engine.launch()

    results = await asyncio.gather(
        engine.execute(process, "sleep 0.2; echo a", timeout=5),
        engine.execute(process, "echo b", timeout=5),
        engine.execute(process, "echo c", timeout=5),
    )

    assert sorted(results) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_processes_run_concurrently(engine):
    first, second = await asyncio.gather(engine.launch(), engine.launch())
    loop = asyncio.get_running_loop()

    start = loop.time()
    results = await asyncio.gather(
        engine.execute(first, "sleep 0.5; echo one", timeout=5),
        engine.execute(second, "sleep 0.5; echo two", timeout=5),
    )

    assert results == ["one", "two"]
    assert loop.time() - start < 0.95


@pytest.mark.asyncio
async def test_unexpected_errors_are_wrapped(engine, monkeypatch):
    process = await engine.launch()

    async def broken_write(text):
        raise OSError("device on fire")

    monkeypatch.setattr(process, "write", broken_write)

    with pytest.raises(EngineError) as info:
        await engine.execute(process, "echo hi", timeout=5)

    assert type(info.value) is EngineError
    assert info.value.pid == process.pid
    assert "device on fire" in str(info.value)


@pytest.mark.asyncio
async def test_output_line_longer_than_stream_limit(engine):
    process = await engine.launch()

    result = await engine.execute(
        process, "head -c 1500000 /dev/zero | tr '\\0' a; echo", timeout=10
    )

    assert len(result) == 1500000
    assert set(result) == {"a"}
    assert await engine.execute(process, "echo after", timeout=5) == "after"


@pytest.mark.asyncio
async def test_multibyte_output_survives_chunking(engine):
    process = await engine.launch()

    result = await engine.execute(
        process, "printf a; yes é | head -n 3000 | tr -d '\\n'; echo", timeout=10
    )

    assert result == "a" + "é" * 3000
