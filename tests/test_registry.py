import logging

from shellhost.engine.registry import ActiveProcesses


class FakeProcess:
    def __init__(self, pid):
        self.pid = pid
        self.released = False

    def release(self):
        self.released = True


def test_add_get_remove():
    active = ActiveProcesses()
    process = FakeProcess(100)

    active.add(process)

    assert active.get(100) is process
    assert len(active) == 1
    assert active.remove(process) is True
    assert active.remove(process) is False
    assert active.get(100) is None


def test_remove_ignores_a_different_process_with_the_same_pid():
    active = ActiveProcesses()
    current = FakeProcess(100)
    active.add(current)

    assert active.remove(FakeProcess(100)) is False
    assert active.get(100) is current


def test_reused_pid_releases_displaced_entry(caplog):
    active = ActiveProcesses()
    stale = FakeProcess(100)
    fresh = FakeProcess(100)
    active.add(stale)

    with caplog.at_level(logging.WARNING, logger="shellhost.engine.registry"):
        active.add(fresh)

    assert active.get(100) is fresh
    assert stale.released
    assert not fresh.released
    assert any("reused pid 100" in r.getMessage() for r in caplog.records)


def test_adding_the_same_process_twice_keeps_it():
    active = ActiveProcesses()
    process = FakeProcess(100)

    active.add(process)
    active.add(process)

    assert not process.released
    assert len(active) == 1


def test_clear_returns_everything():
    active = ActiveProcesses()
    processes = [FakeProcess(pid) for pid in (1, 2, 3)]
    for process in processes:
        active.add(process)

    assert sorted(p.pid for p in active.clear()) == [1, 2, 3]
    assert len(active) == 0
