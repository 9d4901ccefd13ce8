import threading
import time

import pytest

from services.scheduler import SchedulerState, SyncScheduler


def test_trigger_now_runs_cycle_and_returns_result():
    scheduler = SyncScheduler(lambda: "done", interval=60)
    assert scheduler.trigger_now() == "done"
    assert scheduler.cycles_run == 1
    assert scheduler.last_result == "done"


def test_trigger_while_running_is_coalesced():
    entered = threading.Event()
    release = threading.Event()

    def slow_cycle():
        entered.set()
        release.wait(5)
        return "slow"

    scheduler = SyncScheduler(slow_cycle, interval=60)
    worker = threading.Thread(target=scheduler.trigger_now)
    worker.start()
    assert entered.wait(5)

    assert scheduler.trigger_now() is None

    release.set()
    worker.join(5)
    assert scheduler.cycles_run == 1


def test_start_runs_cycles_and_stop_joins():
    ran = threading.Event()
    count = []

    def cycle():
        count.append(1)
        ran.set()

    scheduler = SyncScheduler(cycle, interval=0.05)
    scheduler.start()
    assert scheduler.state is SchedulerState.RUNNING
    assert ran.wait(5)
    scheduler.stop(timeout=5)
    assert scheduler.state is SchedulerState.STOPPED
    finished = len(count)
    assert finished >= 1
    assert scheduler.cycles_run == finished


def test_failing_cycle_does_not_kill_the_loop():
    calls = []

    def cycle():
        calls.append(1)
        raise RuntimeError("boom")

    scheduler = SyncScheduler(cycle, interval=60)
    assert scheduler.trigger_now() is None
    assert scheduler.trigger_now() is None
    assert len(calls) == 2


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        SyncScheduler(lambda: None, interval=0)


def test_stop_waits_for_manual_cycle_on_another_thread():
    loop_ran = threading.Event()
    entered = threading.Event()
    release = threading.Event()
    finished = []

    def cycle():
        if threading.current_thread().name != "manual":
            loop_ran.set()
            return None
        entered.set()
        release.wait(5)
        finished.append(1)
        return "manual"

    def manual():
        # the loop may still hold the cycle lock right after its first cycle
        while scheduler.trigger_now() != "manual":
            time.sleep(0.01)

    scheduler = SyncScheduler(cycle, interval=60)
    scheduler.start()
    assert loop_ran.wait(5)
    worker = threading.Thread(target=manual, name="manual")
    worker.start()
    assert entered.wait(5)

    threading.Timer(0.2, release.set).start()
    scheduler.stop(timeout=5)
    assert finished == [1]
    assert scheduler.state is SchedulerState.STOPPED
    worker.join(5)
