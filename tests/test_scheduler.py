import asyncio

import pytest

from musixbot.errors import BusyError, NotFoundError
from musixbot.jobs.scheduler import Scheduler
from musixbot.models.enums import JobEventKind


def test_slow_job_never_overlaps_itself():
    starts = []
    active = {"n": 0, "peak": 0}

    async def scenario():
        loop = asyncio.get_running_loop()
        scheduler = Scheduler()

        async def slow():
            starts.append(loop.time())
            active["n"] += 1
            active["peak"] = max(active["peak"], active["n"])
            await asyncio.sleep(0.25)
            active["n"] -= 1

        scheduler.register_job("slow", "Slow job", 0.1, slow)
        scheduler.start()
        await asyncio.sleep(1.0)
        scheduler.stop()
        await scheduler.wait_idle()

    asyncio.run(scenario())
    assert active["peak"] == 1
    assert len(starts) >= 2
    # ticks at 100ms intervals, but a 250ms run swallows the ticks that land inside it
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.25 for gap in gaps)


def test_events_are_ordered_and_last_run_set_on_success_only():
    events = []

    async def scenario():
        scheduler = Scheduler(clock=lambda: 100.0)
        scheduler.add_listener(lambda e: events.append((e.job_id, e.kind)))

        async def ok():
            return None

        async def broken():
            raise RuntimeError("job failed")

        scheduler.register_job("ok", "OK", 60, ok)
        scheduler.register_job("broken", "Broken", 60, broken)
        await scheduler.run_job_now("ok")
        with pytest.raises(RuntimeError, match="job failed"):
            await scheduler.run_job_now("broken")
        return scheduler

    scheduler = asyncio.run(scenario())
    assert events == [
        ("ok", JobEventKind.START),
        ("ok", JobEventKind.COMPLETE),
        ("broken", JobEventKind.START),
        ("broken", JobEventKind.ERROR),
    ]
    assert scheduler.get_job_status("ok")["last_run_at"] == 100.0
    broken = scheduler.get_job_status("broken")
    assert broken["last_run_at"] is None
    assert broken["last_error"] == "job failed"
    assert broken["is_running"] is False


def test_run_job_now_unknown_and_busy():
    async def scenario():
        scheduler = Scheduler()
        release = asyncio.Event()

        async def blocking():
            await release.wait()

        scheduler.register_job("block", "Blocking", 60, blocking)
        with pytest.raises(NotFoundError):
            await scheduler.run_job_now("missing")

        first = asyncio.create_task(scheduler.run_job_now("block"))
        await asyncio.sleep(0)
        with pytest.raises(BusyError):
            await scheduler.run_job_now("block")
        release.set()
        await first

    asyncio.run(scenario())


def test_pause_resume_and_remove():
    runs = []

    async def scenario():
        scheduler = Scheduler()

        async def tick():
            runs.append(1)

        scheduler.register_job("tick", "Tick", 0.02, tick)
        scheduler.start()
        scheduler.pause_job("tick")
        await asyncio.sleep(0.1)
        paused_runs = len(runs)
        scheduler.resume_job("tick")
        await asyncio.sleep(0.1)
        assert scheduler.remove_job("tick") is True
        assert scheduler.remove_job("tick") is False
        scheduler.stop()
        await scheduler.wait_idle()
        return paused_runs, scheduler

    paused_runs, scheduler = asyncio.run(scenario())
    assert paused_runs == 0
    assert len(runs) >= 1
    assert scheduler.get_all_jobs() == []


def test_run_all_jobs_collects_errors():
    async def scenario():
        scheduler = Scheduler()

        async def ok():
            return None

        async def broken():
            raise ValueError("nope")

        scheduler.register_job("a", "A", 60, ok)
        scheduler.register_job("b", "B", 60, broken)
        return await scheduler.run_all_jobs()

    assert asyncio.run(scenario()) == {"a": None, "b": "nope"}
