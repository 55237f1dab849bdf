import asyncio

import pytest

from reeltrack.worker import ShutdownError, TaskQueue


def test_jobs_run_and_resolve_futures():
    async def scenario():
        queue = TaskQueue(workers=2)
        queue.start()

        async def job(n):
            await asyncio.sleep(0.01)
            return n * 2

        futures = [queue.submit(f"job{n}", lambda n=n: job(n)) for n in range(5)]
        results = await asyncio.gather(*futures)
        await queue.stop()
        return results

    assert asyncio.run(scenario()) == [0, 2, 4, 6, 8]


def test_failing_job_calls_error_handler_and_worker_survives():
    errors = []

    async def scenario():
        queue = TaskQueue(workers=1)

        async def boom():
            raise ValueError("provider exploded")

        async def fine():
            return "ok"

        bad = queue.submit("bad", boom, on_error=errors.append)
        good = queue.submit("good", fine, on_error=errors.append)
        await queue.join()
        await queue.stop()
        return bad, good

    bad, good = asyncio.run(scenario())
    assert len(errors) == 1
    assert isinstance(errors[0], ValueError)
    assert isinstance(bad.exception(), ValueError)
    assert good.result() == "ok"


def test_error_handler_failure_does_not_kill_worker():
    async def scenario():
        queue = TaskQueue(workers=1)

        async def boom():
            raise RuntimeError("first")

        async def fine():
            return 42

        def broken_handler(exc):
            raise KeyError("handler bug")

        queue.submit("bad", boom, on_error=broken_handler)
        good = queue.submit("good", fine)
        result = await good
        await queue.stop()
        return result

    assert asyncio.run(scenario()) == 42


def test_stop_fails_queued_and_running_jobs():
    errors: dict[str, BaseException] = {}

    async def scenario():
        queue = TaskQueue(workers=1)
        queue.start()
        release = asyncio.Event()

        async def slow():
            await release.wait()

        running = queue.submit("running", slow, on_error=lambda e: errors.__setitem__("running", e))
        queued = queue.submit("queued", slow, on_error=lambda e: errors.__setitem__("queued", e))
        await asyncio.sleep(0.01)
        assert queue.pending() == 1

        await queue.stop()
        assert not queue.running
        return running, queued

    running, queued = asyncio.run(scenario())
    assert isinstance(errors["running"], ShutdownError)
    assert isinstance(errors["queued"], ShutdownError)
    with pytest.raises(ShutdownError):
        queued.result()
    with pytest.raises(ShutdownError):
        running.result()


def test_submit_after_stop_is_refused():
    async def scenario():
        queue = TaskQueue(workers=1)

        async def fine():
            return "ok"

        assert await queue.submit("first", fine) == "ok"
        await queue.stop()
        with pytest.raises(ShutdownError):
            queue.submit("late", fine)
        assert not queue.running

    asyncio.run(scenario())


def test_explicit_start_after_stop_restarts():
    async def scenario():
        queue = TaskQueue(workers=1)
        await queue.stop()
        queue.start()

        async def fine():
            return "ok"

        result = await queue.submit("again", fine)
        await queue.stop()
        return result

    assert asyncio.run(scenario()) == "ok"
