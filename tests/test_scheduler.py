"""Tests for the cooperative frame loop."""

import asyncio

import pytest

from sign_practice.errors import TransientEstimationError
from sign_practice.profiler import PipelineProfiler
from sign_practice.scheduler import FrameScheduler, PacedClock, call_cooperatively

from fakes import FakePoseSource, FakeStream, GatedPoseSource, TickClock, make_hand, wait_until


class NoFrameStream(FakeStream):
    def read(self):
        self.reads += 1
        return None


class TestCallCooperatively:
    def test_plain_function_runs_in_thread(self):
        assert asyncio.run(call_cooperatively(lambda a, b: a + b, 2, 3)) == 5

    def test_coroutine_function_awaited(self):
        async def double(x):
            await asyncio.sleep(0)
            return x * 2

        assert asyncio.run(call_cooperatively(double, 21)) == 42


class TestPacedClock:
    def test_rejects_non_positive_fps(self):
        with pytest.raises(ValueError):
            PacedClock(0)

    def test_ticks_are_paced(self):
        async def scenario():
            clock = PacedClock(fps=100)
            loop = asyncio.get_running_loop()
            t0 = loop.time()
            for _ in range(6):
                await clock.tick()
            return loop.time() - t0

        # First tick is immediate, the next five wait ~10ms each
        assert asyncio.run(scenario()) >= 0.04


class TestFrameScheduler:
    def test_delivers_results_in_order(self):
        async def scenario():
            results = []
            hand = make_hand()
            sched = FrameScheduler(
                FakeStream(), FakePoseSource(hand),
                lambda i, frame, kp: results.append((i, kp)),
                clock=TickClock(),
            )
            task = asyncio.create_task(sched.run())
            await wait_until(lambda: len(results) >= 5)
            sched.cancel()
            await task
            return results, sched

        results, sched = asyncio.run(scenario())
        indices = [i for i, _ in results]
        assert indices == list(range(len(results)))
        assert sched.frames_processed == len(results)
        assert not sched.running

    def test_result_after_cancel_is_dropped(self):
        async def scenario():
            results = []
            source = GatedPoseSource(make_hand())
            sched = FrameScheduler(
                FakeStream(), source, lambda *a: results.append(a), clock=TickClock()
            )
            task = asyncio.create_task(sched.run())
            await source.entered.wait()
            sched.cancel()
            source.gate.set()
            assert await sched.join(1.0)
            await task
            return results, sched

        results, sched = asyncio.run(scenario())
        assert results == []
        assert sched.frames_dropped == 1
        assert sched.frames_processed == 0

    def test_result_from_previous_activation_is_dropped(self):
        async def scenario():
            results = []
            epoch = {"value": 1}
            source = GatedPoseSource(make_hand())
            sched = FrameScheduler(
                FakeStream(), source, lambda *a: results.append(a),
                clock=TickClock(), epoch=lambda: epoch["value"],
            )
            task = asyncio.create_task(sched.run())
            await source.entered.wait()
            epoch["value"] = 2
            source.gate.set()
            await wait_until(lambda: sched.frames_dropped == 1)
            sched.cancel()
            await task
            return results, sched

        results, sched = asyncio.run(scenario())
        # The in-flight estimate was dropped; later frames are delivered
        assert sched.frames_dropped == 1
        assert sched.frames_processed == len(results)

    def test_estimation_failure_degrades_to_no_hand(self):
        def fail():
            raise TransientEstimationError("backend hiccup")

        async def scenario():
            results = []
            sched = FrameScheduler(
                FakeStream(), FakePoseSource(fail),
                lambda i, frame, kp: results.append(kp),
                clock=TickClock(),
            )
            task = asyncio.create_task(sched.run())
            await wait_until(lambda: len(results) >= 3)
            sched.cancel()
            await task
            return results, sched

        results, sched = asyncio.run(scenario())
        assert all(kp is None for kp in results)
        assert sched.estimate_failures >= 3

    def test_missing_frame_skips_estimation(self):
        async def scenario():
            stream = NoFrameStream()
            source = FakePoseSource(make_hand())
            results = []
            profiler = PipelineProfiler()
            sched = FrameScheduler(
                stream, source, lambda *a: results.append(a), clock=TickClock(), profiler=profiler,
            )
            task = asyncio.create_task(sched.run())
            await wait_until(lambda: stream.reads >= 5)
            sched.cancel()
            await task
            return stream, source, results, profiler

        stream, source, results, profiler = asyncio.run(scenario())
        assert source.estimate_calls == 0
        assert results == []
        assert profiler.outcomes["no_frame"] >= 4

    def test_cancel_before_run(self):
        async def scenario():
            stream = FakeStream()
            sched = FrameScheduler(stream, FakePoseSource(), lambda *a: None, clock=TickClock())
            sched.cancel()
            await sched.run()
            return stream

        assert asyncio.run(scenario()).reads == 0

    def test_runs_only_once(self):
        async def scenario():
            sched = FrameScheduler(FakeStream(), FakePoseSource(), lambda *a: None, clock=TickClock())
            sched.cancel()
            await sched.run()
            with pytest.raises(RuntimeError):
                await sched.run()

        asyncio.run(scenario())

    def test_join_times_out_on_hung_estimate(self):
        async def scenario():
            source = GatedPoseSource()
            sched = FrameScheduler(FakeStream(), source, lambda *a: None, clock=TickClock())
            task = asyncio.create_task(sched.run())
            await source.entered.wait()
            sched.cancel()
            finished = await sched.join(0.05)
            source.gate.set()
            await task
            return finished

        assert asyncio.run(scenario()) is False

    def test_stages_profiled(self):
        async def scenario():
            profiler = PipelineProfiler()
            results = []
            sched = FrameScheduler(
                FakeStream(), FakePoseSource(make_hand()), lambda *a: results.append(a),
                clock=TickClock(), profiler=profiler,
            )
            task = asyncio.create_task(sched.run())
            await wait_until(lambda: len(results) >= 3)
            sched.cancel()
            await task
            return profiler.summary()

        summary = asyncio.run(scenario())
        assert summary["stages"]["acquire"]["window"] >= 3
        assert summary["stages"]["estimate"]["window"] >= 3
        assert summary["frames"]["processed"] >= 3
