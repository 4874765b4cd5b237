"""Tests for scrapertrack.periodic: background sweep jobs."""
import threading

import pytest

from scrapertrack.periodic import Sweeper


class TestRunOnce:
    """Test synchronous execution of registered jobs."""

    def test_returns_each_result(self):
        sweeper = Sweeper()
        sweeper.add_job('a', 60, lambda: 3)
        sweeper.add_job('b', 60, lambda: 'done')
        assert sweeper.run_once() == {'a': 3, 'b': 'done'}
        assert sweeper.stats() == {'a': 1, 'b': 1}

    def test_failing_job_does_not_stop_others(self):
        sweeper = Sweeper()

        def broken():
            raise RuntimeError('sweep failed')

        sweeper.add_job('broken', 60, broken)
        sweeper.add_job('ok', 60, lambda: 1)
        out = sweeper.run_once()
        assert out['broken'] is None
        assert out['ok'] == 1
        assert 'broken' not in sweeper.stats()


class TestBackgroundLoop:
    """Test thread lifecycle."""

    def test_runs_repeatedly_until_stopped(self):
        sweeper = Sweeper()
        hits = []
        twice = threading.Event()

        def job():
            hits.append(1)
            if len(hits) >= 2:
                twice.set()

        sweeper.add_job('tick', 0.01, job)
        sweeper.start()
        try:
            assert twice.wait(2.0)
            assert sweeper.running
        finally:
            sweeper.stop()
        assert not sweeper.running
        count = len(hits)
        threading.Event().wait(0.05)
        assert len(hits) == count

    def test_stop_is_prompt(self):
        sweeper = Sweeper()
        sweeper.add_job('slow', 3600, lambda: None)
        sweeper.start()
        sweeper.stop(timeout=1.0)
        assert not sweeper.running

    def test_start_twice_is_noop(self):
        sweeper = Sweeper()
        sweeper.add_job('slow', 3600, lambda: None)
        sweeper.start()
        sweeper.start()
        try:
            assert len(sweeper._threads) == 1
        finally:
            sweeper.stop()

    def test_add_job_while_running_rejected(self):
        sweeper = Sweeper()
        sweeper.add_job('slow', 3600, lambda: None)
        sweeper.start()
        try:
            with pytest.raises(RuntimeError):
                sweeper.add_job('late', 1, lambda: None)
        finally:
            sweeper.stop()

    def test_stop_without_start(self):
        Sweeper().stop()


class TestContextJobs:
    """The engine context registers one job per housekeeping concern."""

    def test_jobs_registered(self, context):
        out = context.sweeper.run_once()
        assert set(out) == {'ipinfo_cache', 'behavior', 'quota'}

    def test_behavior_sweep_evicts(self, context, clock):
        context.behavior.observe('k', '/', now=clock())
        clock.advance(context.config.behavior_retention + 1)
        out = context.sweeper.run_once()
        assert out['behavior'] == 1
        assert len(context.behavior) == 0

    def test_sweeps_disabled_leaves_threads_idle(self, context):
        context.start_background()
        assert not context.sweeper.running
