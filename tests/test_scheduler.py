"""Tests for scheduler.py and PeerRegistry.sweep - expiry and one-time-link cleanup."""

import logging
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

from wg_peers.errors import ExternalCommandError
from wg_peers.scheduler import ExpiryScheduler


class TestSweep:
    """Test the two sweeps run by the scheduler."""

    def test_expired_peer_disabled(self, loaded_registry, clock):
        """A peer that expired yesterday is disabled; tomorrow's is untouched."""
        yesterday = (clock.now - timedelta(days=1)).date()
        tomorrow = (clock.now + timedelta(days=1)).date()
        old = loaded_registry.create('old', yesterday)
        new = loaded_registry.create('new', tomorrow)

        assert loaded_registry.sweep() is True
        assert loaded_registry.get(old.id).enabled is False
        assert loaded_registry.get(old.id).updated_at > old.updated_at
        assert loaded_registry.get(new.id).enabled is True
        assert loaded_registry.get(new.id).updated_at == new.updated_at

    def test_expires_same_day_end(self, loaded_registry, clock):
        """An expiry set for today holds until 23:59:59."""
        peer = loaded_registry.create('today', clock.now.date())
        assert loaded_registry.sweep() is False
        clock.advance(hours=12)
        assert loaded_registry.sweep() is True
        assert loaded_registry.get(peer.id).enabled is False

    def test_already_disabled_untouched(self, loaded_registry, clock):
        """Disabled peers are not stamped again."""
        peer = loaded_registry.create('old', (clock.now - timedelta(days=1)).date())
        disabled = loaded_registry.disable(peer.id)
        assert loaded_registry.sweep() is False
        assert loaded_registry.get(peer.id).updated_at == disabled.updated_at

    def test_single_persist_for_many_changes(self, loaded_registry, clock, fake_wg):
        """Several expired peers cause one write and one sync."""
        yesterday = (clock.now - timedelta(days=1)).date()
        for name in ('a', 'b', 'c'):
            loaded_registry.create(name, yesterday)
        fake_wg.reset()

        assert loaded_registry.sweep() is True
        assert fake_wg.commands() == ['wg-quick strip', 'wg syncconf']

    def test_nothing_to_do(self, loaded_registry, fake_wg):
        """No change means no write and no sync."""
        loaded_registry.create('alice')
        fake_wg.reset()
        assert loaded_registry.sweep() is False
        assert fake_wg.calls == []

    def test_one_time_link_cleared_after_expiry(self, loaded_registry, clock):
        """A link is cleared once its five minutes have passed."""
        peer = loaded_registry.create('alice')
        linked = loaded_registry.generate_one_time_link(peer.id)
        assert linked.one_time_link is not None
        assert linked.one_time_link_expires_at == clock.now + timedelta(minutes=5)

        assert loaded_registry.sweep(now=clock.now + timedelta(minutes=4)) is False
        assert loaded_registry.sweep(now=clock.now + timedelta(minutes=5, seconds=1)) is True

        cleared = loaded_registry.get(peer.id)
        assert cleared.one_time_link is None
        assert cleared.one_time_link_expires_at is None

    def test_toggles(self, loaded_registry, clock):
        """Each sweep only runs when its feature is enabled."""
        peer = loaded_registry.create('old', (clock.now - timedelta(days=1)).date())
        loaded_registry.generate_one_time_link(peer.id)
        later = clock.now + timedelta(hours=1)

        assert loaded_registry.sweep(now=later, expire_peers=False, expire_links=False) is False
        assert loaded_registry.sweep(now=later, expire_peers=False, expire_links=True) is True
        current = loaded_registry.get(peer.id)
        assert current.enabled is True
        assert current.one_time_link is None

        assert loaded_registry.sweep(now=later, expire_peers=True, expire_links=False) is True
        assert loaded_registry.get(peer.id).enabled is False

    def test_settings_toggles_are_defaults(self, loaded_registry, clock):
        """Without arguments, sweep follows the WG_ENABLE_* settings."""
        peer = loaded_registry.create('old', (clock.now - timedelta(days=1)).date())
        loaded_registry.settings.enable_expires_time = False
        assert loaded_registry.sweep() is False
        assert loaded_registry.get(peer.id).enabled is True


class TestExpiryScheduler:
    """Test the periodic runner."""

    def test_tick_runs_sweep(self):
        """tick delegates to the registry sweep."""
        registry = MagicMock()
        registry.sweep.return_value = True
        assert ExpiryScheduler(registry).tick() is True
        registry.sweep.assert_called_once_with()

    def test_overlapping_tick_skipped(self):
        """A tick during a running sweep is skipped."""
        registry = MagicMock()
        scheduler = ExpiryScheduler(registry)
        scheduler._busy.acquire()
        try:
            assert scheduler.tick() is False
        finally:
            scheduler._busy.release()
        registry.sweep.assert_not_called()

    def test_sweep_never_reentrant(self):
        """Concurrent ticks never run two sweeps at once."""
        active = []
        peak = []
        gate = threading.Event()

        def slow_sweep():
            active.append(1)
            peak.append(len(active))
            gate.wait(1)
            active.pop()
            return False

        registry = MagicMock()
        registry.sweep.side_effect = slow_sweep
        scheduler = ExpiryScheduler(registry)

        first = threading.Thread(target=scheduler.tick)
        first.start()
        while not active:
            time.sleep(0.001)
        assert scheduler.tick() is False
        gate.set()
        first.join()
        assert max(peak) == 1
        assert registry.sweep.call_count == 1

    def test_start_stop(self):
        """The background thread ticks until stopped."""
        registry = MagicMock()
        registry.sweep.return_value = False
        scheduler = ExpiryScheduler(registry, interval=0.01)
        scheduler.start()
        try:
            deadline = time.time() + 2
            while registry.sweep.call_count < 2 and time.time() < deadline:
                time.sleep(0.01)
            assert scheduler.running
        finally:
            scheduler.stop(timeout=2)
        assert registry.sweep.call_count >= 2
        assert not scheduler.running

    def test_errors_do_not_stop_loop(self):
        """A failing sweep is logged and the next tick still runs."""
        failures = [ExternalCommandError('wg syncconf', 1, 'boom'), OSError('disk')]

        def sweep():
            if failures:
                raise failures.pop(0)
            return False

        registry = MagicMock()
        registry.sweep.side_effect = sweep
        scheduler = ExpiryScheduler(registry, interval=0.01)
        scheduler.start()
        try:
            deadline = time.time() + 2
            while registry.sweep.call_count < 3 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            scheduler.stop(timeout=2)
        assert registry.sweep.call_count >= 3

    def test_unexpected_error_logged_and_loop_continues(self, caplog):
        """Any exception from a sweep is logged with its traceback; ticks go on."""
        failures = [KeyError('clients')]

        def sweep():
            if failures:
                raise failures.pop(0)
            return False

        registry = MagicMock()
        registry.sweep.side_effect = sweep
        scheduler = ExpiryScheduler(registry, interval=0.01)
        with caplog.at_level(logging.ERROR, logger='wg_peers.scheduler'):
            scheduler.start()
            try:
                deadline = time.time() + 2
                while registry.sweep.call_count < 2 and time.time() < deadline:
                    time.sleep(0.01)
                assert scheduler.running
            finally:
                scheduler.stop(timeout=2)
        assert registry.sweep.call_count >= 2
        assert any(r.exc_info and r.exc_info[0] is KeyError for r in caplog.records)

    def test_start_twice_single_thread(self):
        """start is idempotent while running."""
        registry = MagicMock()
        registry.sweep.return_value = False
        scheduler = ExpiryScheduler(registry, interval=10)
        scheduler.start()
        try:
            thread = scheduler._thread
            scheduler.start()
            assert scheduler._thread is thread
        finally:
            scheduler.stop(timeout=2)
