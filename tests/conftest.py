"""Shared pytest fixtures for wg_peers tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from wg_peers.config import Settings  # noqa: E402
from wg_peers.registry import PeerRegistry  # noqa: E402


class FakeWg:
    """Stands in for wg(8) / wg-quick(8): deterministic keys, recorded calls."""

    def __init__(self):
        self.calls = []
        self.dump = 'srvpriv\tsrvpub\t51820\toff\n'
        self.failures = {}
        self._n = 0

    def __call__(self, cmd, input=None, log=True):
        self.calls.append((list(cmd), input, log))
        for prefix, error in self.failures.items():
            if tuple(cmd[:len(prefix)]) == prefix:
                raise error
        if cmd[:2] == ['wg', 'genkey']:
            self._n += 1
            return f'priv{self._n}='
        if cmd[:2] == ['wg', 'pubkey']:
            return 'pub-' + input.strip()
        if cmd[:2] == ['wg', 'genpsk']:
            self._n += 1
            return f'psk{self._n}='
        if cmd[:2] == ['wg-quick', 'strip']:
            return '[Interface]\nPrivateKey = stripped'
        if cmd[:2] == ['wg', 'show']:
            return self.dump
        return ''

    def commands(self):
        return [' '.join(cmd[:2]) for cmd, _, _ in self.calls]

    def reset(self):
        self.calls.clear()


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def fake_wg():
    return FakeWg()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        host='vpn.example.com',
        path=tmp_path,
        enable_expires_time=True,
        enable_one_time_links=True,
    )


@pytest.fixture
def registry(settings, fake_wg, clock):
    return PeerRegistry(settings, runner=fake_wg, clock=clock)


@pytest.fixture
def loaded_registry(registry, fake_wg):
    """Registry already booted, with the recorded boot commands cleared."""
    registry.load()
    fake_wg.reset()
    return registry
