# src/wg_peers/status.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import LiveStatus, Peer, PeerView
from .shell import Runner, run_command

logger = logging.getLogger(__name__)


def parse_dump(dump: str) -> Dict[str, LiveStatus]:
    """
    Parse la sortie de `wg show <dev> dump`.

    La première ligne décrit l'interface, les suivantes un peer chacune :
    public-key, preshared-key, endpoint, allowed-ips, latest-handshake,
    transfer-rx, transfer-tx, persistent-keepalive (séparés par des tabulations).
    """
    samples: Dict[str, LiveStatus] = {}
    for line in dump.strip().splitlines()[1:]:
        parts = line.split("\t")
        if len(parts) < 8:
            logger.debug(f"Ignoring malformed dump line: {line!r}")
            continue
        public_key, _psk, endpoint, _allowed, handshake, rx, tx, keepalive = parts[:8]

        samples[public_key] = LiveStatus(
            public_key=public_key,
            endpoint=None if endpoint == "(none)" else endpoint,
            # 0 = pas encore de handshake, pas l'epoch
            latest_handshake_at=(
                None if handshake == "0"
                else datetime.fromtimestamp(int(handshake), tz=timezone.utc)
            ),
            transfer_rx=int(rx),
            transfer_tx=int(tx),
            persistent_keepalive=None if keepalive == "off" else keepalive,
        )
    return samples


def merge(peers: Iterable[Peer], samples: Dict[str, LiveStatus]) -> List[PeerView]:
    return [PeerView.from_peer(p, samples.get(p.public_key)) for p in peers]


class StatusCollector:
    def __init__(self, device: str = "wg0", runner: Optional[Runner] = None):
        self.device = device
        self.run = runner or run_command

    def collect(self) -> Dict[str, LiveStatus]:
        dump = self.run(["wg", "show", self.device, "dump"], log=False)
        return parse_dump(dump)

    def overlay(self, peers: Iterable[Peer]) -> List[PeerView]:
        return merge(peers, self.collect())
