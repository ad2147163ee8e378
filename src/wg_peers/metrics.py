# src/wg_peers/metrics.py
"""
Export des métriques au format texte Prometheus, et en dict pour l'API JSON.

Les valeurs viennent d'une lecture fraîche de `wg show dump` superposée au
registre (voir PeerRegistry.list_peers).
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from .models import PeerView
from .registry import PeerRegistry


class MetricsExporter:

    METRICS = {
        "wireguard_configured_peers": {"type": "gauge", "help": ""},
        "wireguard_enabled_peers": {"type": "gauge", "help": ""},
        "wireguard_connected_peers": {"type": "gauge", "help": ""},
        "wireguard_sent_bytes": {
            "type": "counter",
            "help": "Bytes sent to the peer",
        },
        "wireguard_received_bytes": {
            "type": "counter",
            "help": "Bytes received from the peer",
        },
        "wireguard_latest_handshake_seconds": {
            "type": "gauge",
            "help": "UNIX timestamp seconds of the last handshake",
        },
    }

    def __init__(self, registry: PeerRegistry):
        self.registry = registry

    @property
    def interface(self) -> str:
        return self.registry.settings.device

    @staticmethod
    def _totals(peers: List[PeerView]) -> Dict[str, int]:
        return {
            "wireguard_configured_peers": len(peers),
            "wireguard_enabled_peers": sum(1 for p in peers if p.enabled),
            "wireguard_connected_peers": sum(1 for p in peers if p.endpoint is not None),
        }

    def _header(self, name: str) -> List[str]:
        metric_def = self.METRICS[name]
        help_text = f"# HELP {name} {metric_def['help']}".rstrip()
        return ["", help_text, f"# TYPE {name} {metric_def['type']}"]

    def _labels(self, peer: PeerView) -> str:
        labels = {
            "interface": self.interface,
            "enabled": "true" if peer.enabled else "false",
            "address": peer.address,
            "name": peer.name,
        }
        return ",".join(f'{k}="{_escape(v)}"' for k, v in labels.items())

    def collect(self, now: Optional[float] = None) -> str:
        now = time.time() if now is None else now
        peers = self.registry.list_peers()

        lines = ["# HELP wg-easy and wireguard metrics"]

        for name, value in self._totals(peers).items():
            lines += self._header(name)
            lines.append(f'{name}{{interface="{self.interface}"}} {value}')

        lines += self._header("wireguard_sent_bytes")
        for p in peers:
            lines.append(f"wireguard_sent_bytes{{{self._labels(p)}}} {p.transfer_tx or 0}")

        lines += self._header("wireguard_received_bytes")
        for p in peers:
            lines.append(f"wireguard_received_bytes{{{self._labels(p)}}} {p.transfer_rx or 0}")

        lines += self._header("wireguard_latest_handshake_seconds")
        for p in peers:
            # 0 tant qu'aucun handshake n'a eu lieu
            seconds = now - p.latest_handshake_at.timestamp() if p.latest_handshake_at else 0
            lines.append(f"wireguard_latest_handshake_seconds{{{self._labels(p)}}} {_number(seconds)}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        return self._totals(self.registry.list_peers())


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
