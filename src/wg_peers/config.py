# src/wg_peers/config.py
"""
Réglages lus depuis l'environnement (WG_*).

Seul WG_HOST est obligatoire, et il n'est vérifié qu'au premier chargement
du registre : on peut construire des Settings sans hôte pour les tests.
"""
from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


@dataclass
class Settings:
    host: Optional[str] = None          # IP publique / DNS annoncé aux clients
    path: Path = Path("/etc/wireguard")
    device: str = "wg0"
    port: int = 51820
    config_port: Optional[int] = None   # port annoncé dans les configs clients
    mtu: Optional[int] = None
    persistent_keepalive: int = 0
    default_address: str = "10.8.0.0/24"
    default_dns: Optional[str] = "1.1.1.1"
    allowed_ips: str = "0.0.0.0/0, ::/0"
    pre_up: str = ""
    post_up: Optional[str] = None
    pre_down: str = ""
    post_down: Optional[str] = None
    enable_expires_time: bool = False
    enable_one_time_links: bool = False
    one_time_link_ttl: int = 5 * 60     # secondes

    def __post_init__(self):
        if isinstance(self.path, str):
            self.path = Path(self.path)
        if self.config_port is None:
            self.config_port = self.port
        try:
            net = ipaddress.ip_network(self.default_address, strict=False)
        except ValueError as e:
            raise ConfigurationError(f"Invalid WG_DEFAULT_ADDRESS: {self.default_address}") from e
        if net.version != 4:
            raise ConfigurationError(f"WG_DEFAULT_ADDRESS must be IPv4: {self.default_address}")
        self.default_address = str(net)
        if self.post_up is None:
            self.post_up = (
                f"iptables -t nat -A POSTROUTING -s {self.default_address} -o eth0 -j MASQUERADE; "
                f"iptables -A INPUT -p udp -m udp --dport {self.port} -j ACCEPT; "
                f"iptables -A FORWARD -i {self.device} -j ACCEPT; "
                f"iptables -A FORWARD -o {self.device} -j ACCEPT;"
            )
        if self.post_down is None:
            self.post_down = ""

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.ip_network(self.default_address)

    @property
    def json_path(self) -> Path:
        return self.path / f"{self.device}.json"

    @property
    def conf_path(self) -> Path:
        return self.path / f"{self.device}.conf"

    def require_host(self) -> str:
        if not self.host:
            raise ConfigurationError("WG_HOST Environment Variable Not Set!")
        return self.host

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _int(name: str, default: Optional[int]) -> Optional[int]:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e

        port = _int("WG_PORT", 51820)
        return cls(
            host=env.get("WG_HOST") or None,
            path=Path(env.get("WG_PATH", "/etc/wireguard")),
            device=env.get("WG_DEVICE", "wg0"),
            port=port,
            config_port=_int("WG_CONFIG_PORT", port),
            mtu=_int("WG_MTU", None),
            persistent_keepalive=_int("WG_PERSISTENT_KEEPALIVE", 0),
            default_address=env.get("WG_DEFAULT_ADDRESS", "10.8.0.0/24"),
            default_dns=env.get("WG_DEFAULT_DNS", "1.1.1.1") or None,
            allowed_ips=env.get("WG_ALLOWED_IPS", "0.0.0.0/0, ::/0"),
            pre_up=env.get("WG_PRE_UP", ""),
            post_up=env.get("WG_POST_UP"),
            pre_down=env.get("WG_PRE_DOWN", ""),
            post_down=env.get("WG_POST_DOWN"),
            enable_expires_time=_flag(env.get("WG_ENABLE_EXPIRES_TIME")),
            enable_one_time_links=_flag(env.get("WG_ENABLE_ONE_TIME_LINKS")),
        )
