# src/wg_peers/wireguard.py
from __future__ import annotations

import logging
from typing import Optional

import qrcode
import qrcode.image.svg

from .config import Settings
from .errors import ExternalCommandError, TunnelEnvironmentError
from .models import Peer, Snapshot
from .shell import Runner, run_command
from .state import dumps_state, write_file

logger = logging.getLogger(__name__)


# ---------- Rendu des configs ----------

def _comment(text: str) -> str:
    # un nom ne doit jamais ouvrir une nouvelle ligne dans wg0.conf
    return "".join(c if c.isprintable() else " " for c in text)


def render_server_conf(snapshot: Snapshot, settings: Settings) -> str:
    s = snapshot.server

    lines = [
        "# Note: Do not edit this file directly.",
        "# Your changes will be overwritten!",
        "",
        "# Server",
        "[Interface]",
        f"PrivateKey = {s.private_key}",
        f"Address = {s.address}/{settings.network.prefixlen}",
        f"ListenPort = {settings.port}",
        f"PreUp = {settings.pre_up}",
        f"PostUp = {settings.post_up}",
        f"PreDown = {settings.pre_down}",
        f"PostDown = {settings.post_down}",
    ]

    for client_id, p in snapshot.clients.items():
        # les peers désactivés restent dans le JSON mais pas dans wg0.conf
        if not p.enabled:
            continue
        lines += [
            "",
            f"# Client: {_comment(p.name)} ({client_id})",
            "[Peer]",
            f"PublicKey = {p.public_key}",
        ]
        if p.pre_shared_key:
            lines.append(f"PresharedKey = {p.pre_shared_key}")
        lines.append(f"AllowedIPs = {p.address}/32")

    return "\n".join(lines) + "\n"


def render_client_conf(snapshot: Snapshot, peer: Peer, settings: Settings) -> str:
    s = snapshot.server

    lines = [
        "[Interface]",
        f"PrivateKey = {peer.private_key or 'REPLACE_ME'}",
        f"Address = {peer.address}/32",
    ]

    if settings.default_dns:
        lines.append(f"DNS = {settings.default_dns}")
    if settings.mtu:
        lines.append(f"MTU = {settings.mtu}")

    lines += [
        "",
        "[Peer]",
        f"PublicKey = {s.public_key}",
    ]

    if peer.pre_shared_key:
        lines.append(f"PresharedKey = {peer.pre_shared_key}")

    lines += [
        f"AllowedIPs = {settings.allowed_ips}",
        f"PersistentKeepalive = {settings.persistent_keepalive}",
        f"Endpoint = {settings.host}:{settings.config_port}",
    ]

    return "\n".join(lines) + "\n"


def render_client_qr_svg(conf: str) -> str:
    img = qrcode.make(conf, image_factory=qrcode.image.svg.SvgPathImage)
    return img.to_string(encoding="unicode")


# ---------- Application système ----------

class ConfigSynchronizer:
    """
    Projette le registre sur disque (wg0.json puis wg0.conf) et sur le démon.

    L'ordre est fixe : JSON (source de vérité) -> wg0.conf (dérivé) -> démon.
    Si une écriture échoue, l'exception remonte et le démon n'est pas touché.
    """

    def __init__(self, settings: Settings, runner: Optional[Runner] = None):
        self.settings = settings
        self.run = runner or run_command

    @property
    def device(self) -> str:
        return self.settings.device

    @property
    def conf_arg(self) -> str:
        # wg-quick accepte un nom d'interface (/etc/wireguard) ou un chemin
        conf = self.settings.conf_path
        if conf.parent.as_posix() == "/etc/wireguard":
            return self.device
        return str(conf)

    def save_json(self, snapshot: Snapshot) -> None:
        write_file(self.settings.json_path, dumps_state(snapshot), 0o660)

    def save_conf(self, snapshot: Snapshot) -> None:
        write_file(self.settings.conf_path, render_server_conf(snapshot, self.settings), 0o600)

    def save(self, snapshot: Snapshot) -> None:
        logger.debug("Config saving...")
        self.save_json(snapshot)
        self.save_conf(snapshot)
        logger.debug("Config saved.")

    def sync(self) -> None:
        """Équivalent de `wg syncconf wg0 <(wg-quick strip wg0)` sans bash."""
        logger.debug("Config syncing...")
        stripped = self.run(["wg-quick", "strip", self.conf_arg])
        self.run(
            ["wg", "syncconf", self.device, "/dev/stdin"],
            input=stripped + "\n",
            log=f"wg syncconf {self.device} <(wg-quick strip {self.device})",
        )
        logger.debug("Config synced.")

    def bring_up(self) -> None:
        self.shutdown()
        try:
            self.run(["wg-quick", "up", self.conf_arg])
        except ExternalCommandError as e:
            if f'Cannot find device "{self.device}"' in e.stderr:
                raise TunnelEnvironmentError(
                    f'WireGuard exited with the error: Cannot find device "{self.device}"\n'
                    "This usually means that your host's kernel does not support WireGuard!"
                ) from e
            raise

    def shutdown(self) -> None:
        try:
            self.run(["wg-quick", "down", self.conf_arg])
        except ExternalCommandError as e:
            logger.debug(f"wg-quick down {self.device} ignored: {e}")
