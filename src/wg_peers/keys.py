# src/wg_peers/keys.py
from __future__ import annotations

from typing import NamedTuple, Optional

from .shell import Runner, run_command


class KeyTriple(NamedTuple):
    private_key: str
    public_key: str
    pre_shared_key: str


class KeyProvider:
    """Génère les clés via wg(8). Nécessite 'wg' installé sur la machine."""

    def __init__(self, runner: Optional[Runner] = None):
        self.run = runner or run_command

    def generate_private_key(self) -> str:
        return self.run(["wg", "genkey"], log="wg genkey")

    def private_to_public(self, private_key: str) -> str:
        # pubkey lit la clé privée sur stdin
        return self.run(["wg", "pubkey"], input=private_key + "\n", log="echo ***hidden*** | wg pubkey")

    def generate_preshared_key(self) -> str:
        return self.run(["wg", "genpsk"], log="wg genpsk")

    def generate_keypair(self) -> tuple[str, str]:
        priv = self.generate_private_key()
        return priv, self.private_to_public(priv)

    def generate_triple(self) -> KeyTriple:
        priv, pub = self.generate_keypair()
        return KeyTriple(priv, pub, self.generate_preshared_key())
