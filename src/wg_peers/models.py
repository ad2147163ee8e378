# src/wg_peers/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass
class ServerIdentity:
    private_key: str
    public_key: str
    address: str               # IP du serveur dans le VPN, ex "10.8.0.1"


@dataclass
class Peer:
    id: str
    name: str
    address: str               # ex "10.8.0.2" (sans masque, /32 implicite)
    public_key: str
    created_at: datetime
    updated_at: datetime
    enabled: bool = True
    private_key: Optional[str] = None      # absente => pas de config téléchargeable
    pre_shared_key: Optional[str] = None
    expired_at: Optional[datetime] = None
    one_time_link: Optional[str] = None
    one_time_link_expires_at: Optional[datetime] = None


@dataclass
class Snapshot:
    server: ServerIdentity
    clients: Dict[str, Peer] = field(default_factory=dict)


@dataclass
class LiveStatus:
    public_key: str
    endpoint: Optional[str] = None
    latest_handshake_at: Optional[datetime] = None
    transfer_rx: int = 0
    transfer_tx: int = 0
    persistent_keepalive: Optional[str] = None


@dataclass
class PeerView:
    """Peer du registre + état live du démon (lecture seule)."""
    id: str
    name: str
    enabled: bool
    address: str
    public_key: str
    created_at: datetime
    updated_at: datetime
    expired_at: Optional[datetime]
    one_time_link: Optional[str]
    one_time_link_expires_at: Optional[datetime]
    downloadable_config: bool
    persistent_keepalive: Optional[str] = None
    latest_handshake_at: Optional[datetime] = None
    transfer_rx: Optional[int] = None
    transfer_tx: Optional[int] = None
    endpoint: Optional[str] = None

    @classmethod
    def from_peer(cls, peer: Peer, live: Optional[LiveStatus] = None) -> "PeerView":
        view = cls(
            id=peer.id,
            name=peer.name,
            enabled=peer.enabled,
            address=peer.address,
            public_key=peer.public_key,
            created_at=peer.created_at,
            updated_at=peer.updated_at,
            expired_at=peer.expired_at,
            one_time_link=peer.one_time_link,
            one_time_link_expires_at=peer.one_time_link_expires_at,
            downloadable_config=peer.private_key is not None,
        )
        if live is not None:
            view.persistent_keepalive = live.persistent_keepalive
            view.latest_handshake_at = live.latest_handshake_at
            view.transfer_rx = live.transfer_rx
            view.transfer_tx = live.transfer_tx
            view.endpoint = live.endpoint
        return view
