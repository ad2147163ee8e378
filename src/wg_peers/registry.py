# src/wg_peers/registry.py
"""
Registre des peers d'une interface WireGuard.

Le snapshot (identité du serveur + clients) est chargé une fois puis gardé
en cache. Toute mutation suit le même ordre, sous un seul verrou :

    copie du snapshot -> mutation de la copie -> wg0.json
    -> remplacement du cache -> wg0.conf -> wg syncconf

Le cache suit toujours wg0.json : une fois le JSON écrit, le cache est
remplacé même si l'écriture de wg0.conf ou la synchronisation échoue.

Le snapshot en cache n'est jamais modifié sur place : une lecture qui prend
la référence courante voit donc toujours un état cohérent.
"""
from __future__ import annotations

import copy
import ipaddress
import logging
import secrets
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterator, List, Optional, Union

from .config import Settings
from .errors import NotFoundError, ValidationError
from .ipam import allocate_address, first_address
from .keys import KeyProvider
from .models import Peer, PeerView, ServerIdentity, Snapshot
from .shell import Runner, run_command
from .state import load_state, loads_state, dumps_state, parse_timestamp
from .status import StatusCollector
from .wireguard import ConfigSynchronizer, render_client_conf, render_client_qr_svg

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str, None]


def utcnow() -> datetime:
    now = datetime.now(timezone.utc)
    # précision milliseconde, comme dans le JSON
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def normalize_expiry(value: DateLike) -> Optional[datetime]:
    """Ramène une date d'expiration à 23:59:59 UTC du jour donné."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            if len(value) == 10:
                value = date.fromisoformat(value)
            else:
                value = parse_timestamp(value)
        except ValueError as e:
            raise ValidationError(f"Invalid Expire Date: {value}") from e
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    if not isinstance(value, date):
        raise ValidationError(f"Invalid Expire Date: {value!r}")
    return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)


def check_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("Missing: Name")
    if not name.isprintable():
        raise ValidationError(f"Invalid Name: {name!r}")
    return name


def check_unique(snapshot: Snapshot) -> None:
    addresses: Dict[str, str] = {}
    public_keys: Dict[str, str] = {}
    for client_id, p in snapshot.clients.items():
        if p.address in addresses:
            raise ValidationError(f"Duplicate address {p.address} ({addresses[p.address]}, {client_id})")
        if p.public_key in public_keys:
            raise ValidationError(f"Duplicate public key ({public_keys[p.public_key]}, {client_id})")
        addresses[p.address] = client_id
        public_keys[p.public_key] = client_id


class PeerRegistry:
    def __init__(
        self,
        settings: Settings,
        runner: Optional[Runner] = None,
        keys: Optional[KeyProvider] = None,
        synchronizer: Optional[ConfigSynchronizer] = None,
        status: Optional[StatusCollector] = None,
        clock=utcnow,
    ):
        runner = runner or run_command
        self.settings = settings
        self.keys = keys or KeyProvider(runner)
        self.synchronizer = synchronizer or ConfigSynchronizer(settings, runner)
        self.status = status or StatusCollector(settings.device, runner)
        self.clock = clock

        self._lock = threading.RLock()
        self._snapshot: Optional[Snapshot] = None
        self._started = False

    # ---------- Chargement ----------

    def _read_or_generate(self) -> Snapshot:
        logger.debug("Loading configuration...")
        snapshot = load_state(self.settings.json_path)
        if snapshot is not None:
            logger.debug("Configuration loaded.")
            return snapshot

        private_key, public_key = self.keys.generate_keypair()
        snapshot = Snapshot(
            server=ServerIdentity(
                private_key=private_key,
                public_key=public_key,
                address=first_address(self.settings.default_address),
            ),
            clients={},
        )
        logger.info(f"Configuration generated for {self.settings.device}.")
        return snapshot

    def load(self) -> Snapshot:
        """
        Snapshot courant (à traiter en lecture seule).

        Au premier appel du processus : lecture ou génération, écriture des
        fichiers, cycle wg-quick down/up puis première synchronisation.
        """
        with self._lock:
            if self._snapshot is None or not self._started:
                self.settings.require_host()
                self._install(self._read_or_generate())
            return self._snapshot

    def _persist(self, snapshot: Snapshot) -> None:
        # si wg0.json échoue, le cache reste sur l'ancien état
        self.synchronizer.save_json(snapshot)
        self._snapshot = snapshot
        self.synchronizer.save_conf(snapshot)

    def _install(self, snapshot: Snapshot) -> None:
        self._persist(snapshot)
        if not self._started:
            self.synchronizer.bring_up()
            self._started = True
        self.synchronizer.sync()

    def reload(self) -> Snapshot:
        """Invalide le cache et relit wg0.json."""
        with self._lock:
            self._snapshot = None
            return self.load()

    # ---------- Transactions ----------

    def _commit(self, draft: Snapshot) -> None:
        self._persist(draft)
        self.synchronizer.sync()

    @contextmanager
    def _transaction(self) -> Iterator[Snapshot]:
        with self._lock:
            draft = copy.deepcopy(self.load())
            yield draft
            self._commit(draft)

    def _touch(self, peer: Peer) -> None:
        peer.updated_at = max(self.clock(), peer.updated_at + timedelta(milliseconds=1))

    @staticmethod
    def _find(snapshot: Snapshot, client_id: str) -> Peer:
        peer = snapshot.clients.get(client_id)
        if peer is None:
            raise NotFoundError(f"Client Not Found: {client_id}")
        return peer

    # ---------- Lecture ----------

    def get(self, client_id: str) -> Peer:
        return copy.deepcopy(self._find(self.load(), client_id))

    def list_peers(self) -> List[PeerView]:
        """Peers du registre + état live de `wg show dump`."""
        snapshot = self.load()
        return self.status.overlay(snapshot.clients.values())

    def get_by_one_time_link(self, token: str) -> Peer:
        now = self.clock()
        for peer in self.load().clients.values():
            if (
                token
                and peer.one_time_link == token
                and peer.one_time_link_expires_at is not None
                and peer.one_time_link_expires_at > now
            ):
                return copy.deepcopy(peer)
        raise NotFoundError("One Time Link Not Found")

    def client_config(self, client_id: str) -> str:
        snapshot = self.load()
        peer = self._find(snapshot, client_id)
        self.settings.require_host()
        return render_client_conf(snapshot, peer, self.settings)

    def client_qr_svg(self, client_id: str) -> str:
        return render_client_qr_svg(self.client_config(client_id))

    # ---------- Mutations ----------

    def create(self, name: str, expiry_date: DateLike = None) -> Peer:
        check_name(name)
        expired_at = normalize_expiry(expiry_date)

        with self._transaction() as draft:
            used = [draft.server.address, *(p.address for p in draft.clients.values())]
            address = allocate_address(self.settings.default_address, used)
            private_key, public_key, pre_shared_key = self.keys.generate_triple()
            now = self.clock()

            peer = Peer(
                id=str(uuid.uuid4()),
                name=name,
                address=address,
                private_key=private_key,
                public_key=public_key,
                pre_shared_key=pre_shared_key,
                created_at=now,
                updated_at=now,
                expired_at=expired_at,
                enabled=True,
            )
            draft.clients[peer.id] = peer

        logger.info(f"Client {peer.id} created ({name}, {address}).")
        return copy.deepcopy(peer)

    def delete(self, client_id: str) -> None:
        with self._lock:
            if client_id not in self.load().clients:
                return
            with self._transaction() as draft:
                del draft.clients[client_id]
        logger.info(f"Client {client_id} deleted.")

    def set_enabled(self, client_id: str, enabled: bool) -> Peer:
        with self._transaction() as draft:
            peer = self._find(draft, client_id)
            peer.enabled = bool(enabled)
            self._touch(peer)
        return copy.deepcopy(peer)

    def enable(self, client_id: str) -> Peer:
        return self.set_enabled(client_id, True)

    def disable(self, client_id: str) -> Peer:
        return self.set_enabled(client_id, False)

    def rename(self, client_id: str, name: str) -> Peer:
        check_name(name)
        with self._transaction() as draft:
            peer = self._find(draft, client_id)
            peer.name = name
            self._touch(peer)
        return copy.deepcopy(peer)

    def readdress(self, client_id: str, address: str) -> Peer:
        try:
            address = str(ipaddress.IPv4Address(address))
        except (ipaddress.AddressValueError, ValueError) as e:
            raise ValidationError(f"Invalid Address: {address}") from e

        with self._transaction() as draft:
            peer = self._find(draft, client_id)
            taken = address == draft.server.address or any(
                p.address == address for other_id, p in draft.clients.items() if other_id != client_id
            )
            if taken:
                raise ValidationError(f"Address Already In Use: {address}")
            peer.address = address
            self._touch(peer)
        return copy.deepcopy(peer)

    def set_expiry(self, client_id: str, expiry_date: DateLike) -> Peer:
        expired_at = normalize_expiry(expiry_date)
        with self._transaction() as draft:
            peer = self._find(draft, client_id)
            peer.expired_at = expired_at
            self._touch(peer)
        return copy.deepcopy(peer)

    def generate_one_time_link(self, client_id: str) -> Peer:
        with self._transaction() as draft:
            peer = self._find(draft, client_id)
            peer.one_time_link = secrets.token_hex(4)
            peer.one_time_link_expires_at = self.clock() + timedelta(seconds=self.settings.one_time_link_ttl)
            self._touch(peer)
        return copy.deepcopy(peer)

    def clear_one_time_link(self, client_id: str, grace_seconds: int = 0) -> Peer:
        """
        Invalide le lien à usage unique.

        Avec `grace_seconds`, le lien reste valable ce délai (le temps de
        finir un téléchargement en cours) puis le balayage l'efface.
        """
        with self._transaction() as draft:
            peer = self._find(draft, client_id)
            if grace_seconds > 0 and peer.one_time_link is not None:
                peer.one_time_link_expires_at = self.clock() + timedelta(seconds=grace_seconds)
            else:
                peer.one_time_link = None
                peer.one_time_link_expires_at = None
            self._touch(peer)
        return copy.deepcopy(peer)

    # ---------- Expiration ----------

    def sweep(
        self,
        now: Optional[datetime] = None,
        expire_peers: Optional[bool] = None,
        expire_links: Optional[bool] = None,
    ) -> bool:
        """
        Désactive les peers expirés et efface les liens à usage unique périmés.
        Une seule écriture si au moins un peer a changé. Retourne True dans ce cas.
        """
        if expire_peers is None:
            expire_peers = self.settings.enable_expires_time
        if expire_links is None:
            expire_links = self.settings.enable_one_time_links

        with self._lock:
            now = now or self.clock()
            draft = copy.deepcopy(self.load())
            changed = False

            if expire_peers:
                for peer in draft.clients.values():
                    if not peer.enabled:
                        continue
                    if peer.expired_at is not None and now > peer.expired_at:
                        logger.info(f"Client {peer.id} expired.")
                        peer.enabled = False
                        self._touch(peer)
                        changed = True

            if expire_links:
                for peer in draft.clients.values():
                    if peer.one_time_link is None:
                        continue
                    expires_at = peer.one_time_link_expires_at
                    if expires_at is None or now > expires_at:
                        logger.info(f"Client {peer.id} One Time Link expired.")
                        peer.one_time_link = None
                        peer.one_time_link_expires_at = None
                        self._touch(peer)
                        changed = True

            if changed:
                self._commit(draft)
            return changed

    # ---------- Sauvegarde ----------

    def backup(self) -> str:
        logger.debug("Starting configuration backup.")
        backup = dumps_state(self.load())
        logger.debug("Configuration backup completed.")
        return backup

    def restore(self, raw: str) -> Snapshot:
        logger.info("Starting configuration restore process.")
        snapshot = loads_state(raw)
        check_unique(snapshot)
        with self._lock:
            self.settings.require_host()
            self._install(snapshot)
        logger.info("Configuration restore process completed.")
        return snapshot

    def shutdown(self) -> None:
        self.synchronizer.shutdown()


# ---------- Singleton par interface ----------

_registries: Dict[str, PeerRegistry] = {}
_registries_lock = threading.Lock()


def get_registry(settings: Optional[Settings] = None) -> PeerRegistry:
    settings = settings or Settings.from_env()
    with _registries_lock:
        registry = _registries.get(settings.device)
        if registry is None:
            registry = PeerRegistry(settings)
            _registries[settings.device] = registry
        return registry
