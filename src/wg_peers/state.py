# src/wg_peers/state.py
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .errors import ValidationError
from .models import Peer, ServerIdentity, Snapshot


# ---------- Dates ----------

def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC à la milliseconde, ex '2024-05-01T12:00:00.000Z'."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------- Sérialisation ----------

def peer_to_dict(p: Peer) -> dict:
    data: dict[str, Any] = {
        "id": p.id,
        "name": p.name,
        "address": p.address,
    }
    if p.private_key is not None:
        data["privateKey"] = p.private_key
    data["publicKey"] = p.public_key
    if p.pre_shared_key is not None:
        data["preSharedKey"] = p.pre_shared_key
    data.update({
        "createdAt": format_timestamp(p.created_at),
        "updatedAt": format_timestamp(p.updated_at),
        "expiredAt": format_timestamp(p.expired_at),
        "enabled": p.enabled,
        "oneTimeLink": p.one_time_link,
        "oneTimeLinkExpiresAt": format_timestamp(p.one_time_link_expires_at),
    })
    return data


def state_to_dict(snapshot: Snapshot) -> dict:
    return {
        "server": {
            "privateKey": snapshot.server.private_key,
            "publicKey": snapshot.server.public_key,
            "address": snapshot.server.address,
        },
        "clients": {
            client_id: peer_to_dict(p)
            for client_id, p in snapshot.clients.items()
        },
    }


def dict_to_state(data: dict) -> Snapshot:
    try:
        server_data = data["server"]
        server = ServerIdentity(
            private_key=server_data["privateKey"],
            public_key=server_data["publicKey"],
            address=server_data["address"],
        )

        clients = {}
        for client_id, p in (data.get("clients") or {}).items():
            clients[client_id] = Peer(
                id=p.get("id", client_id),
                name=p["name"],
                address=p["address"],
                public_key=p["publicKey"],
                private_key=p.get("privateKey"),
                pre_shared_key=p.get("preSharedKey"),
                enabled=bool(p.get("enabled", True)),
                created_at=parse_timestamp(p["createdAt"]),
                updated_at=parse_timestamp(p["updatedAt"]),
                expired_at=parse_timestamp(p.get("expiredAt")),
                one_time_link=p.get("oneTimeLink"),
                one_time_link_expires_at=parse_timestamp(p.get("oneTimeLinkExpiresAt")),
            )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid configuration: {e}") from e

    return Snapshot(server=server, clients=clients)


def dumps_state(snapshot: Snapshot) -> str:
    return json.dumps(state_to_dict(snapshot), indent=2)


def loads_state(raw: str) -> Snapshot:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid configuration: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Invalid configuration: expected a JSON object")
    return dict_to_state(data)


# ---------- Fichiers ----------

def write_file(path: Path, content: str, mode: int) -> None:
    """Écriture atomique (fichier temporaire + replace) avec permissions explicites."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    os.chmod(tmp, mode)
    tmp.replace(path)


def load_state(path: Path) -> Optional[Snapshot]:
    """None si le fichier n'existe pas encore (premier démarrage)."""
    if not path.exists():
        return None
    return loads_state(path.read_text(encoding="utf-8"))


def save_state(snapshot: Snapshot, path: Path, mode: int = 0o660) -> None:
    write_file(path, dumps_state(snapshot), mode)
