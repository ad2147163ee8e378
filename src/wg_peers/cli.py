import argparse
import json
import logging
import re
import sys
import time
from pathlib import Path

import qrcode

from wg_peers.config import Settings
from wg_peers.errors import NotFoundError, WireGuardError
from wg_peers.metrics import MetricsExporter
from wg_peers.registry import PeerRegistry, get_registry
from wg_peers.scheduler import ExpiryScheduler


def _resolve(registry: PeerRegistry, ref: str) -> str:
    """Accepte un id ou un nom de peer (s'il est unique)."""
    clients = registry.load().clients
    if ref in clients:
        return ref
    matches = [p.id for p in clients.values() if p.name == ref]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise NotFoundError(f"Plusieurs peers s'appellent '{ref}', utilise l'id.")
    raise NotFoundError(f"Client Not Found: {ref}")


def _filename(peer) -> str:
    # le nom est libre : seuls lettres, chiffres, "-", "_" et "." passent
    safe = re.sub(r"[^A-Za-z0-9_.-]", "_", peer.name).strip(".")
    return safe or peer.id


def _fmt(value) -> str:
    return value.isoformat() if value is not None else "-"


# ---------------------------------------------------
# Commande : init (chargement / génération du serveur)
# ---------------------------------------------------

def cmd_init(registry, args):
    print(f"[*] Initialisation de l'interface {registry.settings.device}...")
    snapshot = registry.load()
    print("[+] Adresse :", snapshot.server.address)
    print(f"[+] Fichier {registry.settings.json_path} à jour.")


# ---------------------------------------------------
# Commande : add-peer
# ---------------------------------------------------

def cmd_add_peer(registry, args):
    peer = registry.create(args.name, args.expires)
    print(f"[+] Peer ajouté : {peer.name} ({peer.address}) id={peer.id}")
    print("[+] Configuration client :")
    print(registry.client_config(peer.id))


# ---------------------------------------------------
# Commande : list-peers
# ---------------------------------------------------

def cmd_list(registry, args):
    snapshot = registry.load()
    s = registry.settings

    print("=== Serveur ===")
    print(f"Interface : {s.device}")
    print(f"Adresse   : {snapshot.server.address}")
    print(f"Port      : {s.port}")
    print(f"Endpoint  : {s.host}:{s.config_port}\n")

    print("=== Peers ===")
    peers = registry.list_peers()
    if not peers:
        print("Aucun peer.")
        return
    for p in peers:
        state = "on " if p.enabled else "off"
        print(
            f"- [{state}] {p.name} ({p.address}) id={p.id} "
            f"endpoint={p.endpoint or '-'} handshake={_fmt(p.latest_handshake_at)} "
            f"rx={p.transfer_rx or 0} tx={p.transfer_tx or 0} expire={_fmt(p.expired_at)}"
        )


# ---------------------------------------------------
# Commandes : remove / enable / disable / rename / address / expire
# ---------------------------------------------------

def cmd_remove_peer(registry, args):
    registry.delete(_resolve(registry, args.peer))
    print(f"[OK] Peer supprimé : {args.peer}")


def cmd_enable(registry, args):
    peer = registry.enable(_resolve(registry, args.peer))
    print(f"[OK] Peer activé : {peer.name}")


def cmd_disable(registry, args):
    peer = registry.disable(_resolve(registry, args.peer))
    print(f"[OK] Peer désactivé : {peer.name}")


def cmd_rename(registry, args):
    peer = registry.rename(_resolve(registry, args.peer), args.name)
    print(f"[OK] Peer renommé : {peer.name}")


def cmd_set_address(registry, args):
    peer = registry.readdress(_resolve(registry, args.peer), args.address)
    print(f"[OK] Nouvelle adresse pour {peer.name} : {peer.address}")


def cmd_set_expiry(registry, args):
    peer = registry.set_expiry(_resolve(registry, args.peer), args.date)
    print(f"[OK] Expiration de {peer.name} : {_fmt(peer.expired_at)}")


# ---------------------------------------------------
# Commandes : one-time-link
# ---------------------------------------------------

def cmd_one_time_link(registry, args):
    client_id = _resolve(registry, args.peer)
    if args.clear:
        registry.clear_one_time_link(client_id)
        print("[OK] Lien supprimé.")
        return
    peer = registry.generate_one_time_link(client_id)
    print(f"[OK] Lien : {peer.one_time_link} (expire {_fmt(peer.one_time_link_expires_at)})")


# ---------------------------------------------------
# Commandes : export-peer / generate-qr
# ---------------------------------------------------

def cmd_export_peer(registry, args):
    client_id = _resolve(registry, args.peer)
    conf = registry.client_config(client_id)
    name = _filename(registry.get(client_id))

    Path("configs").mkdir(exist_ok=True)
    path = Path(f"configs/{name}.conf")
    path.write_text(conf)

    print(f"[OK] Config générée : {path}")
    print("\n--- Configuration ---\n")
    print(conf)


def cmd_generate_qr(registry, args):
    client_id = _resolve(registry, args.peer)
    name = _filename(registry.get(client_id))
    Path("configs").mkdir(exist_ok=True)

    if args.svg:
        path = Path(f"configs/{name}.svg")
        path.write_text(registry.client_qr_svg(client_id))
    else:
        path = Path(f"configs/{name}.png")
        img = qrcode.make(registry.client_config(client_id))
        img.save(str(path))

    print(f"[OK] QR code généré : {path}")


# ---------------------------------------------------
# Commandes : backup / restore / metrics / cron
# ---------------------------------------------------

def cmd_backup(registry, args):
    data = registry.backup()
    if args.output:
        Path(args.output).write_text(data)
        print(f"[OK] Sauvegarde écrite : {args.output}")
    else:
        print(data)


def cmd_restore(registry, args):
    snapshot = registry.restore(Path(args.file).read_text())
    print(f"[OK] Configuration restaurée ({len(snapshot.clients)} peers).")


def cmd_metrics(registry, args):
    exporter = MetricsExporter(registry)
    if args.json:
        print(json.dumps(exporter.get_stats(), indent=2))
    else:
        print(exporter.collect(), end="")


def cmd_cron(registry, args):
    registry.load()
    scheduler = ExpiryScheduler(registry, interval=args.interval)
    scheduler.start()
    print(f"[*] Balayage toutes les {args.interval}s (Ctrl+C pour arrêter)")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
        if args.down:
            registry.shutdown()


# ---------------------------------------------------
# CLI / Parser
# ---------------------------------------------------

def build_parser():
    parser = argparse.ArgumentParser(prog="wg-peers")
    parser.add_argument("--verbose", "-v", action="store_true", help="Logs en DEBUG")
    sub = parser.add_subparsers(dest="cmd")

    p_init = sub.add_parser("init")
    p_init.set_defaults(func=cmd_init)

    p_add = sub.add_parser("add-peer")
    p_add.add_argument("name")
    p_add.add_argument("--expires", help="YYYY-MM-DD")
    p_add.set_defaults(func=cmd_add_peer)

    p_list = sub.add_parser("list-peers")
    p_list.set_defaults(func=cmd_list)

    p_rm = sub.add_parser("remove-peer")
    p_rm.add_argument("peer")
    p_rm.set_defaults(func=cmd_remove_peer)

    p_en = sub.add_parser("enable")
    p_en.add_argument("peer")
    p_en.set_defaults(func=cmd_enable)

    p_dis = sub.add_parser("disable")
    p_dis.add_argument("peer")
    p_dis.set_defaults(func=cmd_disable)

    p_mv = sub.add_parser("rename")
    p_mv.add_argument("peer")
    p_mv.add_argument("name")
    p_mv.set_defaults(func=cmd_rename)

    p_addr = sub.add_parser("set-address")
    p_addr.add_argument("peer")
    p_addr.add_argument("address")
    p_addr.set_defaults(func=cmd_set_address)

    p_exp = sub.add_parser("set-expiry")
    p_exp.add_argument("peer")
    p_exp.add_argument("date", nargs="?", help="YYYY-MM-DD, vide pour retirer")
    p_exp.set_defaults(func=cmd_set_expiry)

    p_link = sub.add_parser("one-time-link")
    p_link.add_argument("peer")
    p_link.add_argument("--clear", action="store_true")
    p_link.set_defaults(func=cmd_one_time_link)

    p_export = sub.add_parser("export-peer")
    p_export.add_argument("peer")
    p_export.set_defaults(func=cmd_export_peer)

    p_qr = sub.add_parser("generate-qr")
    p_qr.add_argument("peer")
    p_qr.add_argument("--svg", action="store_true")
    p_qr.set_defaults(func=cmd_generate_qr)

    p_backup = sub.add_parser("backup")
    p_backup.add_argument("--output", "-o")
    p_backup.set_defaults(func=cmd_backup)

    p_restore = sub.add_parser("restore")
    p_restore.add_argument("file")
    p_restore.set_defaults(func=cmd_restore)

    p_metrics = sub.add_parser("metrics")
    p_metrics.add_argument("--json", action="store_true")
    p_metrics.set_defaults(func=cmd_metrics)

    p_cron = sub.add_parser("cron")
    p_cron.add_argument("--interval", type=float, default=60.0)
    p_cron.add_argument("--down", action="store_true", help="wg-quick down à l'arrêt")
    p_cron.set_defaults(func=cmd_cron)

    return parser


def main(argv=None, registry=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        registry = registry or get_registry(Settings.from_env())
        args.func(registry, args)
    except WireGuardError as e:
        print(f"[ERREUR] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
