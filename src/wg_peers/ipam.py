# src/wg_peers/ipam.py
from __future__ import annotations

import ipaddress
from typing import Iterable, Set, Tuple

from .errors import CapacityExhausted


def usable_range(network_cidr: str) -> Tuple[ipaddress.IPv4Address, ipaddress.IPv4Address]:
    """(première, dernière) adresse utilisable du réseau, toutes deux réservées."""
    net = ipaddress.ip_network(network_cidr, strict=False)
    if net.num_addresses <= 2:
        return net.network_address, net.broadcast_address
    return net.network_address + 1, net.broadcast_address - 1


def first_address(network_cidr: str) -> str:
    # IP du serveur
    return str(usable_range(network_cidr)[0])


def get_used_ips(addresses: Iterable[str]) -> Set[ipaddress.IPv4Address]:
    used = set()
    for a in addresses:
        try:
            used.add(ipaddress.IPv4Address(a.split("/")[0]))
        except ValueError:
            # adresse saisie à la main et invalide : ne bloque rien
            continue
    return used


def allocate_address(network_cidr: str, addresses: Iterable[str]) -> str:
    """
    Retourne la plus petite IP libre strictement entre la première et la
    dernière adresse utilisable du réseau, ex '10.8.0.2'.
    """
    first, last = usable_range(network_cidr)
    used = get_used_ips(addresses)

    for i in range(int(first) + 1, int(last)):
        candidate = ipaddress.IPv4Address(i)
        if candidate not in used:
            return str(candidate)

    raise CapacityExhausted("Maximum number of clients reached.")
