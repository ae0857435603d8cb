"""Local interface discovery used to pick the listener's bind address."""
from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Any, Iterable, Mapping, Optional, Sequence

import psutil

WILDCARD_HOST = "0.0.0.0"
WIFI_INTERFACE_NAMES = ("en0", "en2")
WIFI_INTERFACE_PREFIXES = ("wlan", "wlp", "wi-fi", "wifi")

LOGGER = logging.getLogger("ClipSync.network")


def is_wifi_interface(name: str) -> bool:
    token = (name or "").strip()
    if token in WIFI_INTERFACE_NAMES:
        return True
    return token.lower().startswith(WIFI_INTERFACE_PREFIXES)


def _usable_ipv4(address: Any) -> Optional[str]:
    if getattr(address, "family", None) != socket.AF_INET:
        return None
    raw = getattr(address, "address", None)
    try:
        parsed = ipaddress.IPv4Address(raw)
    except (ipaddress.AddressValueError, ValueError):
        return None
    if parsed.is_link_local or parsed.is_loopback or parsed.is_unspecified:
        return None
    return str(parsed)


def discover_local_ipv4(
    addrs: Optional[Mapping[str, Sequence[Any]]] = None,
    stats: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    """Return the first IPv4 address on an up Wi-Fi-class interface, if any."""

    if addrs is None:
        try:
            addrs = psutil.net_if_addrs()
        except (OSError, RuntimeError) as exc:
            LOGGER.warning("Unable to enumerate network interfaces: %s", exc)
            return None
    if stats is None:
        try:
            stats = psutil.net_if_stats()
        except (OSError, RuntimeError) as exc:
            LOGGER.debug("Unable to read interface status; assuming all are up: %s", exc)
            stats = {}

    for name in _ordered_wifi_names(addrs.keys()):
        status = stats.get(name)
        if status is not None and not getattr(status, "isup", False):
            continue
        for address in addrs.get(name, ()):
            candidate = _usable_ipv4(address)
            if candidate is not None:
                LOGGER.debug("Selected %s on interface %s", candidate, name)
                return candidate
    return None


def _ordered_wifi_names(names: Iterable[str]) -> list:
    exact = [name for name in WIFI_INTERFACE_NAMES if name in names]
    others = sorted(name for name in names if name not in WIFI_INTERFACE_NAMES and is_wifi_interface(name))
    return exact + others


def resolve_bind_host(preferred: Optional[str] = None) -> str:
    """Pick the host to bind: explicit preference, then Wi-Fi IPv4, then wildcard."""

    token = (preferred or "").strip()
    if token:
        return token
    discovered = discover_local_ipv4()
    if discovered:
        return discovered
    LOGGER.debug("No Wi-Fi IPv4 address found; binding to %s", WILDCARD_HOST)
    return WILDCARD_HOST
