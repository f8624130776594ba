"""Host introspection: addresses already bound to local interfaces."""

from __future__ import annotations

import ipaddress

from loguru import logger

from .util import run_cmd, which

log = logger


def _parse_ip_addr(text: str) -> list[str]:
    ips: list[str] = []
    for line in text.splitlines():
        parts = line.split()
        for i, tok in enumerate(parts[:-1]):
            if tok != 'inet':
                continue
            try:
                iface = ipaddress.ip_interface(parts[i + 1])
            except ValueError:
                continue
            if isinstance(iface, ipaddress.IPv4Interface):
                ips.append(str(iface.ip))
    return ips


def host_interface_ips() -> list[str]:
    """IPv4 addresses of every host interface (``ip`` first, ``ifconfig`` fallback)."""
    log.debug('introspecting host_interface_ips')
    if which('ip') is not None:
        cmd = ['ip', '-4', '-o', 'addr', 'show']
    elif which('ifconfig') is not None:
        cmd = ['ifconfig', '-a']
    else:
        log.warning('neither ip nor ifconfig found; skipping interface scan')
        return []
    try:
        res = run_cmd(cmd, check=True, capture=True)
    except Exception as ex:
        log.warning('Failed to inspect host interfaces: {}', ex)
        return []
    return _parse_ip_addr(res.stdout)
