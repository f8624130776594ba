"""Host-only network adapters, single-address DHCP servers, and guest address planning."""

from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass
from typing import Iterable, Optional

from loguru import logger

from .errors import CommandFailed, QueryError
from .vbox import VBoxManage

log = logger

NETMASK = '255.255.255.0'
DHCP_NETWORK_PREFIX = 'HostInterfaceNetworking-'

# Third octets tried (in order) for 192.168.X.4 guest suggestions.
SUGGESTION_OCTETS = tuple(range(50, 255))
SUGGESTION_HOST = 4


@dataclass
class NetworkConfig:
    guest_ip: str
    gateway_ip: str
    network_address: str
    netmask: str = NETMASK
    hostonly_adapter: str = ''
    dhcp_enabled: bool = False

    @property
    def dhcp_network_name(self) -> str:
        return dhcp_network_name(self.hostonly_adapter)

    @property
    def dhcp_server_ip(self) -> str:
        """First host address of the /24 that is neither gateway nor guest."""
        net = _subnet(self.guest_ip)
        taken = {self.gateway_ip, self.guest_ip}
        for host in net.hosts():
            if str(host) not in taken:
                return str(host)
        raise QueryError(f'No free DHCP server address in {net}')


def _subnet(ip: str) -> ipaddress.IPv4Network:
    return ipaddress.ip_network(f'{ip}/24', strict=False)


def calculate_gateway_ip(ip: str) -> str:
    return str(_subnet(ip).network_address + 1)


def calculate_net_ip(ip: str) -> str:
    return str(_subnet(ip).network_address)


def derive_network_config(guest_ip: str, *, dhcp: bool = False) -> NetworkConfig:
    ipaddress.IPv4Address(guest_ip)
    return NetworkConfig(
        guest_ip=guest_ip,
        gateway_ip=calculate_gateway_ip(guest_ip),
        network_address=calculate_net_ip(guest_ip),
        netmask=NETMASK,
        dhcp_enabled=dhcp,
    )


def suggest_guest_ip(
    existing: Iterable[str], *, preferred: Optional[str] = None
) -> str:
    """
    Pick a private guest address whose /24 holds none of ``existing``.

    ``preferred`` is returned as-is when its /24 is free.
    """
    used = set()
    for ip in existing:
        try:
            used.add(_subnet(ip))
        except ValueError:
            continue
    candidates = [f'192.168.{o}.{SUGGESTION_HOST}' for o in SUGGESTION_OCTETS]
    if preferred:
        candidates.insert(0, preferred)
    for cand in candidates:
        if _subnet(cand) not in used:
            log.debug('Suggested guest ip {}', cand)
            return cand
    raise QueryError('No free private /24 left for a guest address')


def find_free_port(
    start: int, *, host: str = '127.0.0.1', limit: int = 1000
) -> int:
    for port in range(start, min(start + limit, 65536)):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                continue
        return port
    raise QueryError(f'No free host port in [{start}, {start + limit})')


def dhcp_network_name(adapter: str) -> str:
    return f'{DHCP_NETWORK_PREFIX}{adapter}'


class NetworkProvisioner:
    """Creates and tears down host-only adapters and their DHCP servers."""

    def __init__(self, vbox: VBoxManage):
        self.vbox = vbox

    def create_hostonly_adapter(self, config: NetworkConfig) -> str:
        res = self.vbox.run('hostonlyif', 'create')
        match = re.search(r"Interface '([^']+)'", res.stdout + res.stderr)
        if match is None:
            raise QueryError(
                f'Unexpected hostonlyif create output: {res.stdout.strip()!r}'
            )
        name = match.group(1)
        try:
            self.vbox.run(
                'hostonlyif',
                'ipconfig',
                name,
                '--ip',
                config.gateway_ip,
                '--netmask',
                config.netmask,
            )
        except CommandFailed:
            self.remove_hostonly_adapter(name)
            raise
        config.hostonly_adapter = name
        log.info(
            'Network ready: {} (gateway={}, netmask={})',
            name,
            config.gateway_ip,
            config.netmask,
        )
        return name

    def remove_hostonly_adapter(self, name: str) -> bool:
        if not name:
            return False
        removed = self.vbox.tolerate_missing('hostonlyif', 'remove', name)
        if removed:
            log.info('Network removed: {}', name)
        return removed

    def start_dhcp(self, adapter: str, config: NetworkConfig) -> None:
        netname = dhcp_network_name(adapter)
        # A leftover server for a recycled adapter name would reject "add".
        self.vbox.tolerate_missing('dhcpserver', 'remove', '--netname', netname)
        self.vbox.run(
            'dhcpserver',
            'add',
            '--netname',
            netname,
            '--ip',
            config.dhcp_server_ip,
            '--netmask',
            config.netmask,
            '--lowerip',
            config.guest_ip,
            '--upperip',
            config.guest_ip,
            '--enable',
        )
        config.dhcp_enabled = True
        log.info('DHCP server ready on {} leasing {}', netname, config.guest_ip)

    def stop_dhcp(self, adapter: str) -> bool:
        if not adapter:
            return False
        netname = dhcp_network_name(adapter)
        removed = self.vbox.tolerate_missing(
            'dhcpserver', 'remove', '--netname', netname
        )
        if removed:
            log.info('DHCP server removed: {}', netname)
        return removed

    def list(self) -> list[dict[str, str]]:
        return self.vbox.list_records('hostonlyifs')

    def list_dhcp_servers(self) -> list[dict[str, str]]:
        return self.vbox.list_records('dhcpservers')

    def find_adapter(self, name: str) -> Optional[dict[str, str]]:
        return next((n for n in self.list() if n.get('Name') == name), None)

    def find_dhcp_server(self, adapter: str) -> Optional[dict[str, str]]:
        netname = dhcp_network_name(adapter)
        return next(
            (
                s
                for s in self.list_dhcp_servers()
                if s.get('NetworkName') == netname
            ),
            None,
        )
