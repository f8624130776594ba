"""CLI commands for inspecting host-only networks and DHCP servers."""

from __future__ import annotations

import scriptconfig as scfg

from ..detect import host_interface_ips
from ..net import suggest_guest_ip
from ._common import _BaseCommand, _load_cfg, build_vm, print_json


class NetListCLI(_BaseCommand):
    """List host-only adapters as reported by VirtualBox."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print_json(build_vm(_load_cfg(args.config)).network.list())
        return 0


class NetDHCPCLI(_BaseCommand):
    """List DHCP servers as reported by VirtualBox."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        vm = build_vm(_load_cfg(args.config))
        print_json(vm.network.list_dhcp_servers())
        return 0


class NetSuggestCLI(_BaseCommand):
    """Print a guest IP that does not clash with host interfaces."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        cls.cli(argv=argv, data=kwargs)
        print(suggest_guest_ip(host_interface_ips()))
        return 0


class NetModalCLI(scfg.ModalCLI):
    """Network subcommands."""

    list = NetListCLI
    dhcp = NetDHCPCLI
    suggest = NetSuggestCLI
