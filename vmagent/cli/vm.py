"""CLI commands for VM lifecycle, guest properties, and guest access."""

from __future__ import annotations

import scriptconfig as scfg

from ..vm import TRANSIENT
from ._common import _BaseCommand, _load_cfg, build_vm, print_json


class _VMCommand(_BaseCommand):
    vm = scfg.Value('', help='VM name (default: vm.name from config).')


def _resolve(args):
    cfg = _load_cfg(args.config)
    name = str(args.vm or '').strip() or cfg.vm.name
    return cfg, name


class VMInfoCLI(_VMCommand):
    """Print the normalized state of the VM."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        print_json(build_vm(cfg).info(name).as_dict())
        return 0


class VMInitCLI(_VMCommand):
    """Install the VM: disks, host-only network, registration, port forward."""

    ip = scfg.Value('', help='Guest IP (default: suggest a free one).')
    dhcp = scfg.Value(
        False, isflag=True, help='Serve the guest IP from a DHCP server.'
    )
    cpus = scfg.Value(None, type=int, help='Override vm.cpus.')
    memory_mb = scfg.Value(None, type=int, help='Override vm.memory_mb.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        options = cfg.vm.with_overrides(
            name=name,
            ip=args.ip or None,
            dhcp=True if args.dhcp else None,
            cpus=args.cpus,
            memory_mb=args.memory_mb,
        )
        inst = build_vm(cfg).init(options)
        print_json(inst.as_dict())
        return 0


class VMStartCLI(_VMCommand):
    """Start the VM headless."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        if not build_vm(cfg).start(name):
            print(f'VM already running: {name}')
        return 0


class VMStopCLI(_VMCommand):
    """Stop the VM (ACPI shutdown, or power off with --force)."""

    force = scfg.Value(False, isflag=True, help='Power off immediately.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        if not build_vm(cfg).stop(name, force=bool(args.force)):
            print(f'VM already stopped: {name}')
        return 0


class VMRemoveCLI(_VMCommand):
    """Remove the VM and the host-only network it owns."""

    purge_data = scfg.Value(
        False, isflag=True, help='Also delete the data disk image.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        build_vm(cfg).remove(name, purge_data=bool(args.purge_data))
        return 0


class VMSSHCLI(_VMCommand):
    """Run a command inside the guest; exits with the guest exit code."""

    command = scfg.Value('true', position=1, help='Shell command to run.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        return build_vm(cfg).ssh(name, args.command)


class VMCopyCLI(_VMCommand):
    """Copy a host file into the guest."""

    src = scfg.Value(None, position=1, help='Local file.')
    dst = scfg.Value(None, position=2, help='Destination path in the guest.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        if not args.src or not args.dst:
            raise RuntimeError('copy requires SRC and DST.')
        cfg, name = _resolve(args)
        return build_vm(cfg).copy_file(name, args.src, args.dst)


class VMScreenshotCLI(_VMCommand):
    """Save a PNG of the guest display and print its path."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        print(build_vm(cfg).save_screenshot(name))
        return 0


class VMModalCLI(scfg.ModalCLI):
    """VM lifecycle subcommands."""

    info = VMInfoCLI
    init = VMInitCLI
    start = VMStartCLI
    stop = VMStopCLI
    remove = VMRemoveCLI
    ssh = VMSSHCLI
    copy = VMCopyCLI
    screenshot = VMScreenshotCLI


class PropGetCLI(_VMCommand):
    """Print a guest property as JSON ({} when unset)."""

    key = scfg.Value(None, position=1, help='Property key.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        print_json(build_vm(cfg).get_property(name, args.key))
        return 0


class PropSetCLI(_VMCommand):
    """Set a guest property."""

    key = scfg.Value(None, position=1, help='Property key.')
    value = scfg.Value('', position=2, help='Property value.')
    transient = scfg.Value(
        False, isflag=True, help='Drop the property on guest reboot.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, name = _resolve(args)
        flags = TRANSIENT if args.transient else None
        build_vm(cfg).set_property(name, args.key, args.value, flags)
        return 0


class PropModalCLI(scfg.ModalCLI):
    """Guest property subcommands."""

    get = PropGetCLI
    set = PropSetCLI
