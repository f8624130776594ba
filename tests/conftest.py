"""Shared fixtures: an in-memory VBoxManage stand-in and a wired controller."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from vmagent.config import AgentConfig
from vmagent.errors import CommandFailed
from vmagent.events import LocalBus
from vmagent.util import CmdResult
from vmagent.vbox import VBoxManage
from vmagent.vm import VM

ERR = 'VBoxManage: error: '
SESSION_STATES = ('running', 'paused', 'stuck')
NOT_FOUND = f'{ERR}Code VBOX_E_OBJECT_NOT_FOUND (0x80bb0001)'


class FakeVBox:
    """
    Interprets VBoxManage argv against in-memory machine/network state.

    Each call is recorded in ``calls`` without the executable. ``failures``
    maps an argv prefix tuple to the stderr that call should fail with.
    """

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.vms: dict[str, dict] = {}
        self.hostonlyifs: dict[str, dict[str, str]] = {}
        self.dhcp: dict[str, dict[str, str]] = {}
        self.media: set[str] = set()
        self.props: dict[tuple[str, str], tuple[str, str]] = {}
        self.failures: dict[tuple[str, ...], str] = {}
        self.acpi_honored = True
        self.converted: dict[str, bytes] = {}
        self._next_if = 0

    def __call__(self, cmd, *, check=True, capture=True, **kwargs):
        args = tuple(str(a) for a in cmd[1:])
        self.calls.append(args)
        for prefix, stderr in self.failures.items():
            if args[: len(prefix)] == prefix:
                return self._fail(cmd, stderr, check)
        handler = getattr(self, '_' + args[0].replace('-', '_'))
        try:
            return CmdResult(0, handler(*args[1:]) or '', '')
        except _Fail as ex:
            return self._fail(cmd, ex.stderr, check)

    def _fail(self, cmd, stderr, check):
        res = CmdResult(1, '', stderr)
        if check:
            raise CommandFailed(list(cmd), res)
        return res

    def called(self, *prefix: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[: len(prefix)] == prefix]

    # machines

    def _vm(self, name):
        if name not in self.vms:
            raise _Fail(
                f"{ERR}Could not find a registered machine named '{name}'\n{NOT_FOUND}"
            )
        return self.vms[name]

    def _running(self, name):
        vm = self._vm(name)
        if vm['VMState'] not in SESSION_STATES:
            raise _Fail(f"{ERR}Machine '{name}' is not currently running")
        return vm

    def _showvminfo(self, name, *rest):
        vm = self._vm(name)
        lines = []
        for key, val in vm.items():
            if key == 'forwarding':
                continue
            key = f'"{key}"' if '-' in key else key
            lines.append(f'{key}="{val}"')
        for i, rule in enumerate(vm['forwarding'].values()):
            lines.append(f'Forwarding({i})="{rule}"')
        return '\n'.join(lines) + '\n'

    def _createvm(self, *args):
        opts = dict(zip(args[::2], args[1::2]))
        name = opts['--name']
        if name in self.vms:
            raise _Fail(f"{ERR}Machine settings file for '{name}' already exists")
        self.vms[name] = {
            'name': name,
            'ostype': opts.get('--ostype', 'Other'),
            'VMState': 'poweroff',
            'cpus': '1',
            'memory': '128',
            'nic1': 'none',
            'nic2': 'none',
            'forwarding': {},
        }

    def _modifyvm(self, name, *args):
        vm = self._vm(name)
        i = 0
        while i < len(args):
            opt = args[i]
            if opt.startswith('--natpf'):
                if args[i + 1] == 'delete':
                    if vm['forwarding'].pop(args[i + 2], None) is None:
                        raise _Fail(f'{ERR}rule not found\n{NOT_FOUND}')
                    i += 3
                    continue
                rule = args[i + 1]
                vm['forwarding'][rule.split(',')[0]] = rule
            else:
                vm[opt[2:]] = args[i + 1]
            i += 2

    def _storagectl(self, name, *args):
        self._vm(name)['storagecontrollername0'] = 'SATA'

    def _storageattach(self, name, *args):
        vm = self._vm(name)
        opts = dict(zip(args[::2], args[1::2]))
        port = opts['--port']
        key = f'SATA-{port}-0'
        if opts['--medium'] == 'none':
            if vm.get(key, 'none') == 'none':
                raise _Fail(
                    f'{ERR}No storage device attached to device slot 0 on port {port}\n{NOT_FOUND}'
                )
            vm[key] = 'none'
            vm.pop(f'SATA-ImageUUID-{port}-0', None)
            return
        vm[key] = opts['--medium']
        vm[f'SATA-ImageUUID-{port}-0'] = f'uuid-{port}'
        if opts.get('--type') == 'hdd':
            self.media.add(opts['--medium'])

    def _closemedium(self, kind, medium):
        if medium not in self.media:
            raise _Fail(
                f"{ERR}Could not find file for the medium '{medium}'\n{NOT_FOUND}"
            )
        self.media.discard(medium)

    def _unregistervm(self, name, *args):
        vm = self._vm(name)
        if vm['VMState'] in SESSION_STATES:
            raise _Fail(
                f"{ERR}Cannot unregister the machine '{name}' while it is locked"
            )
        if '--delete' in args:
            # --delete also destroys every hard disk still attached.
            for key, val in vm.items():
                if key.startswith('SATA-') and val in self.media:
                    self.media.discard(val)
                    if os.path.exists(val):
                        os.unlink(val)
        del self.vms[name]

    def _startvm(self, name, *args):
        vm = self._vm(name)
        if vm['VMState'] == 'running':
            raise _Fail(f"{ERR}The machine '{name}' is already running")
        vm['VMState'] = 'running'

    def _controlvm(self, name, action, *args):
        vm = self._running(name)
        if action == 'poweroff':
            vm['VMState'] = 'poweroff'
        elif action == 'acpipowerbutton':
            if self.acpi_honored:
                vm['VMState'] = 'poweroff'
        elif action == 'screenshotpng':
            Path(args[0]).write_bytes(b'\x89PNG\r\n\x1a\n')

    def _guestproperty(self, action, name, key, *args):
        self._vm(name)
        if action == 'get':
            if (name, key) not in self.props:
                return 'No value set!\n'
            return f'Value: {self.props[name, key][0]}\n'
        flags = args[2] if len(args) > 2 and args[1] == '--flags' else ''
        self.props[name, key] = (args[0] if args else '', flags)

    # media conversion

    def _convertfromraw(self, src, dst, *args):
        with open(src, 'rb') as file:
            head = file.read(64)
        self.converted[dst] = head
        Path(dst).write_bytes(head)

    # networks

    def _hostonlyif(self, action, *args):
        if action == 'create':
            name = f'vboxnet{self._next_if}'
            self._next_if += 1
            self.hostonlyifs[name] = {'Name': name, 'IPAddress': '', 'NetworkMask': ''}
            return f"0%...100%\nInterface '{name}' was successfully created\n"
        name = args[0]
        if name not in self.hostonlyifs:
            raise _Fail(
                f"{ERR}Could not find a host interface named '{name}'\n{NOT_FOUND}"
            )
        if action == 'ipconfig':
            opts = dict(zip(args[1::2], args[2::2]))
            self.hostonlyifs[name]['IPAddress'] = opts['--ip']
            self.hostonlyifs[name]['NetworkMask'] = opts['--netmask']
        elif action == 'remove':
            del self.hostonlyifs[name]

    def _dhcpserver(self, action, *args):
        opts = dict(zip(args[::2], args[1::2]))
        netname = opts['--netname']
        if action == 'add':
            if netname in self.dhcp:
                raise _Fail('VBoxManage: error: DHCP server already exists')
            self.dhcp[netname] = {
                'NetworkName': netname,
                'Dhcpd IP': opts['--ip'],
                'LowerIPAddress': opts['--lowerip'],
                'UpperIPAddress': opts['--upperip'],
                'NetworkMask': opts['--netmask'],
                'Enabled': 'Yes',
            }
        elif action == 'remove':
            if self.dhcp.pop(netname, None) is None:
                raise _Fail('VBoxManage: error: DHCP server does not exist')

    def _list(self, kind):
        if kind == 'hostonlyifs':
            records = [
                {**rec, 'VBoxNetworkName': f'HostInterfaceNetworking-{name}'}
                for name, rec in self.hostonlyifs.items()
            ]
        elif kind == 'dhcpservers':
            records = list(self.dhcp.values())
        else:
            records = []
        blocks = [
            '\n'.join(f'{k}:{" " * 4}{v}' for k, v in rec.items())
            for rec in records
        ]
        return '\n\n'.join(blocks) + '\n'


class _Fail(Exception):
    def __init__(self, stderr):
        super().__init__(stderr)
        self.stderr = stderr


@pytest.fixture
def fake_vbox() -> FakeVBox:
    return FakeVBox()


@pytest.fixture
def vbox(fake_vbox) -> VBoxManage:
    return VBoxManage(runner=fake_vbox, retries=2, retry_delay=0)


@pytest.fixture
def agent_cfg(tmp_path: Path) -> AgentConfig:
    boot = tmp_path / 'boot.iso'
    boot.write_bytes(b'iso')
    ident = tmp_path / 'id_ed25519'
    ident.write_text('key')
    cfg = AgentConfig()
    cfg.vm.name = 'dev'
    cfg.vm.boot_disk = str(boot)
    cfg.vm.data_disk = str(tmp_path / 'disks' / 'data.vmdk')
    cfg.vm.data_disk_mb = 1
    cfg.vm.ip = '192.168.77.4'
    cfg.ssh.identity_file = str(ident)
    cfg.ssh.port_range_start = 42220
    cfg.vbox.retry_delay = 0
    cfg.vbox.stop_timeout = 0
    cfg.vbox.screenshot_dir = str(tmp_path / 'shots')
    cfg.vbox.state_dir = str(tmp_path / 'state')
    return cfg


@pytest.fixture
def bus() -> LocalBus:
    return LocalBus()


@pytest.fixture
def events(bus) -> list:
    seen: list = []
    bus.subscribe('#', lambda ev: seen.append(ev))
    return seen


@pytest.fixture
def vm(fake_vbox, agent_cfg, bus) -> VM:
    return VM.from_config(agent_cfg, bus=bus, runner=fake_vbox)
