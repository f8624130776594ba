"""VM lifecycle implementation: install, start/stop, info, and teardown."""

from __future__ import annotations

import os
import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional

from loguru import logger

from ..config import AgentConfig, VMConfig
from ..detect import host_interface_ips
from ..disk import BOOT_PORT, DATA_PORT, DiskManager, link_path, tmp_path
from ..errors import AlreadyInstalled, NotFound
from ..events import AgentEvent, EventBus, NullBus, agent_topic
from ..net import (
    NetworkConfig,
    NetworkProvisioner,
    derive_network_config,
    find_free_port,
    suggest_guest_ip,
)
from ..results import Instance
from ..runtime import GUEST_SSH_PORT
from ..store import OwnedResources, ResourceStore
from ..util import run_cmd
from ..vbox import VBoxManage, forwarding_rule
from ..workflow import Workflow
from .channel import GuestChannel
from .properties import GuestPropertyStore
from .transfer import GuestTransfer

log = logger

LINK_SUFFIX = '.link'
NAT_NIC = 2
STOP_POLL_S = 1.0


class VM:
    """
    Lifecycle controller for a single development VM per name.

    Collaborators are injected; :meth:`from_config` wires the default set.
    ``init``, ``start``, ``stop`` and ``remove`` hold a per-name lock, reads
    do not.
    """

    def __init__(
        self,
        vbox: VBoxManage,
        disks: DiskManager,
        network: NetworkProvisioner,
        bus: EventBus,
        cfg: AgentConfig,
        *,
        properties: Optional[GuestPropertyStore] = None,
        channel: Optional[GuestChannel] = None,
        transfer: Optional[GuestTransfer] = None,
        store: Optional[ResourceStore] = None,
        host_ips: Callable[[], list[str]] = host_interface_ips,
    ):
        self.vbox = vbox
        self.disks = disks
        self.network = network
        self.bus = bus
        self.cfg = cfg
        self.host_ips = host_ips
        self.properties = properties or GuestPropertyStore(vbox)
        self.channel = channel or GuestChannel(bus, cfg.ssh, self.info)
        self.transfer = transfer or GuestTransfer(
            vbox, self.channel, cfg.screenshot_dir
        )
        self.store = store or ResourceStore(cfg.state_dir())
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(
        cls, cfg: AgentConfig, *, bus: Optional[EventBus] = None, runner=run_cmd
    ) -> 'VM':
        vbox = VBoxManage(
            cfg.vbox.exe,
            retries=cfg.vbox.retries,
            retry_delay=cfg.vbox.retry_delay,
            runner=runner,
        )
        return cls(
            vbox,
            DiskManager(vbox),
            NetworkProvisioner(vbox),
            bus if bus is not None else NullBus(),
            cfg,
        )

    @contextmanager
    def _serialized(self, name: str):
        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.Lock())
        with lock:
            yield

    def _publish(self, kind: str, action: str, name: str) -> None:
        self.bus.publish(
            agent_topic('vm', action, 'status'),
            AgentEvent(type=kind, context='lifecycle', status=action, data=name),
        )

    # Queries

    def info(self, name: str) -> Instance:
        try:
            raw = self.vbox.machine_readable(name)
        except NotFound:
            return Instance.missing(name)
        return Instance.from_machine_readable(raw)

    def is_installed(self, name: str) -> bool:
        return self.info(name).installed

    def is_running(self, name: str) -> bool:
        return self.info(name).running

    # Install

    def init(self, options: VMConfig) -> Instance:
        name = options.name
        log.debug('Installing VM {}', name)
        with self._serialized(name):
            if self.is_installed(name):
                raise AlreadyInstalled(f'vm already installed: {name}')
            if not os.path.exists(options.boot_disk):
                raise FileNotFoundError(
                    f'Boot disk not found: {options.boot_disk}'
                )
            if self.store.load(name) is not None:
                log.warning(
                    'Stale resource record for {}; run remove to reclaim it',
                    name,
                )
            flow = Workflow(f'init {name}')
            res = flow.results
            flow.step(
                'record',
                lambda: self._record(
                    OwnedResources(
                        name,
                        data_disk=options.data_disk,
                        link=link_path(options.data_disk),
                    )
                ),
                lambda _: self.store.remove(name),
            )
            flow.step(
                'disks',
                lambda: self._create_disks(options),
                self._undo_disks,
            )
            flow.step(
                'network',
                lambda: self._provision_network(options, res['record']),
                lambda net: self.network.remove_hostonly_adapter(
                    net.hostonly_adapter
                ),
            )
            flow.step(
                'register',
                lambda: self._register(options, res['network']),
                lambda _: self.vbox.tolerate_missing(
                    'unregistervm', name, '--delete'
                ),
            )
            flow.step('controller', lambda: self.disks.add_controller(name))
            flow.step(
                'attach_boot',
                lambda: self.disks.attach(
                    name, BOOT_PORT, options.boot_disk, kind='dvddrive'
                ),
                lambda _: self.disks.detach(name, BOOT_PORT),
            )
            flow.step(
                'attach_data',
                lambda: self.disks.attach(
                    name, DATA_PORT, res['disks']['link'], kind='hdd'
                ),
                lambda _: self.disks.release(
                    name, DATA_PORT, res['disks']['link']
                ),
            )
            flow.step(
                'port_forward',
                lambda: self._forward_ssh(name),
                lambda _: self.vbox.run(
                    'modifyvm', name, f'--natpf{NAT_NIC}', 'delete', 'ssh'
                ),
            )
            if options.dhcp:
                flow.step(
                    'dhcp',
                    lambda: self.network.start_dhcp(
                        res['network'].hostonly_adapter, res['network']
                    ),
                    lambda _: self.network.stop_dhcp(
                        res['network'].hostonly_adapter
                    ),
                )
            else:
                flow.step(
                    'guest_network',
                    lambda: self.properties.set_network(
                        name,
                        res['network'].guest_ip,
                        res['network'].netmask,
                        res['network'].network_address,
                    ),
                )
            flow.run()
        log.info('VM created: {}', name)
        return self.info(name)

    def _create_disks(self, options: VMConfig) -> dict:
        created = self.disks.ensure_data_disk(
            options.data_disk, options.data_disk_mb
        )
        link = self.disks.make_link(options.data_disk)
        return {'created': created, 'data': options.data_disk, 'link': link}

    def _undo_disks(self, disks: dict) -> None:
        self.disks.remove_files(disks['link'])
        if disks['created']:
            self.disks.remove_files(disks['data'])

    def _record(self, rec: OwnedResources) -> OwnedResources:
        self.store.save(rec)
        return rec

    def _provision_network(
        self, options: VMConfig, rec: OwnedResources
    ) -> NetworkConfig:
        ip = options.ip or suggest_guest_ip(self.host_ips())
        net = derive_network_config(ip, dhcp=options.dhcp)
        rec.adapter = self.network.create_hostonly_adapter(net)
        self.store.save(rec)
        return net

    def _register(self, options: VMConfig, net: NetworkConfig) -> None:
        name = options.name
        self.vbox.run(
            'createvm',
            '--name',
            name,
            '--ostype',
            options.ostype,
            '--register',
        )
        self.vbox.run(
            'modifyvm',
            name,
            '--cpus',
            str(options.cpus),
            '--memory',
            str(options.memory_mb),
            '--vram',
            '9',
            '--acpi',
            'on',
            '--ioapic',
            'on',
            '--rtcuseutc',
            'on',
            '--boot1',
            'dvd',
            '--boot2',
            'disk',
            '--boot3',
            'none',
            '--boot4',
            'none',
            '--nic1',
            'hostonly',
            '--nictype1',
            'virtio',
            '--cableconnected1',
            'on',
            '--hostonlyadapter1',
            net.hostonly_adapter,
            '--nic2',
            'nat',
            '--nictype2',
            'virtio',
            '--cableconnected2',
            'on',
        )

    def _forward_ssh(self, name: str) -> int:
        port = find_free_port(self.cfg.ssh.port_range_start)
        self.vbox.run(
            'modifyvm',
            name,
            f'--natpf{NAT_NIC}',
            forwarding_rule('ssh', port, GUEST_SSH_PORT),
        )
        log.info('Forwarding 127.0.0.1:{} -> {}:22', port, name)
        return port

    # Power

    def start(self, name: str) -> bool:
        with self._serialized(name):
            if self.is_running(name):
                log.info('VM already running: {}', name)
                return False
            self.vbox.run('startvm', name, '--type', 'headless')
            self._publish('vm', 'start', name)
            log.info('VM started: {}', name)
            return True

    def stop(self, name: str, force: bool = False) -> bool:
        with self._serialized(name):
            inst = self.info(name)
            if not inst.active:
                log.info('VM already stopped: {}', name)
                return False
            if force or not inst.running:
                # A paused or stuck guest cannot answer the power button.
                self._poweroff(name)
            else:
                self.vbox.run('controlvm', name, 'acpipowerbutton')
                if not self._wait_stopped(name, self.cfg.vbox.stop_timeout):
                    log.warning(
                        'VM {} ignored ACPI shutdown for {}s; powering off',
                        name,
                        self.cfg.vbox.stop_timeout,
                    )
                    self._poweroff(name)
            self._publish('vm', 'stop', name)
            log.info('VM stopped: {}', name)
            return True

    def _poweroff(self, name: str) -> None:
        self.vbox.run('controlvm', name, 'poweroff')

    def _wait_stopped(self, name: str, timeout_s: float) -> bool:
        deadline = time.monotonic() + timeout_s
        while time.monotonic() < deadline:
            if not self.is_running(name):
                return True
            time.sleep(STOP_POLL_S)
        return not self.is_running(name)

    # Teardown

    def remove(self, name: str, *, purge_data: bool = False) -> None:
        """
        Tear down ``name`` and the host-only network it owns.

        Safe on absent or half-removed instances: the resource record written
        by :meth:`init` survives the machine entry, so a retry after a failed
        teardown still finds the adapter and disk link. The data image behind
        the ``.link`` binding is kept unless ``purge_data`` is set.
        """
        with self._serialized(name):
            inst = self.info(name)
            owned = self.store.load(name)
            if not inst.installed and owned is None:
                log.info('VM not installed, nothing to remove: {}', name)
                return
            link = inst.data_disk or (owned.link if owned else '')
            adapter = inst.hostonlyadapter1 or (owned.adapter if owned else '')
            if inst.installed:
                self._unregister(inst)

            if link.endswith(LINK_SUFFIX):
                data = link[: -len(LINK_SUFFIX)]
                self.disks.remove_files(link, tmp_path(data))
                if purge_data:
                    self.disks.remove_files(data)

            if adapter:
                if self.network.stop_dhcp(adapter):
                    self._publish('dhcp', 'remove', name)
                if self.network.remove_hostonly_adapter(adapter):
                    self._publish('hostonly', 'remove', name)
            self.store.remove(name)
        log.info('VM removed: {}', name)

    def _unregister(self, inst: Instance) -> None:
        name = inst.name
        if inst.active:
            self._poweroff(name)
        if inst.data_disk:
            self.disks.release(name, DATA_PORT, inst.data_disk)
        if inst.boot_disk:
            self.disks.detach(name, BOOT_PORT)
        self.vbox.tolerate_missing('unregistervm', name, '--delete')
        self._publish('vm', 'remove', name)

    # Guest access

    def get_property(self, name: str, key: str) -> dict[str, str]:
        return self.properties.get(name, key)

    def set_property(
        self, name: str, key: str, value: str, flags: Optional[str] = None
    ) -> None:
        self.properties.set(name, key, value, flags)

    def ssh(self, name: str, command: str = 'true') -> int:
        return self.channel.exec(name, command)

    def copy_file(self, name: str, local_path, guest_path: str) -> int:
        return self.transfer.copy_file(name, local_path, guest_path)

    def save_screenshot(self, name: str) -> str:
        return self.transfer.save_screenshot(name)
