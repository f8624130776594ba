from __future__ import annotations

import pytest

from vmagent.errors import QueryError
from vmagent.results import Instance


def _raw(**extra) -> dict[str, str]:
    raw = {
        'name': 'dev',
        'ostype': 'Linux26_64',
        'VMState': 'running',
        'cpus': '2',
        'memory': '2048',
        'nic1': 'hostonly',
        'nic2': 'nat',
        'cableconnected1': 'on',
        'cableconnected2': 'off',
        'hostonlyadapter1': 'vboxnet3',
        'SATA-0-0': '/vm/boot.iso',
        'SATA-ImageUUID-0-0': 'abc',
        'SATA-1-0': '/vm/data.vmdk.link',
        'SATA-2-0': 'none',
        'Forwarding(0)': 'web,tcp,127.0.0.1,8080,,80',
        'Forwarding(1)': 'ssh,tcp,127.0.0.1,2224,,22',
    }
    raw.update(extra)
    return raw


def test_from_machine_readable() -> None:
    inst = Instance.from_machine_readable(_raw())
    assert inst.installed and inst.running
    assert inst.cpus == 2 and inst.memory == 2048
    assert inst.cableconnected1 is True
    assert inst.cableconnected2 is False
    assert inst.hostonlyadapter1 == 'vboxnet3'
    assert inst.ssh_port == 2224
    assert inst.sata == {
        'SATA-0-0': '/vm/boot.iso',
        'SATA-1-0': '/vm/data.vmdk.link',
    }
    assert inst['SATA-1-0'] == inst.data_disk == '/vm/data.vmdk.link'
    assert inst.boot_disk == '/vm/boot.iso'
    assert 'raw' not in inst.as_dict()


def test_powered_off_state() -> None:
    inst = Instance.from_machine_readable(_raw(VMState='poweroff'))
    assert inst.installed and not inst.running
    assert inst.state == 'poweroff'


def test_missing_instance_shape() -> None:
    inst = Instance.missing('ghost')
    assert inst.installed is False
    assert inst.running is False
    assert inst.ssh_port is None


@pytest.mark.parametrize('drop', ['name', 'VMState', 'cpus'])
def test_incomplete_output_raises(drop) -> None:
    raw = _raw()
    del raw[drop]
    with pytest.raises(QueryError):
        Instance.from_machine_readable(raw)


def test_non_numeric_memory_raises() -> None:
    with pytest.raises(QueryError, match='memory'):
        Instance.from_machine_readable(_raw(memory='lots'))


@pytest.mark.parametrize('state', ['paused', 'stuck'])
def test_suspended_state_is_active_not_running(state) -> None:
    inst = Instance.from_machine_readable(_raw(VMState=state))
    assert inst.running is False
    assert inst.active is True


def test_saved_state_is_inactive() -> None:
    inst = Instance.from_machine_readable(_raw(VMState='saved'))
    assert inst.active is False
