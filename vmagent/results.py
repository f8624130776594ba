"""Normalized instance state returned by info/init."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Optional

from .errors import QueryError
from .vbox import parse_forwarding

# States in which the machine still holds its session.
ACTIVE_STATES = frozenset({'running', 'paused', 'stuck', 'gurumeditation'})


def _flag(value: str) -> bool:
    return value.strip().lower() in {'on', 'true', '1'}


def _int(raw: dict[str, str], key: str) -> int:
    try:
        return int(raw[key])
    except KeyError as ex:
        raise QueryError(f'showvminfo output lacks {key!r}') from ex
    except ValueError as ex:
        raise QueryError(f'showvminfo {key}={raw[key]!r} is not an int') from ex


@dataclass
class Instance:
    name: str
    installed: bool = False
    running: bool = False
    active: bool = False
    state: str = ''
    ostype: str = ''
    cpus: int = 0
    memory: int = 0
    nic1: str = ''
    nic2: str = ''
    cableconnected1: bool = False
    cableconnected2: bool = False
    hostonlyadapter1: str = ''
    ssh_port: Optional[int] = None
    sata: dict[str, str] = field(default_factory=dict)
    raw: dict[str, str] = field(default_factory=dict)

    @classmethod
    def missing(cls, name: str) -> 'Instance':
        return cls(name=name, installed=False)

    @classmethod
    def from_machine_readable(cls, raw: dict[str, str]) -> 'Instance':
        if 'name' not in raw or 'VMState' not in raw:
            keys = ', '.join(sorted(raw)[:8])
            raise QueryError(f'showvminfo output lacks name/VMState: {keys}')
        state = raw['VMState'].lower()
        sata = {
            k: v
            for k, v in raw.items()
            if k.startswith('SATA-') and k.count('-') == 2 and v != 'none'
        }
        ssh_port = None
        for key, val in raw.items():
            if not key.startswith('Forwarding('):
                continue
            rule = parse_forwarding(val)
            if rule.get('name') == 'ssh' and rule.get('host_port', '').isdigit():
                ssh_port = int(rule['host_port'])
        return cls(
            name=raw['name'],
            installed=True,
            running=state == 'running',
            active=state in ACTIVE_STATES,
            state=state,
            ostype=raw.get('ostype', ''),
            cpus=_int(raw, 'cpus'),
            memory=_int(raw, 'memory'),
            nic1=raw.get('nic1', ''),
            nic2=raw.get('nic2', ''),
            cableconnected1=_flag(raw.get('cableconnected1', '')),
            cableconnected2=_flag(raw.get('cableconnected2', '')),
            hostonlyadapter1=raw.get('hostonlyadapter1', ''),
            ssh_port=ssh_port,
            sata=sata,
            raw=dict(raw),
        )

    @property
    def boot_disk(self) -> str:
        return self.sata.get('SATA-0-0', '')

    @property
    def data_disk(self) -> str:
        return self.sata.get('SATA-1-0', '')

    def __getitem__(self, key: str) -> str:
        return self.sata[key]

    def as_dict(self) -> dict:
        d = asdict(self)
        d.pop('raw')
        return d
