"""Dataclass configuration sections with TOML load/save."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path

import ubelt as ub

from .util import expand

APPNAME = 'vmagent'


def _data_dir() -> str:
    return str(ub.Path.appdir(APPNAME, type='data') / 'vm')


@dataclass
class VMConfig:
    name: str = 'vmagent-vm'
    cpus: int = 2
    memory_mb: int = 2048
    ostype: str = 'Linux26_64'
    boot_disk: str = field(default_factory=lambda: _data_dir() + '/boot.iso')
    data_disk: str = field(default_factory=lambda: _data_dir() + '/data.vmdk')
    data_disk_mb: int = 50000
    # Empty means pick an address that does not clash with host interfaces.
    ip: str = ''
    dhcp: bool = False

    def with_overrides(self, **overrides) -> 'VMConfig':
        """Return a copy with each non-None override replacing its field."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f'Unknown VM options: {", ".join(sorted(unknown))}')
        return replace(
            self, **{k: v for k, v in overrides.items() if v is not None}
        )


@dataclass
class SSHConfig:
    user: str = 'docker'
    identity_file: str = ''
    port_range_start: int = 2222
    connect_timeout: int = 10


@dataclass
class VBoxConfig:
    exe: str = 'VBoxManage'
    retries: int = 5
    retry_delay: float = 0.5
    stop_timeout: int = 30
    screenshot_dir: str = ''
    # Empty means the ubelt data dir.
    state_dir: str = ''


@dataclass
class AgentConfig:
    vm: VMConfig = field(default_factory=VMConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    vbox: VBoxConfig = field(default_factory=VBoxConfig)
    verbosity: int = 1

    def expanded_paths(self) -> 'AgentConfig':
        self.vm.boot_disk = expand(self.vm.boot_disk)
        self.vm.data_disk = expand(self.vm.data_disk)
        self.ssh.identity_file = (
            expand(self.ssh.identity_file) if self.ssh.identity_file else ''
        )
        self.vbox.screenshot_dir = (
            expand(self.vbox.screenshot_dir) if self.vbox.screenshot_dir else ''
        )
        self.vbox.state_dir = (
            expand(self.vbox.state_dir) if self.vbox.state_dir else ''
        )
        return self

    def screenshot_dir(self) -> Path:
        if self.vbox.screenshot_dir:
            path = Path(expand(self.vbox.screenshot_dir))
            path.mkdir(parents=True, exist_ok=True)
            return path
        path = ub.Path.appdir(APPNAME, 'screenshots', type='cache').ensuredir()
        return Path(path)

    def state_dir(self) -> Path:
        if self.vbox.state_dir:
            return Path(expand(self.vbox.state_dir))
        return Path(ub.Path.appdir(APPNAME, 'instances', type='data'))


SECTIONS = ('vm', 'ssh', 'vbox')


def default_config_path() -> Path:
    return Path(ub.Path.appdir(APPNAME, type='config')) / 'config.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: AgentConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    # Top-level keys must precede the first table.
    verbosity = d.pop('verbosity', 1)
    if verbosity != 1:
        lines.append(f'verbosity = {verbosity}')
        lines.append('')
    for section, body in d.items():
        if isinstance(body, dict):
            lines.append(f'[{section}]')
            for k, v in body.items():
                if isinstance(v, bool):
                    lines.append(f'{k} = {"true" if v else "false"}')
                elif isinstance(v, (int, float)):
                    lines.append(f'{k} = {v}')
                else:
                    lines.append(f'{k} = "{_toml_escape(str(v))}"')
            lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def load(path: Path) -> AgentConfig:
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    cfg = AgentConfig()
    for section in SECTIONS:
        if section in raw and isinstance(raw[section], dict):
            sec = raw[section]
            obj = getattr(cfg, section)
            for k, v in sec.items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def save(path: Path, cfg: AgentConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_toml(cfg), encoding='utf-8')
