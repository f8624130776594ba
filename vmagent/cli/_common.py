"""Shared CLI options, config resolution, and controller wiring."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from ..config import AgentConfig, default_config_path, load
from ..events import AgentEvent, LocalBus
from ..vm import VM

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help='Path to config TOML (default: user config dir).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    return Path(p).expanduser().resolve() if p else default_config_path()


def _load_cfg(config_path: str | None) -> AgentConfig:
    path = _cfg_path(config_path)
    if path.exists():
        log.debug('Loading config {}', path)
        return load(path).expanded_paths()
    if config_path:
        raise FileNotFoundError(f'Config not found: {path}')
    log.debug('No config at {}; using defaults', path)
    return AgentConfig().expanded_paths()


def _echo_output(event: AgentEvent) -> None:
    stream = sys.stderr if event.context == 'stderr' else sys.stdout
    stream.buffer.write(event.data)
    stream.flush()


def build_vm(cfg: AgentConfig) -> VM:
    bus = LocalBus()
    bus.subscribe('agent.vm.ssh.*', _echo_output)
    return VM.from_config(cfg, bus=bus)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))
