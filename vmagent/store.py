"""Per-instance record of the host resources an installed VM owns."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import _toml_escape
from .util import remove_file

log = logger


@dataclass
class OwnedResources:
    name: str
    adapter: str = ''
    data_disk: str = ''
    link: str = ''


class ResourceStore:
    """
    One small TOML file per instance name under ``root``.

    The record outlives the hypervisor's machine entry, so teardown can
    still find the adapter and disk link after a partial ``remove``.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path(self, name: str) -> Path:
        return self.root / f'{name}.toml'

    def load(self, name: str) -> Optional[OwnedResources]:
        fpath = self.path(name)
        if not fpath.exists():
            return None
        raw = tomllib.loads(fpath.read_text(encoding='utf-8'))
        known = {f.name for f in fields(OwnedResources)}
        rec = OwnedResources(name=name)
        for k, v in raw.items():
            if k in known and k != 'name':
                setattr(rec, k, str(v))
        return rec

    def save(self, rec: OwnedResources) -> Path:
        fpath = self.path(rec.name)
        fpath.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            f'{k} = "{_toml_escape(str(v))}"' for k, v in asdict(rec).items()
        ]
        fpath.write_text('\n'.join(lines) + '\n', encoding='utf-8')
        log.debug('Recorded resources of {}: {}', rec.name, rec)
        return fpath

    def remove(self, name: str) -> bool:
        return remove_file(self.path(name))
