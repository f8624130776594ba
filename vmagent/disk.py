"""Data disk creation plus SATA attach/detach/close handling for VM media."""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from .errors import CommandFailed
from .util import remove_file
from .vbox import VBoxManage

log = logger

CONTROLLER = 'SATA'
BOOT_PORT = 0
DATA_PORT = 1
# boot2docker formats a disk that starts with this marker on first boot.
FORMAT_MARKER = b'boot2docker, please format-me'
MB = 1024 * 1024


def link_path(path: str | Path) -> str:
    return f'{path}.link'


def tmp_path(path: str | Path) -> str:
    return f'{path}.tmp'


class DiskManager:
    """Creates the data image and binds/unbinds media on the SATA controller."""

    def __init__(self, vbox: VBoxManage):
        self.vbox = vbox

    def ensure_data_disk(self, path: str, size_mb: int) -> bool:
        """
        Create the data image at ``path`` unless it exists.

        The image is converted from a sparse raw ``<path>.tmp`` carrying the
        auto-format marker; the tmp file never survives this call.

        Returns:
            bool: True when a new image was created.
        """
        if os.path.exists(path):
            log.info('Data disk exists: {}', path)
            return False
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        tmp = tmp_path(path)
        try:
            with open(tmp, 'wb') as file:
                file.write(FORMAT_MARKER)
                file.truncate(size_mb * MB)
            self.vbox.run('convertfromraw', tmp, path, '--format', 'VMDK')
        except (OSError, CommandFailed):
            remove_file(path)
            raise
        finally:
            remove_file(tmp)
        log.info('Data disk created: {} ({} MB)', path, size_mb)
        return True

    def make_link(self, path: str) -> str:
        """Hard-link the image so closing the medium never touches the original."""
        link = link_path(path)
        remove_file(link)
        os.link(path, link)
        return link

    def add_controller(self, name: str) -> None:
        self.vbox.run(
            'storagectl',
            name,
            '--name',
            CONTROLLER,
            '--add',
            'sata',
            '--portcount',
            '2',
            '--hostiocache',
            'on',
        )

    def attach(
        self, name: str, port: int, medium: str, *, kind: str = 'hdd'
    ) -> None:
        self.vbox.run(
            'storageattach',
            name,
            '--storagectl',
            CONTROLLER,
            '--port',
            str(port),
            '--device',
            '0',
            '--type',
            kind,
            '--medium',
            medium,
        )
        log.debug('Attached {} to {} port {}', medium, name, port)

    def detach(self, name: str, port: int) -> bool:
        return self.vbox.tolerate_missing(
            'storageattach',
            name,
            '--storagectl',
            CONTROLLER,
            '--port',
            str(port),
            '--device',
            '0',
            '--medium',
            'none',
        )

    def close(self, medium: str, *, kind: str = 'disk') -> bool:
        """Unregister ``medium``; one that is already closed counts as done."""
        return self.vbox.tolerate_missing('closemedium', kind, medium)

    def release(
        self, name: str, port: int, medium: str, *, kind: str = 'disk'
    ) -> None:
        self.detach(name, port)
        self.close(medium, kind=kind)

    def remove_files(self, *paths: str) -> list[str]:
        removed = [p for p in paths if remove_file(p)]
        for p in removed:
            log.debug('Removed {}', p)
        return removed
