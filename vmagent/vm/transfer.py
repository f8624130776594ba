"""Copying host files into the guest and capturing the guest display."""

from __future__ import annotations

import posixpath
import shlex
import time
from pathlib import Path
from typing import Callable

from loguru import logger

from ..vbox import VBoxManage
from .channel import GuestChannel

log = logger


class GuestTransfer:
    def __init__(
        self,
        vbox: VBoxManage,
        channel: GuestChannel,
        screenshot_dir: Callable[[], Path],
    ):
        self.vbox = vbox
        self.channel = channel
        self.screenshot_dir = screenshot_dir

    def copy_file(
        self, name: str, local_path: str | Path, guest_path: str
    ) -> int:
        """
        Copy ``local_path`` to ``guest_path``, creating parent directories.

        Returns the guest-side exit code (0 on success).
        """
        self.channel.running_instance(name)
        parent = posixpath.dirname(guest_path) or '.'
        command = (
            f'mkdir -p {shlex.quote(parent)} && cat > {shlex.quote(guest_path)}'
        )
        with open(local_path, 'rb') as file:
            code = self.channel.exec(name, command, stdin=file)
        log.info(
            'Copied {} -> {}:{} (code={})', local_path, name, guest_path, code
        )
        return code

    def save_screenshot(self, name: str) -> str:
        """Write the current display of ``name`` to a new PNG; caller removes it."""
        self.channel.running_instance(name)
        out_dir = Path(self.screenshot_dir())
        stamp = time.strftime('%Y%m%d-%H%M%S')
        path = out_dir / f'{name}-{stamp}-{time.time_ns() % 10**9}.png'
        self.vbox.run('controlvm', name, 'screenshotpng', str(path))
        log.info('Screenshot saved: {}', path)
        return str(path)
