"""Wrapper around the VBoxManage control tool: invocation, retries, and output parsing."""

from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from .errors import CommandFailed, NotFound, ResourceBusy
from .util import CmdResult, run_cmd

log = logger

NOT_FOUND_MARKERS = (
    'vbox_e_object_not_found',
    'could not find a registered machine',
    'could not find file for the medium',
    'could not find a dhcp server',
    'could not find a host interface',
    'host interface not found',
    'does not exist',
)

BUSY_MARKERS = (
    'is already locked',
    'locked for a session',
    'vbox_e_invalid_object_state',
    'is locked',
    'is in use',
    'still attached',
)


def classify_error(err: CommandFailed) -> CommandFailed:
    """Map a raw tool failure onto NotFound / ResourceBusy when recognizable."""
    if isinstance(err, (NotFound, ResourceBusy)):
        return err
    text = f'{err.result.stderr}\n{err.result.stdout}'.lower()
    if any(m in text for m in NOT_FOUND_MARKERS):
        return NotFound(err.cmd, err.result)
    if any(m in text for m in BUSY_MARKERS):
        return ResourceBusy(err.cmd, err.result)
    return err


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text


def parse_machine_readable(text: str) -> dict[str, str]:
    """Parse ``showvminfo --machinereadable`` output into a flat table."""
    info: dict[str, str] = {}
    for line in text.splitlines():
        if '=' not in line:
            continue
        key, val = line.split('=', 1)
        info[_unquote(key)] = _unquote(val)
    return info


def parse_records(text: str) -> list[dict[str, str]]:
    """Parse ``list <kind>`` output: blank-line separated ``Key: value`` blocks."""
    records: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip():
            if current:
                records.append(current)
                current = {}
            continue
        if ':' not in line:
            continue
        key, val = line.split(':', 1)
        current[key.strip()] = val.strip()
    if current:
        records.append(current)
    return records


class VBoxManage:
    """
    Executes VBoxManage subcommands.

    Failures are classified into :class:`NotFound` and :class:`ResourceBusy`
    where possible. ``ResourceBusy`` is retried with exponential backoff
    before it is surfaced to the caller.
    """

    def __init__(
        self,
        exe: str = 'VBoxManage',
        *,
        retries: int = 5,
        retry_delay: float = 0.5,
        runner: Callable[..., CmdResult] = run_cmd,
    ):
        self.exe = exe
        self.retries = retries
        self.retry_delay = retry_delay
        self._runner = runner

    def cmd(self, *args: str) -> list[str]:
        return [self.exe, *[str(a) for a in args]]

    def run(self, *args, check: bool = True) -> CmdResult:
        cmd = self.cmd(*args)
        attempt = 0
        while True:
            try:
                return self._runner(cmd, check=check, capture=True)
            except CommandFailed as ex:
                err = classify_error(ex)
                if isinstance(err, ResourceBusy) and attempt < self.retries:
                    delay = self.retry_delay * (2**attempt)
                    attempt += 1
                    log.warning(
                        'Resource busy, retrying in {:.2f}s ({}/{}): {}',
                        delay,
                        attempt,
                        self.retries,
                        ' '.join(cmd[1:3]),
                    )
                    time.sleep(delay)
                    continue
                if err is ex:
                    raise
                raise err from ex

    def tolerate_missing(self, *args) -> bool:
        """Run a teardown command; a missing target counts as success (False)."""
        try:
            self.run(*args)
        except NotFound as ex:
            log.debug('Target already absent: {}', ex.result.stderr.strip())
            return False
        return True

    def machine_readable(self, name: str) -> dict[str, str]:
        res = self.run('showvminfo', name, '--machinereadable')
        return parse_machine_readable(res.stdout)

    def list_records(self, kind: str) -> list[dict[str, str]]:
        res = self.run('list', kind)
        return parse_records(res.stdout)


def forwarding_rule(name: str, host_port: int, guest_port: int) -> str:
    return f'{name},tcp,127.0.0.1,{host_port},,{guest_port}'


def parse_forwarding(rule: str) -> dict[str, str]:
    """Split a ``Forwarding(N)`` value into its named fields."""
    fields = ['name', 'proto', 'host_ip', 'host_port', 'guest_ip', 'guest_port']
    parts = rule.split(',')
    if len(parts) != len(fields):
        return {}
    return dict(zip(fields, parts))
