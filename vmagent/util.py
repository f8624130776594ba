"""Shared utility helpers for subprocess execution, paths, and command formatting."""

from __future__ import annotations

import os
import selectors
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Optional, Sequence

from loguru import logger

from .errors import CommandFailed

log = logger

CHUNK_SIZE = 4096


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


def shell_join(cmd: Sequence[str]) -> str:
    return ' '.join(shlex.quote(str(c)) for c in cmd)


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    text: bool = True,
    input_text: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
) -> CmdResult:
    cmd = [str(c) for c in cmd]
    log.opt(depth=1).debug('RUN: {}', shell_join(cmd))
    p = subprocess.run(
        cmd,
        input=input_text if input_text is not None else None,
        capture_output=capture,
        text=text,
        env=env,
    )
    res = CmdResult(p.returncode, p.stdout or '', p.stderr or '')
    if check and p.returncode != 0:
        log.opt(depth=1).error(
            'Command failed code={} cmd={} stderr={} stdout={}',
            p.returncode,
            shell_join(cmd),
            res.stderr.strip(),
            res.stdout.strip(),
        )
        raise CommandFailed(cmd, res)
    if p.returncode == 0:
        log.opt(depth=1).debug('Command ok code=0 cmd={}', shell_join(cmd))
    return res


def stream_cmd(
    cmd: Sequence[str],
    on_output: Callable[[str, bytes], None],
    *,
    stdin: Optional[IO[bytes]] = None,
) -> int:
    """
    Run ``cmd`` and hand every stdout/stderr chunk to ``on_output`` as it
    becomes readable.

    Chunks are delivered in the order the pipes produce them, tagged with
    ``'stdout'`` or ``'stderr'``. Returns the process exit status.
    """
    cmd = [str(c) for c in cmd]
    log.opt(depth=1).debug('STREAM: {}', shell_join(cmd))
    with subprocess.Popen(
        cmd,
        stdin=stdin if stdin is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    ) as proc:
        sel = selectors.DefaultSelector()
        sel.register(proc.stdout, selectors.EVENT_READ, 'stdout')
        sel.register(proc.stderr, selectors.EVENT_READ, 'stderr')
        try:
            while sel.get_map():
                for key, _ in sel.select():
                    chunk = os.read(key.fileobj.fileno(), CHUNK_SIZE)
                    if not chunk:
                        sel.unregister(key.fileobj)
                        key.fileobj.close()
                        continue
                    on_output(key.data, chunk)
        except BaseException:
            # Popen.__exit__ then closes the pipes and reaps the child.
            proc.kill()
            raise
        finally:
            sel.close()
        code = proc.wait()
    log.opt(depth=1).debug('Stream done code={} cmd={}', code, shell_join(cmd))
    return code


def which(cmd: str) -> Optional[str]:
    from shutil import which as _which

    return _which(cmd)


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def remove_file(path: str | Path) -> bool:
    """Unlink ``path`` if present; returns True when something was removed."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True
