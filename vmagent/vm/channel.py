"""Remote command execution inside a running guest with streamed output events."""

from __future__ import annotations

from typing import IO, Callable, Optional

from loguru import logger

from ..config import SSHConfig
from ..errors import NotRunning, QueryError
from ..events import AgentEvent, EventBus, agent_topic
from ..results import Instance
from ..runtime import guest_ssh_cmd
from ..util import stream_cmd

log = logger


class GuestChannel:
    """
    Runs shell commands in the guest over the forwarded SSH port.

    Every stdout/stderr chunk is published as an ``AgentEvent(type='ssh')``
    on ``agent.vm.ssh.<context>`` in production order. The guest exit code is
    returned as data; only "could not even try" conditions raise.
    """

    def __init__(
        self,
        bus: EventBus,
        ssh: SSHConfig,
        lookup: Callable[[str], Instance],
    ):
        self.bus = bus
        self.ssh = ssh
        self.lookup = lookup

    def running_instance(self, name: str) -> Instance:
        inst = self.lookup(name)
        if not inst.running:
            raise NotRunning(name)
        return inst

    def _emit(self, context: str, chunk: bytes) -> None:
        self.bus.publish(
            agent_topic('vm', 'ssh', context),
            AgentEvent(type='ssh', context=context, data=chunk),
        )

    def exec(
        self, name: str, command: str, *, stdin: Optional[IO[bytes]] = None
    ) -> int:
        inst = self.running_instance(name)
        if inst.ssh_port is None:
            raise QueryError(f'vm {name} has no ssh port forward rule')
        cmd = guest_ssh_cmd(self.ssh, inst.ssh_port, command)
        log.debug('ssh {}: {}', name, command)
        code = stream_cmd(cmd, self._emit, stdin=stdin)
        log.debug('ssh {} exited with {}', name, code)
        return code
