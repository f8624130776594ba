"""Project-specific exception types."""

from __future__ import annotations


class AgentVMError(RuntimeError):
    """Base error for domain-level vmagent failures."""


class CommandFailed(AgentVMError):
    """An external command exited non-zero and was not otherwise classified."""

    def __init__(self, cmd, result):
        self.cmd = cmd
        self.result = result
        super().__init__(
            f'Command failed (code={result.code}): {cmd}\n{result.stderr}'.strip()
        )

    @property
    def code(self) -> int:
        return self.result.code

    @property
    def stderr(self) -> str:
        return self.result.stderr


class NotFound(CommandFailed):
    """The hypervisor reported that the target object does not exist."""


class ResourceBusy(CommandFailed):
    """A machine, medium or network is locked or in use (usually transient)."""


class AlreadyInstalled(AgentVMError):
    """Raised by init when an instance with the same name is registered."""


class NotRunning(AgentVMError):
    """Raised when a guest operation targets a stopped or absent instance."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'vm is not running: {name}')


class QueryError(AgentVMError):
    """The hypervisor answered an info query with a malformed response."""


class MissingSSHIdentityError(AgentVMError):
    """Raised when SSH identity configuration is required but missing."""
