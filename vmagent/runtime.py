"""Runtime helpers for constructing SSH command arguments into the guest."""

from __future__ import annotations

from .config import SSHConfig
from .errors import MissingSSHIdentityError

GUEST_HOST = '127.0.0.1'
GUEST_SSH_PORT = 22


def require_ssh_identity(identity: str) -> str:
    ident = (identity or '').strip()
    if not ident:
        raise MissingSSHIdentityError(
            'ssh.identity_file is empty; set it in the vmagent config.'
        )
    return ident


def ssh_base_args(
    ident: str,
    *,
    strict_host_key_checking: str = 'accept-new',
    connect_timeout: int | None = None,
    batch_mode: bool = False,
    user_known_hosts_file: str | None = None,
) -> list[str]:
    args: list[str] = []
    if batch_mode:
        args.extend(['-o', 'BatchMode=yes'])
    if connect_timeout is not None:
        args.extend(['-o', f'ConnectTimeout={connect_timeout}'])
    args.extend(['-o', f'StrictHostKeyChecking={strict_host_key_checking}'])
    if user_known_hosts_file:
        args.extend(['-o', f'UserKnownHostsFile={user_known_hosts_file}'])
    args.extend(['-i', ident])
    return args


def guest_ssh_cmd(ssh: SSHConfig, port: int, command: str) -> list[str]:
    """Build the ssh argv reaching the guest through its forwarded port."""
    ident = require_ssh_identity(ssh.identity_file)
    # The forwarded port is reused across reinstalls, so host keys churn.
    return [
        'ssh',
        *ssh_base_args(
            ident,
            batch_mode=True,
            connect_timeout=ssh.connect_timeout,
            strict_host_key_checking='no',
            user_known_hosts_file='/dev/null',
        ),
        '-o',
        'LogLevel=quiet',
        '-p',
        str(port),
        f'{ssh.user}@{GUEST_HOST}',
        command,
    ]
