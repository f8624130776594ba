"""Guest property access (the VM metadata channel)."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from ..vbox import VBoxManage

log = logger

# Static guest network settings are read by the guest from beneath this path.
NET_PROPERTY_BASE = '/VirtualBox/D2D/eth0'
NO_VALUE = 'No value set!'
VALUE_PREFIX = 'Value: '
TRANSIENT = 'TRANSIENT'


class GuestPropertyStore:
    def __init__(self, vbox: VBoxManage):
        self.vbox = vbox

    def get(self, name: str, key: str) -> dict[str, str]:
        """
        Read ``key`` from instance ``name``.

        Returns ``{'Value': value}`` when set (the value may be an empty
        string) and ``{}`` when the property was never set.
        """
        res = self.vbox.run('guestproperty', 'get', name, key)
        out = res.stdout
        # The tool terminates its single answer with one newline.
        if out.endswith('\n'):
            out = out[:-1]
        if not out or out.startswith(NO_VALUE):
            return {}
        if out.startswith(VALUE_PREFIX):
            return {'Value': out[len(VALUE_PREFIX):]}
        if out == VALUE_PREFIX.rstrip():
            return {'Value': ''}
        log.warning('Unexpected guestproperty output for {}: {!r}', key, out)
        return {}

    def set(
        self, name: str, key: str, value: str, flags: Optional[str] = None
    ) -> None:
        args = ['guestproperty', 'set', name, key, value]
        if flags:
            args += ['--flags', flags]
        self.vbox.run(*args)
        log.debug('guestproperty {}:{}={!r} flags={}', name, key, value, flags)

    def set_network(self, name: str, address: str, netmask: str, network: str):
        """Publish the static guest network settings under NET_PROPERTY_BASE."""
        self.set(name, f'{NET_PROPERTY_BASE}/address', address)
        self.set(name, f'{NET_PROPERTY_BASE}/netmask', netmask)
        self.set(name, f'{NET_PROPERTY_BASE}/network', network)
