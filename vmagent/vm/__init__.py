"""VM lifecycle controller and guest access components."""

from __future__ import annotations

from .channel import GuestChannel
from .lifecycle import VM
from .properties import NET_PROPERTY_BASE, TRANSIENT, GuestPropertyStore
from .transfer import GuestTransfer

__all__ = [
    'GuestChannel',
    'GuestPropertyStore',
    'GuestTransfer',
    'NET_PROPERTY_BASE',
    'TRANSIENT',
    'VM',
]
