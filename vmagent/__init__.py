"""Lifecycle management for a local VirtualBox development VM."""

from __future__ import annotations

__version__ = '0.1.0'
