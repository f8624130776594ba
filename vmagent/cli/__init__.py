"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import AgentModalCLI, main

__all__ = ['AgentModalCLI', 'main']
