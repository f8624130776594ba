"""Ordered step runner that undoes completed steps when a later one fails."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

log = logger


@dataclass
class Step:
    name: str
    do: Callable[[], Any]
    undo: Optional[Callable[[Any], None]] = None


@dataclass
class Workflow:
    """
    Run steps strictly in order.

    Each step's return value is stored in ``results`` under its name and is
    handed to its ``undo`` callback. When a step raises, the undo callbacks
    of the already completed steps run in reverse order; their own failures
    are logged and dropped so the original error reaches the caller.
    """

    label: str
    steps: list[Step] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)

    def step(self, name: str, do, undo=None) -> 'Workflow':
        self.steps.append(Step(name, do, undo))
        return self

    def run(self) -> dict[str, Any]:
        done: list[Step] = []
        for step in self.steps:
            log.debug('{}: step {}', self.label, step.name)
            try:
                self.results[step.name] = step.do()
            except Exception as ex:
                log.error('{}: step {} failed: {}', self.label, step.name, ex)
                self.rollback(done)
                raise
            done.append(step)
        return self.results

    def rollback(self, done: list[Step]) -> None:
        for step in reversed(done):
            if step.undo is None:
                continue
            log.info('{}: rolling back {}', self.label, step.name)
            try:
                step.undo(self.results.get(step.name))
            except Exception as ex:
                log.warning(
                    '{}: rollback of {} failed: {}', self.label, step.name, ex
                )
