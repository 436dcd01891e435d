"""Sequential phase runner.

A pipeline is an ordered list of ``Phase`` objects, each an ordered list of
named ``Step`` callables.  ``PhaseRunner.run()`` executes them strictly in
order and stops at the first failure.  The failing step's name is attached
to the exception (``SyncError.operation``) before it is re-raised, and
anything that is not already a ``SyncError`` is wrapped in
``UnexpectedError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import SyncError, UnexpectedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    """A named, independently invokable unit of work."""

    name: str
    action: Callable[[], Any]


@dataclass(frozen=True)
class Phase:
    name: str
    steps: Sequence[Step] = field(default_factory=tuple)


class PhaseRunner:
    """Run phases in order, tagging and re-raising the first failure.

    Args:
        label: Prefix for log lines (``"download"``, ``"upload"``).
    """

    def __init__(self, label: str) -> None:
        self.label = label

    def run(self, phases: Sequence[Phase]) -> list[Any]:
        """Execute every step of every phase.

        Returns:
            The step return values, in execution order.

        Raises:
            SyncError: The first failure, tagged with the step name.
        """
        results: list[Any] = []
        for phase in phases:
            logger.debug("%s phase %s: starting", self.label, phase.name)
            for step in phase.steps:
                results.append(self.run_step(step))
        return results

    def run_step(self, step: Step) -> Any:
        """Run a single step with the same tagging as ``run()``."""
        logger.debug("%s step %s: starting", self.label, step.name)
        try:
            return step.action()
        except SyncError as exc:
            exc.with_operation(step.name)
            logger.error("%s step failed: %s", self.label, exc)
            raise
        except Exception as exc:
            wrapped = UnexpectedError(
                f"{type(exc).__name__}: {exc}", operation=step.name
            )
            logger.error("%s step failed: %s", self.label, wrapped)
            raise wrapped from exc
