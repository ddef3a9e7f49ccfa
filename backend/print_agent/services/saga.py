"""Sequential multi-step operations with per-step compensation.

A saga runs its steps in order. When a step fails (and asks for rollback),
the compensations of every step that already completed run in reverse order.
Compensations are best-effort: failures are logged and reported in the
outcome, never raised.

Used by the fleet reconciler (CUPS queue + printer row) and by file ingestion
(file row + canonical copy + original removal).
"""
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from print_agent.result import Err, ErrorKind, Result, err_from_exception

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Result]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Action] = None
    # False = failing here leaves earlier steps applied (accepted inconsistency)
    rollback_on_failure: bool = True


@dataclass
class SagaOutcome:
    ok: bool
    values: dict[str, Any] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[Err] = None
    compensated: list[str] = field(default_factory=list)
    compensation_errors: list[str] = field(default_factory=list)


class Saga:
    def __init__(self, name: str, steps: list[SagaStep] | None = None):
        self.name = name
        self.steps: list[SagaStep] = list(steps or [])

    def add(
        self,
        name: str,
        action: Action,
        compensation: Optional[Action] = None,
        *,
        rollback_on_failure: bool = True,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation, rollback_on_failure))
        return self

    async def run(self) -> SagaOutcome:
        outcome = SagaOutcome(ok=True)
        completed: list[SagaStep] = []

        for step in self.steps:
            try:
                result = await step.action()
            except Exception as e:
                logger.error(f"Saga {self.name}: step '{step.name}' raised: {e}")
                logger.debug(traceback.format_exc())
                result = err_from_exception(ErrorKind.INTERNAL, e)

            if result.ok:
                outcome.values[step.name] = result.value
                completed.append(step)
                continue

            outcome.ok = False
            outcome.failed_step = step.name
            outcome.error = result
            logger.warning(f"Saga {self.name}: step '{step.name}' failed ({result})")

            if step.rollback_on_failure:
                await self._compensate(completed, outcome)
            break

        return outcome

    async def _compensate(self, completed: list[SagaStep], outcome: SagaOutcome) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                result = await step.compensation()
            except Exception as e:
                result = err_from_exception(ErrorKind.INTERNAL, e)
            if result.ok:
                outcome.compensated.append(step.name)
                logger.info(f"Saga {self.name}: compensated '{step.name}'")
            else:
                outcome.compensation_errors.append(f"{step.name}: {result.detail}")
                logger.error(f"Saga {self.name}: compensation for '{step.name}' failed ({result})")
