# backend/frostdesk/services/saga.py
"""
Ordered (action, compensation) runner for multi-system booking operations.

Database work and calendar/payment calls cannot share one transaction, so the
booking service expresses confirm, modify and cancel as a list of steps. When
a step raises, every completed step is undone in reverse order and the
original exception is re-raised. A compensation that itself fails is logged
and counted, then attached to the original exception as a note; it never
replaces the original failure.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, List, Optional

from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    # Receives the results of the steps that already ran, keyed by step name
    action: Callable[[Dict[str, Any]], Any]
    # Receives this step's own result
    compensation: Optional[Callable[[Any], None]] = None


@dataclass
class CompletedStep:
    step: SagaStep
    result: Any


class BookingSaga:
    """Runs steps in order and compensates completed ones on failure."""

    def __init__(
        self,
        name: str,
        *,
        booking_id: str,
        on_failure: Optional[Callable[[], None]] = None,
    ):
        self.name = name
        self.booking_id = booking_id
        self._on_failure = on_failure
        self._steps: List[SagaStep] = []
        self.completed: List[CompletedStep] = []
        self.compensation_errors: List[tuple[str, Exception]] = []

    def add_step(
        self,
        name: str,
        action: Callable[[Dict[str, Any]], Any],
        compensation: Optional[Callable[[Any], None]] = None,
    ) -> "BookingSaga":
        self._steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    def run(self) -> Dict[str, Any]:
        """Execute all steps; returns each step's result keyed by step name."""
        results: Dict[str, Any] = {}
        for step in self._steps:
            logger.info(
                "Saga step started",
                extra={"saga": self.name, "step": step.name, "booking_id": self.booking_id},
            )
            try:
                result = step.action(dict(results))
            except Exception as exc:
                logger.warning(
                    "Saga step failed",
                    extra={
                        "saga": self.name,
                        "step": step.name,
                        "booking_id": self.booking_id,
                        "error": str(exc),
                    },
                )
                self._abort(exc)
                raise
            self.completed.append(CompletedStep(step=step, result=result))
            results[step.name] = result
        return results

    def _abort(self, exc: Exception) -> None:
        if self._on_failure is not None:
            try:
                self._on_failure()
            except Exception as hook_exc:
                logger.error(
                    "Saga failure hook raised",
                    extra={"saga": self.name, "booking_id": self.booking_id},
                    exc_info=True,
                )
                exc.add_note(f"{self.name}: failure hook raised {hook_exc!r}")

        for completed in reversed(self.completed):
            step = completed.step
            if step.compensation is None:
                continue
            try:
                step.compensation(completed.result)
            except Exception as comp_exc:
                self.compensation_errors.append((step.name, comp_exc))
                logger.error(
                    "Saga compensation failed",
                    extra={
                        "saga": self.name,
                        "step": step.name,
                        "booking_id": self.booking_id,
                        "step_result": repr(completed.result),
                        "error": str(comp_exc),
                    },
                    exc_info=True,
                )
                _record_compensation(self.name, step.name, "error")
                exc.add_note(f"{self.name}: compensation for {step.name} failed: {comp_exc!r}")
            else:
                logger.info(
                    "Saga compensation completed",
                    extra={"saga": self.name, "step": step.name, "booking_id": self.booking_id},
                )
                _record_compensation(self.name, step.name, "success")


def _record_compensation(saga: str, step: str, outcome: str) -> None:
    try:
        prometheus_metrics.record_compensation(saga, step, outcome)
    except Exception:
        logger.debug("Failed to record compensation metric", exc_info=True)
