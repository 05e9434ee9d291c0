"""
Saga — multi-step operations across the blob store and the metadata store.

There is no transaction spanning both stores, so each step may register a
named compensation. When a later step fails, compensations of the completed
steps run in reverse order, best-effort:

    saga = Saga("ingest", file_id="abc")
    path = saga.run_step("persist_blob", write_blob,
                         compensate=remove_blob, compensation_name="delete_blob")
    saga.run_step("upsert_document", write_metadata)

Outcome of a failed step:
    - every completed step undone  -> original error re-raised
    - something left behind        -> PartialFailureError, logged with the
                                      completed/failed/compensated steps for
                                      manual reconciliation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from docledger.engine.errors import PartialFailureError
from docledger.engine.logging import log, log_partial_failure

logger = logging.getLogger("docledger.documents.saga")


@dataclass
class _CompletedStep:
    name: str
    result: Any
    compensate: Optional[Callable[[Any], None]]
    compensation_name: Optional[str]


class Saga:

    def __init__(self, operation: str, file_id: Optional[str] = None):
        self.operation = operation
        self.file_id = file_id
        self._completed: List[_CompletedStep] = []

    @property
    def completed_steps(self) -> List[str]:
        return [s.name for s in self._completed]

    def run_step(
        self,
        name: str,
        action: Callable[[], Any],
        compensate: Optional[Callable[[Any], None]] = None,
        compensation_name: Optional[str] = None,
    ) -> Any:
        """
        Run `action`. On success remember how to undo it; `compensate`
        receives the action's result.
        """
        try:
            result = action()
        except Exception as e:
            self._fail(name, e)
            raise
        self._completed.append(
            _CompletedStep(name, result, compensate, compensation_name or (f"undo_{name}" if compensate else None))
        )
        return result

    def _fail(self, failed_step: str, error: Exception) -> None:
        if not self._completed:
            return

        compensated: List[str] = []
        failures: List[str] = []
        for step in reversed(self._completed):
            if step.compensate is None:
                failures.append(f"{step.name}: no compensation")
                continue
            try:
                step.compensate(step.result)
                compensated.append(step.compensation_name)
            except Exception as comp_error:
                logger.error(
                    f"Compensation '{step.compensation_name}' failed for {self.operation} "
                    f"(file_id={self.file_id}): {comp_error}"
                )
                failures.append(f"{step.compensation_name}: {comp_error}")

        if not failures:
            logger.warning(
                f"{self.operation} failed at '{failed_step}' for file_id={self.file_id}; "
                f"rolled back {compensated}"
            )
            return

        completed = self.completed_steps
        logger.error(
            f"PARTIAL FAILURE in {self.operation} (file_id={self.file_id}): "
            f"completed={completed} failed={failed_step} compensated={compensated} "
            f"left_behind={failures} error={error}"
        )
        log(log_partial_failure(
            operation=self.operation,
            file_id=self.file_id,
            completed_steps=completed,
            failed_step=failed_step,
            error=str(error),
            compensated=compensated,
            compensation_failures=failures,
        ))
        raise PartialFailureError(
            f"{self.operation} failed at '{failed_step}' after {completed}; manual reconciliation required",
            file_id=self.file_id,
            operation=self.operation,
            completed_steps=completed,
            failed_step=failed_step,
            compensated=compensated,
            compensation_failures=failures,
            cause=repr(error),
        ) from error
