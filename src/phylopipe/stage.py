from __future__ import annotations

import logging
import os
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .errors import (
    EmptyOutputError,
    MissingInputError,
    MissingOutputError,
    PipelineError,
    StageExecutionError,
)

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"


@dataclass
class RunState:
    """Mutable per-run state shared by every stage of one pipeline run."""

    auto_resume: bool = False
    executed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExpectedOutput:
    path: Path
    required: bool = True

    @classmethod
    def coerce(cls, value: "ExpectedOutput | str | Path") -> "ExpectedOutput":
        if isinstance(value, ExpectedOutput):
            return value
        return cls(Path(value))


@dataclass
class StageResult:
    stage: str
    outputs: list[Path]
    status: StageStatus = StageStatus.OK
    warnings: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.status is StageStatus.SKIPPED

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "outputs": [str(p) for p in self.outputs],
            "warnings": list(self.warnings),
        }


def _non_empty(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def check_outputs(
    stage: str,
    expected: Sequence[ExpectedOutput],
    *,
    logs: Sequence[Path] = (),
) -> list[str]:
    """Raise for bad required outputs, return warnings for bad optional ones."""
    warnings: list[str] = []
    for item in expected:
        if not item.path.exists():
            if item.required:
                raise MissingOutputError(stage, item.path, logs=logs)
            warnings.append(f"{stage}: optional output is missing: {item.path}")
        elif item.path.stat().st_size == 0:
            if item.required:
                raise EmptyOutputError(stage, item.path, logs=logs)
            warnings.append(f"{stage}: optional output is empty: {item.path}")
    return warnings


RunFn = Callable[[], object]


class StageExecutor:
    def __init__(self, state: RunState) -> None:
        self.state = state

    def _prepare(
        self,
        stage: str,
        inputs: Iterable[str | Path],
        expected: Sequence[ExpectedOutput],
        resumable: bool,
    ) -> StageResult:
        for raw in inputs:
            path = Path(raw)
            if not path.is_file() or not os.access(path, os.R_OK):
                raise MissingInputError(stage, path)

        required = [item for item in expected if item.required]
        if self.state.auto_resume and resumable and all(_non_empty(item.path) for item in required):
            logger.info("Skip %s: outputs already present", stage)
            self.state.skipped.append(stage)
            return StageResult(stage=stage, outputs=[item.path for item in expected], status=StageStatus.SKIPPED)

        # Everything downstream of an executed stage is stale.
        self.state.auto_resume = False
        self.state.executed.append(stage)

        warnings: list[str] = []
        for item in expected:
            if item.path.exists():
                message = f"{stage}: existing output file will be replaced: {item.path}"
                logger.warning(message)
                warnings.append(message)
                item.path.unlink()
        return StageResult(stage=stage, outputs=[item.path for item in expected], warnings=warnings)

    def _run(
        self,
        result: StageResult,
        expected: Sequence[ExpectedOutput],
        run_fn: RunFn,
        logs: Sequence[Path],
    ) -> StageResult:
        stage = result.stage
        logger.info("%s: started", stage)
        try:
            returned = run_fn()
        except PipelineError:
            logger.error("%s: failed", stage)
            raise
        except OSError as exc:
            logger.error("%s: failed", stage)
            raise StageExecutionError(stage, str(exc), logs=logs) from exc
        if isinstance(returned, (list, tuple)):
            result.warnings.extend(str(w) for w in returned)
        result.warnings.extend(check_outputs(stage, expected, logs=logs))
        for message in result.warnings:
            logger.debug("%s warning: %s", stage, message)
        logger.info("%s: OK", stage)
        return result

    def execute(
        self,
        stage: str,
        inputs: Iterable[str | Path],
        expected_outputs: Iterable[ExpectedOutput | str | Path],
        run_fn: RunFn,
        *,
        logs: Iterable[str | Path] = (),
        resumable: bool = True,
    ) -> StageResult:
        """Run one stage with the skip/replace/validate contract.

        ``run_fn`` may return a list of warning strings; anything else it
        returns is ignored.
        """
        expected = [ExpectedOutput.coerce(item) for item in expected_outputs]
        log_paths = [Path(p) for p in logs]
        prepared = self._prepare(stage, inputs, expected, resumable)
        if prepared.skipped:
            return prepared
        return self._run(prepared, expected, run_fn, log_paths)

    def submit(
        self,
        pool: Executor,
        stage: str,
        inputs: Iterable[str | Path],
        expected_outputs: Iterable[ExpectedOutput | str | Path],
        run_fn: RunFn,
        *,
        logs: Iterable[str | Path] = (),
        resumable: bool = True,
    ) -> Future[StageResult]:
        """Background variant: the skip decision is taken now, the tool runs in ``pool``."""
        expected = [ExpectedOutput.coerce(item) for item in expected_outputs]
        log_paths = [Path(p) for p in logs]
        prepared = self._prepare(stage, inputs, expected, resumable)
        if prepared.skipped:
            done: Future[StageResult] = Future()
            done.set_result(prepared)
            return done
        return pool.submit(self._run, prepared, expected, run_fn, log_paths)
