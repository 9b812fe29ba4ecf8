from __future__ import annotations

from pathlib import Path
from typing import Iterable


def _join_paths(paths: Iterable[str | Path]) -> str:
    return ", ".join(str(p) for p in paths)


class PipelineError(Exception):
    """Base class for every failure raised by phylopipe."""


class MissingInputError(PipelineError):
    def __init__(self, stage: str, path: str | Path) -> None:
        self.stage = stage
        self.path = Path(path)
        super().__init__(f"{stage}: input file is missing or unreadable: {self.path}")


class StageExecutionError(PipelineError):
    def __init__(
        self,
        stage: str,
        reason: str,
        *,
        returncode: int | None = None,
        logs: Iterable[str | Path] = (),
    ) -> None:
        self.stage = stage
        self.reason = reason
        self.returncode = returncode
        self.logs = tuple(Path(p) for p in logs)
        message = f"{stage}: {reason}"
        if returncode is not None:
            message += f" (exit status {returncode})"
        if self.logs:
            message += f"; see logs ({_join_paths(self.logs)}) for errors"
        super().__init__(message)


class _OutputError(PipelineError):
    problem = "is invalid"

    def __init__(self, stage: str, path: str | Path, *, logs: Iterable[str | Path] = ()) -> None:
        self.stage = stage
        self.path = Path(path)
        self.logs = tuple(Path(p) for p in logs)
        message = f"{stage}: output file {self.problem}: {self.path}"
        if self.logs:
            message += f"; see logs ({_join_paths(self.logs)})"
        super().__init__(message)


class MissingOutputError(_OutputError):
    problem = "is missing"


class EmptyOutputError(_OutputError):
    problem = "is empty"


class LabelNotFoundError(PipelineError, KeyError):
    def __init__(self, label: str, path: str | Path | None = None) -> None:
        self.label = label
        self.path = Path(path) if path is not None else None
        where = f" in {self.path}" if self.path is not None else ""
        super().__init__(f"label not found{where}: {label}")

    def __str__(self) -> str:
        return str(self.args[0])


class InvalidConfigurationError(PipelineError, ValueError):
    pass


class NotificationError(PipelineError):
    pass


class IdentifierCodecError(PipelineError):
    pass
