from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .config import Settings
from .errors import LabelNotFoundError, StageExecutionError
from .paths import append_suffix
from .tools import Runner, distmat_invocation, run_checked, run_invocation

logger = logging.getLogger(__name__)

_HEADER = re.compile(r"^(?:\s+\d+)+\s*$")
_DATA_ROW = re.compile(r"\d\s*\t\s*\S")
_CELL = re.compile(r" *\t *(\S*)")


@dataclass
class DistanceMatrix:
    """EMBOSS ``distmat`` output.

    ``rows[0]`` holds the column indices; data row ``i`` holds its cells at
    positions ``1..n`` and its label last, so the row index of a label is also
    the column index of that sequence.
    """

    rows: list[list[str]]
    lookup: dict[str, int]
    source: Path | None = None

    @classmethod
    def parse(cls, text: str, source: Path | None = None) -> "DistanceMatrix":
        rows: list[list[str]] = []
        lookup: dict[str, int] = {}
        lines = text.splitlines()
        i = 0
        while i < len(lines):
            line = lines[i]
            i += 1
            if not _HEADER.match(line):
                continue
            rows = [["columns"] + re.findall(r"\d+", line)]
            lookup = {}
            while i < len(lines) and _DATA_ROW.search(lines[i]):
                cells = _CELL.findall("\t" + lines[i])
                rows.append(cells)
                lookup[cells[-1]] = len(rows) - 1
                i += 1
        return cls(rows=rows, lookup=lookup, source=source)

    @classmethod
    def read(cls, path: str | Path) -> "DistanceMatrix":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Distance matrix not found: {p}")
        return cls.parse(p.read_text(encoding="utf-8"), source=p)

    @property
    def labels(self) -> list[str]:
        return list(self.lookup)

    def _index(self, label: str) -> int:
        try:
            return self.lookup[label]
        except KeyError:
            raise LabelNotFoundError(label, self.source) from None

    def _cell(self, row: int, column: int) -> str:
        cells = self.rows[row]
        # the last cell is the label
        if column >= len(cells) - 1:
            return ""
        return cells[column]

    def distance(self, label_a: str, label_b: str) -> float:
        row = self._index(label_a)
        column = self._index(label_b)
        raw = self._cell(row, column) or self._cell(column, row)
        try:
            return float(raw)
        except ValueError:
            raise ValueError(f"Non-numeric distance '{raw}' between {label_a} and {label_b}") from None


def read_distance(path: str | Path, label_a: str, label_b: str) -> float:
    return DistanceMatrix.read(path).distance(label_a, label_b)


def distance_matrix_path(alignment: str | Path) -> Path:
    return append_suffix(Path(alignment), ".dist")


def compute_distance_matrix(
    alignment: str | Path,
    settings: Settings,
    *,
    runner: Runner = run_invocation,
) -> Path:
    """Run distmat for ``alignment`` unless its ``.dist`` file already exists."""
    output = distance_matrix_path(alignment)
    if output.exists():
        logger.debug("Reusing distance matrix %s", output)
        return output
    run_checked(runner, distmat_invocation(settings, Path(alignment), output), "distmat")
    if not output.exists():
        raise StageExecutionError("distmat", f"no distance matrix written for {alignment}")
    return output
