from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations
from pathlib import Path
from typing import Iterable, Sequence


GAP_CHARS = frozenset("-.")


@dataclass(frozen=True)
class FastaRecord:
    name: str
    sequence: str
    description: str = ""

    @property
    def header(self) -> str:
        return f"{self.name} {self.description}".strip()


@dataclass(frozen=True)
class Alignment:
    names: tuple[str, ...]
    sequences: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.names:
            raise ValueError("Alignment has no sequences.")
        if len(self.names) != len(self.sequences):
            raise ValueError("Alignment names and sequences are misaligned.")
        lengths = {len(seq) for seq in self.sequences}
        if len(lengths) != 1:
            raise ValueError("All sequences in an alignment must have equal length.")

    @property
    def length(self) -> int:
        return len(self.sequences[0])

    @property
    def n_sequences(self) -> int:
        return len(self.sequences)

    def column(self, index: int) -> str:
        return "".join(seq[index] for seq in self.sequences)

    def subset(self, names: Iterable[str]) -> "Alignment":
        keep = set(names)
        pairs = [(n, s) for n, s in zip(self.names, self.sequences) if n in keep]
        return Alignment(names=tuple(n for n, _ in pairs), sequences=tuple(s for _, s in pairs))

    def percentage_identity(self) -> float:
        """Mean pairwise identity (0-100) over columns where both residues are present."""
        if self.n_sequences < 2:
            return 100.0
        scores: list[float] = []
        for a, b in combinations(self.sequences, 2):
            compared = 0
            identical = 0
            for x, y in zip(a, b):
                if x in GAP_CHARS or y in GAP_CHARS:
                    continue
                compared += 1
                if x == y:
                    identical += 1
            if compared:
                scores.append(identical / compared)
        if not scores:
            return 0.0
        return 100.0 * sum(scores) / len(scores)


def _normalize_sequence(text: str) -> str:
    return "".join(text.split()).upper()


def read_fasta_records(path: str | Path) -> list[FastaRecord]:
    """Read FASTA records in file order; the name is the first header token."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"FASTA file not found: {path}")

    records: list[FastaRecord] = []
    header: tuple[str, str] | None = None
    chunks: list[str] = []

    def _flush() -> None:
        if header is not None:
            records.append(
                FastaRecord(name=header[0], sequence=_normalize_sequence("".join(chunks)), description=header[1])
            )

    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line:
                continue
            if line.startswith(">"):
                _flush()
                chunks = []
                parts = line[1:].strip().split(None, 1)
                if not parts:
                    raise ValueError(f"Missing FASTA header name at line {line_no} in {path}")
                header = (parts[0], parts[1] if len(parts) > 1 else "")
                continue
            if header is None:
                raise ValueError(f"FASTA sequence without header at line {line_no} in {path}")
            chunks.append(line)
    _flush()

    if not records:
        raise ValueError(f"No FASTA records found in {path}")
    return records


def read_alignment(path: str | Path) -> Alignment:
    """Read a FASTA file as a strict rectangular alignment."""
    records = read_fasta_records(path)
    return Alignment(
        names=tuple(r.name for r in records),
        sequences=tuple(r.sequence for r in records),
    )


def count_sequences(path: str | Path) -> int:
    count = 0
    with Path(path).open("r", encoding="utf-8") as handle:
        for line in handle:
            if line.startswith(">"):
                count += 1
    return count


def write_fasta_records(path: str | Path, records: Sequence[FastaRecord], width: int = 60) -> None:
    with Path(path).open("w", encoding="utf-8") as handle:
        for record in records:
            handle.write(f">{record.header}\n")
            seq = record.sequence
            for i in range(0, len(seq), width):
                handle.write(seq[i : i + width] + "\n")


def write_fasta(path: str | Path, alignment: Alignment, width: int = 60) -> None:
    write_fasta_records(
        path,
        [FastaRecord(name=n, sequence=s) for n, s in zip(alignment.names, alignment.sequences)],
        width=width,
    )


def write_phylip(path: str | Path, alignment: Alignment) -> None:
    """Sequential PHYLIP; encoded names are exactly ten characters wide."""
    with Path(path).open("w", encoding="utf-8") as handle:
        handle.write(f" {alignment.n_sequences} {alignment.length}\n")
        for name, seq in zip(alignment.names, alignment.sequences):
            handle.write(f"{name.ljust(10)} {seq}\n")


def is_non_empty(path: str | Path) -> bool:
    p = Path(path)
    return p.is_file() and p.stat().st_size > 0
