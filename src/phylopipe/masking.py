from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .config import Settings
from .errors import EmptyOutputError, MissingOutputError, StageExecutionError
from .idcodec import HTML_NAME_PATTERN, IdentifierDictionary, truncate_html_name
from .io import GAP_CHARS, Alignment, read_alignment, write_fasta, write_phylip
from .paths import ArtifactPaths
from .tools import Runner, TrimalPass, run_checked, trimal_invocation

logger = logging.getLogger(__name__)

STAGE = "masking"
MIN_IDENTITY_PERCENT = 40.0
MIN_LENGTH_RATIO = 0.3


@dataclass
class FilteringSummary:
    initial_count: int
    kept: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)

    @property
    def ratio(self) -> float:
        if self.initial_count == 0:
            return 0.0
        return len(self.removed) / self.initial_count


def trimal_passes(paths: ArtifactPaths, alignment: Path) -> list[TrimalPass]:
    return [
        # gap-heavy columns
        TrimalPass(
            alignment, paths.mask(1), ("-colnumbering", "-gt", "0.5"),
            html=paths.masking_html(1), report=paths.bsp(1),
        ),
        # consistency masking
        TrimalPass(
            paths.mask(1), paths.mask(2), ("-colnumbering", "-cons", "50", "-w", "1"),
            html=paths.masking_html(2), report=paths.bsp(2),
        ),
        # sequence coverage filtering
        TrimalPass(
            paths.mask(2), paths.mask(3), ("-resoverlap", "0.1", "-seqoverlap", "10"),
            html=paths.filtered_html,
        ),
    ]


def _require_alignment(path: Path, logs: list[Path]) -> None:
    if not path.exists():
        raise MissingOutputError(STAGE, path, logs=logs)
    if path.stat().st_size == 0:
        raise EmptyOutputError(STAGE, path, logs=logs)


def select_kept_sequences(original: Alignment, filtered: Alignment) -> tuple[list[str], FilteringSummary]:
    """Keep filtered sequences holding residues over more than half the alignment."""
    summary = FilteringSummary(initial_count=original.n_sequences)
    known = set(original.names)
    half_length = filtered.length / 2
    kept: list[str] = []
    for name, seq in zip(filtered.names, filtered.sequences):
        if name not in known:
            summary.unknown.append(name)
            kept.append(name)
            continue
        gaps = sum(1 for c in seq if c in GAP_CHARS)
        if len(seq) > 1 and gaps < half_length:
            kept.append(name)
            summary.kept.append(name)
    kept_set = set(summary.kept)
    summary.removed = [name for name in original.names if name not in kept_set]
    return kept, summary


def run_masking(settings: Settings, paths: ArtifactPaths, alignment: Path, runner: Runner) -> list[str]:
    """Mask and filter ``alignment``; returns warnings for the stage result."""
    logs = [paths.trimal_log]
    passes = trimal_passes(paths, alignment)
    for index, step in enumerate(passes):
        run_checked(
            runner,
            trimal_invocation(settings, step, paths.trimal_log, append_log=index > 0),
            STAGE,
            logs=logs,
        )
        if index > 0:
            _require_alignment(step.output, logs)

    original = read_alignment(alignment)
    filtered = read_alignment(paths.mask(3))
    kept, summary = select_kept_sequences(original, filtered)

    warnings: list[str] = []
    for name in summary.unknown:
        warnings.append(f"sequence '{name}' of {paths.mask(3)} not found in {alignment}")
    if not kept:
        raise StageExecutionError(STAGE, f"all sequences of {alignment} have been filtered", logs=logs)
    if summary.ratio > settings.filtering_threshold:
        warnings.append(
            f"filtering threshold ({settings.filtering_threshold}) reached: "
            f"{100 * summary.ratio:.1f}% of the sequences have been dropped"
        )
    for message in warnings:
        logger.warning(message)

    curated = filtered.subset(kept)
    write_phylip(paths.phylip, curated)
    write_fasta(paths.filtered_fasta, curated)
    paths.filtered_seq.write_text("\n".join(summary.removed), encoding="utf-8")
    return warnings


def carry_alignment_forward(alignment: Path, paths: ArtifactPaths) -> None:
    """Use the unmasked alignment as the curated one."""
    aligned = read_alignment(alignment)
    write_phylip(paths.phylip, aligned)
    write_fasta(paths.filtered_fasta, aligned)


def decode_masking_reports(paths: ArtifactPaths, dictionary: IdentifierDictionary) -> None:
    if paths.filtered_seq.is_file() and paths.filtered_seq.stat().st_size > 0:
        dictionary.decode_in_place(paths.filtered_seq)
    for html in (paths.masking_html(1), paths.masking_html(2), paths.filtered_html):
        if html.is_file() and html.stat().st_size > 0:
            dictionary.decode_in_place(html, pattern=HTML_NAME_PATTERN, replace=truncate_html_name)


def assess_alignment_quality(original: Path, masked: Path, report: Path | None = None) -> list[str]:
    """Informational comparison of the masked alignment with the raw one."""
    raw = read_alignment(original)
    curated = read_alignment(masked)
    warnings: list[str] = []
    identity = curated.percentage_identity()
    if identity <= MIN_IDENTITY_PERCENT:
        warnings.append(f"percentage identity after masking is low: {identity:.1f}")
    ratio = curated.length / raw.length
    if ratio <= MIN_LENGTH_RATIO:
        warnings.append(f"ratio of masked to unmasked length is low: {ratio:.3f}")
    if report is not None:
        with report.open("a", encoding="utf-8") as handle:
            for message in warnings or ["Quality alignment: OK"]:
                handle.write(message + "\n")
    return warnings
