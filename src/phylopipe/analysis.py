from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pandas as pd

from .config import Settings
from .distmat import compute_distance_matrix, read_distance
from .errors import PipelineError
from .stats import (
    difference_of_means,
    normal_two_sided_p,
    permutation_null_distribution,
    rank_p_value,
    summarize_null,
    z_score,
)
from .topology import TYPE1, TYPE2, TopologyClassifier, TopologyTally

logger = logging.getLogger(__name__)

DEFAULT_TREE_SUFFIX = ".nwk.out"
DEFAULT_LABELS = ("SEQ0000002", "SEQ0000003")
DISTANCE_CEILING = 10.0

_CDS_STEM = re.compile(r"(\w+_cds)")

DistanceSource = Callable[[Path], float]


def find_tree_files(root: str | Path, suffix: str = DEFAULT_TREE_SUFFIX) -> list[Path]:
    base = Path(root)
    if not base.is_dir():
        raise FileNotFoundError(f"Directory does not exist: {base}")
    return sorted(p for p in base.rglob(f"*{suffix}") if p.is_file())


def alignment_for_tree(tree_file: Path) -> Path | None:
    """``<dir>/<gene>_cds.mafft`` for a tree file named after a CDS."""
    match = _CDS_STEM.search(tree_file.name)
    if not match:
        return None
    return tree_file.parent / f"{match.group(1)}.mafft"


def distmat_source(
    settings: Settings,
    label_a: str = DEFAULT_LABELS[0],
    label_b: str = DEFAULT_LABELS[1],
) -> DistanceSource:
    def _distance(alignment: Path) -> float:
        matrix = compute_distance_matrix(alignment, settings)
        return read_distance(matrix, label_a, label_b)

    return _distance


@dataclass
class TopologyAnalysisReport:
    tree_files: list[Path]
    tally: TopologyTally
    class_a: str = TYPE1
    class_b: str = TYPE2
    samples: dict[str, list[float]] = field(default_factory=dict)
    sources: dict[str, list[Path]] = field(default_factory=dict)
    removed: list[tuple[Path, str]] = field(default_factory=list)
    iterations: int = 0
    d2: float | None = None
    null_values: np.ndarray | None = None
    null_mean: float | None = None
    null_sd: float | None = None
    z: float | None = None
    p_value: float | None = None
    p_value_rank: float | None = None

    @property
    def mean_a(self) -> float | None:
        values = self.samples.get(self.class_a) or []
        return float(np.mean(values)) if values else None

    @property
    def mean_b(self) -> float | None:
        values = self.samples.get(self.class_b) or []
        return float(np.mean(values)) if values else None

    def topology_table(self) -> pd.DataFrame:
        classifier = TopologyClassifier()
        rows = [
            {"topology": topo, "count": count, "class": classifier.classify_normalized(topo) or ""}
            for topo, count in self.tally.most_common()
        ]
        return pd.DataFrame(rows, columns=["topology", "count", "class"])

    def distance_table(self) -> pd.DataFrame:
        rows: list[dict[str, Any]] = []
        for name in (self.class_a, self.class_b):
            for source, value in zip(self.sources.get(name, []), self.samples.get(name, [])):
                rows.append({"class": name, "alignment": str(source), "distance": value})
        return pd.DataFrame(rows, columns=["class", "alignment", "distance"])

    def write_tables(self, prefix: str | Path) -> tuple[Path, Path]:
        base = Path(prefix)
        base.parent.mkdir(parents=True, exist_ok=True)
        topo_path = base.with_name(base.name + ".topologies.tsv")
        dist_path = base.with_name(base.name + ".distances.tsv")
        self.topology_table().to_csv(topo_path, sep="\t", index=False)
        self.distance_table().to_csv(dist_path, sep="\t", index=False)
        return topo_path, dist_path

    def to_dict(self) -> dict[str, Any]:
        return {
            "tree_files": len(self.tree_files),
            "trees": self.tally.total,
            "topologies": dict(self.tally.most_common()),
            "class_counts": {
                self.class_a: self.tally.class_count(self.class_a),
                self.class_b: self.tally.class_count(self.class_b),
            },
            "distances": {k: list(v) for k, v in self.samples.items()},
            "removed": len(self.removed),
            "iterations": self.iterations,
            "d2": self.d2,
            "mean_a": self.mean_a,
            "mean_b": self.mean_b,
            "null_mean": self.null_mean,
            "null_sd": self.null_sd,
            "z_score": self.z,
            "p_value_normal": self.p_value,
            "p_value_rank": self.p_value_rank,
        }

    def render(self) -> str:
        n_a = len(self.samples.get(self.class_a, []))
        n_b = len(self.samples.get(self.class_b, []))
        lines = [f"total number of processed tree files: {len(self.tree_files)} ({self.tally.total} trees)"]
        lines.append(
            f"trees with topology {self.class_a}: {self.tally.class_count(self.class_a)}\t"
            f"{self.class_b}: {self.tally.class_count(self.class_b)}"
        )
        for topo, count in self.tally.most_common():
            lines.append(f"  {count}\t{topo}")
        lines.append(f"distance values {self.class_a}={n_a}\t{self.class_b}={n_b}")
        lines.append(f"removed values (non numerical or >= {DISTANCE_CEILING:g}): {len(self.removed)}")
        if self.d2 is None:
            lines.append("D2 not computed: one of the distance samples is empty")
            return "\n".join(lines)
        lines.append(f"D2 = {self.d2:.6g} ({self.mean_a:.6g} - {self.mean_b:.6g})")
        z_text = f"{self.z:.6g}" if self.z is not None else "undefined"
        lines.append(f"mean = {self.null_mean:.6g}\tstdev = {self.null_sd:.6g}\tzscore = {z_text}")
        if self.p_value is not None:
            lines.append(f"two-sided normal p-value = {self.p_value:.6g}")
        lines.append(f"two-sided permutation p-value = {self.p_value_rank:.6g}")
        return "\n".join(lines)


def run_topology_analysis(
    root_dir: str | Path,
    *,
    suffix: str = DEFAULT_TREE_SUFFIX,
    iterations: int = 1000,
    seed: int | None = None,
    ceiling: float = DISTANCE_CEILING,
    distance_source: DistanceSource | None = None,
    settings: Settings | None = None,
    classifier: TopologyClassifier | None = None,
) -> TopologyAnalysisReport:
    """Classify every tree under ``root_dir`` and test the distance difference between classes."""
    tree_files = find_tree_files(root_dir, suffix)
    if not tree_files:
        raise ValueError(f"No tree file ending with '{suffix}' found under {root_dir}")
    classifier = classifier or TopologyClassifier()
    distance_source = distance_source or distmat_source(settings or Settings())
    class_a, class_b = TYPE1, TYPE2

    tally = TopologyTally()
    report = TopologyAnalysisReport(tree_files=tree_files, tally=tally, class_a=class_a, class_b=class_b)
    report.samples = {class_a: [], class_b: []}
    report.sources = {class_a: [], class_b: []}

    logger.info("Processing %d tree files", len(tree_files))
    for tree_file in tree_files:
        alignment = alignment_for_tree(tree_file)
        with tree_file.open("r", encoding="utf-8") as handle:
            for raw in handle:
                text = raw.strip()
                if not text:
                    continue
                normalized, topology_class = classifier.classify(text)
                tally.add(normalized, topology_class, str(tree_file))
                if topology_class not in report.samples:
                    continue
                if alignment is None:
                    report.removed.append((tree_file, "no alignment name in tree file name"))
                    continue
                try:
                    value = distance_source(alignment)
                except (PipelineError, ValueError, OSError) as exc:
                    logger.warning("No distance for %s: %s", alignment, exc)
                    report.removed.append((alignment, str(exc)))
                    continue
                if not math.isfinite(value) or value >= ceiling:
                    report.removed.append((alignment, f"{value}"))
                    continue
                report.samples[topology_class].append(value)
                report.sources[topology_class].append(alignment)

    sample_a = report.samples[class_a]
    sample_b = report.samples[class_b]
    if not sample_a or not sample_b:
        logger.warning("Cannot compute D2: %s has %d values, %s has %d", class_a, len(sample_a), class_b, len(sample_b))
        return report

    report.iterations = int(iterations)
    report.d2 = difference_of_means(sample_a, sample_b)
    report.null_values = permutation_null_distribution(sample_a, sample_b, iterations, seed=seed)
    report.null_mean, report.null_sd = summarize_null(report.null_values)
    report.z = z_score(report.d2, report.null_mean, report.null_sd)
    report.p_value = normal_two_sided_p(report.z)
    report.p_value_rank = rank_p_value(report.d2, report.null_values)
    return report
