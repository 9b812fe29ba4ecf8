from __future__ import annotations

import os
import tempfile
from pathlib import Path


def _use_writable_cache() -> None:
    # Batch nodes often have a read-only home; matplotlib needs a config dir.
    cache = Path(tempfile.gettempdir()) / "phylopipe_cache"
    (cache / "matplotlib").mkdir(parents=True, exist_ok=True)
    os.environ.setdefault("XDG_CACHE_HOME", str(cache))
    os.environ.setdefault("MPLCONFIGDIR", str(cache / "matplotlib"))


_use_writable_cache()

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from .analysis import TopologyAnalysisReport


def plot_null_distribution(report: TopologyAnalysisReport, out_pdf: str | Path) -> Path:
    """Permutation null of D2 with the observed value, plus the two distance samples."""
    out = Path(out_pdf)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(1, 2, figsize=(12, 4.5))

    null = report.null_values if report.null_values is not None else np.array([], dtype=float)
    if null.size:
        axes[0].hist(null, bins=40, alpha=0.7, color="#4C78A8", label="Permuted D2")
    if report.d2 is not None:
        axes[0].axvline(report.d2, color="red", linestyle="--", linewidth=1.5, label="Observed D2")
    axes[0].set_title("D2 vs permutation null")
    axes[0].set_xlabel("D2")
    axes[0].legend()

    for name in (report.class_a, report.class_b):
        values = report.samples.get(name, [])
        if values:
            axes[1].hist(values, bins=20, alpha=0.5, label=f"{name} (n={len(values)})")
    axes[1].set_title("Genetic distance by topology")
    axes[1].set_xlabel("Distance (substitutions/site)")
    axes[1].legend()

    z_text = f"{report.z:.4g}" if report.z is not None else "undefined"
    d2_text = f"{report.d2:.4g}" if report.d2 is not None else "n/a"
    fig.suptitle(f"Topology distance test | D2={d2_text} | z={z_text} | iterations={report.iterations}")
    fig.tight_layout()
    fig.savefig(out)
    plt.close(fig)
    return out
