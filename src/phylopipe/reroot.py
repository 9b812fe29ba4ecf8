from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .analysis import DEFAULT_TREE_SUFFIX, find_tree_files
from .config import Settings
from .errors import PipelineError
from .tools import Runner, nw_reroot_invocation, run_checked, run_invocation

logger = logging.getLogger(__name__)

DEFAULT_OUTGROUP_PREFIX = "Musba"


@dataclass
class RerootSummary:
    written: list[Path] = field(default_factory=list)
    rerooted: int = 0
    skipped: list[tuple[Path, str]] = field(default_factory=list)

    def render(self) -> str:
        lines = [f"rerooted trees: {self.rerooted} in {len(self.written)} files"]
        lines.append(f"skipped trees: {len(self.skipped)}")
        for path, reason in self.skipped:
            lines.append(f"  {path}: {reason}")
        return "\n".join(lines)


def outgroup_leaves(tree: str, prefix: str = DEFAULT_OUTGROUP_PREFIX) -> list[str]:
    return re.findall(rf"({re.escape(prefix)}\w+):", tree)


def reroot_directory(
    input_dir: str | Path,
    output_dir: str | Path,
    *,
    settings: Settings | None = None,
    outgroup_prefix: str = DEFAULT_OUTGROUP_PREFIX,
    suffix: str = DEFAULT_TREE_SUFFIX,
    runner: Runner = run_invocation,
) -> RerootSummary:
    """Reroot every tree on its single outgroup leaf; other trees are skipped."""
    settings = settings or Settings()
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    summary = RerootSummary()

    for tree_file in find_tree_files(input_dir, suffix):
        stem = tree_file.name[: -len(suffix)] if tree_file.name.endswith(suffix) else tree_file.stem
        rooted: list[str] = []
        with tree_file.open("r", encoding="utf-8") as handle:
            for raw in handle:
                tree = raw.strip()
                if not tree:
                    continue
                outgroups = outgroup_leaves(tree, outgroup_prefix)
                if len(outgroups) != 1:
                    reason = f"{len(outgroups)} '{outgroup_prefix}' leaves"
                    logger.warning("Skipped tree in %s: %s", tree_file, reason)
                    summary.skipped.append((tree_file, reason))
                    continue
                try:
                    outcome = run_checked(
                        runner, nw_reroot_invocation(settings, tree, outgroups[0]), "reroot"
                    )
                except PipelineError as exc:
                    logger.warning("Skipped tree in %s: %s", tree_file, exc)
                    summary.skipped.append((tree_file, str(exc)))
                    continue
                rooted.append(outcome.stdout.strip())
                summary.rerooted += 1
        if rooted:
            target = out_dir / f"{stem}.rooted.nwk"
            target.write_text("\n".join(rooted) + "\n", encoding="utf-8")
            summary.written.append(target)
    return summary
