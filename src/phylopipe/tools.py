from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from .config import Settings
from .errors import StageExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandOutcome:
    returncode: int
    stdout: str
    stderr: str
    runtime_sec: float
    command: str


@dataclass
class ToolInvocation:
    """One external program call with its redirections.

    ``stdout``/``stderr`` are file paths; ``None`` captures the stream into
    the returned ``CommandOutcome`` instead.
    """

    tool: str
    argv: list[str]
    stdout: Path | None = None
    stderr: Path | None = None
    append_stdout: bool = False
    append_stderr: bool = False
    stdin: Path | None = None
    stdin_text: str | None = None
    cwd: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    timeout_sec: float | None = None

    @property
    def command(self) -> str:
        text = " ".join(shlex.quote(a) for a in self.argv)
        if self.stdin is not None:
            text += f" <{self.stdin}"
        if self.stdout is not None:
            text += f" {'>>' if self.append_stdout else '>'}{self.stdout}"
        if self.stderr is not None:
            text += f" 2{'>>' if self.append_stderr else '>'}{self.stderr}"
        return text

    @property
    def logs(self) -> list[Path]:
        return [p for p in (self.stdout, self.stderr) if p is not None and p.suffix == ".log"]


Runner = Callable[[ToolInvocation], CommandOutcome]


def run_invocation(invocation: ToolInvocation) -> CommandOutcome:
    logger.debug("COMMAND: %s", invocation.command)
    env = None
    if invocation.env:
        env = dict(os.environ)
        env.update(invocation.env)
    started = time.perf_counter()
    with ExitStack() as stack:
        stdin = None
        if invocation.stdin is not None:
            stdin = stack.enter_context(invocation.stdin.open("r", encoding="utf-8"))
        stdout = subprocess.PIPE
        if invocation.stdout is not None:
            stdout = stack.enter_context(
                invocation.stdout.open("a" if invocation.append_stdout else "w", encoding="utf-8")
            )
        stderr = subprocess.PIPE
        if invocation.stderr is not None:
            if invocation.stderr == invocation.stdout:
                stderr = subprocess.STDOUT
            else:
                stderr = stack.enter_context(
                    invocation.stderr.open("a" if invocation.append_stderr else "w", encoding="utf-8")
                )
        proc = subprocess.run(
            invocation.argv,
            cwd=str(invocation.cwd) if invocation.cwd is not None else None,
            stdin=stdin,
            input=invocation.stdin_text if stdin is None else None,
            stdout=stdout,
            stderr=stderr,
            text=True,
            env=env,
            timeout=invocation.timeout_sec,
        )
    runtime = time.perf_counter() - started
    return CommandOutcome(
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        runtime_sec=float(runtime),
        command=invocation.command,
    )


def run_checked(
    runner: Runner,
    invocation: ToolInvocation,
    stage: str,
    *,
    logs: Sequence[Path] = (),
) -> CommandOutcome:
    """Run and translate a non-zero exit into ``StageExecutionError``."""
    try:
        outcome = runner(invocation)
    except FileNotFoundError as exc:
        raise StageExecutionError(
            stage, f"{invocation.tool} executable not found: {invocation.argv[0]}", logs=logs
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise StageExecutionError(stage, f"{invocation.tool} timed out", logs=logs) from exc
    if outcome.returncode != 0:
        raise StageExecutionError(
            stage,
            f"{invocation.tool} failed",
            returncode=outcome.returncode,
            logs=list(logs) or invocation.logs,
        )
    return outcome


class AlignmentTier(str, Enum):
    ACCURATE = "accurate"
    MODERATE = "moderate"
    FAST = "fast"
    DEFAULT = "default"


def select_alignment_tier(sequence_count: int) -> AlignmentTier:
    n = int(sequence_count)
    if 2 < n <= 200:
        return AlignmentTier.ACCURATE
    if 200 < n <= 500:
        return AlignmentTier.MODERATE
    if 500 < n <= 10000:
        return AlignmentTier.FAST
    return AlignmentTier.DEFAULT


def _absolute_jars(argv: list[str]) -> list[str]:
    # Tools launched from another working directory need absolute jar paths.
    return [str(Path(a).resolve()) if a.lower().endswith(".jar") else a for a in argv]


def mafft_invocation(
    settings: Settings,
    tier: AlignmentTier,
    source: Path,
    output: Path,
    log: Path,
) -> ToolInvocation:
    if tier is AlignmentTier.ACCURATE:
        argv = settings.command("mafft") + ["--ep", "0", "--maxiterate", "1000", "--genafpair"]
    elif tier is AlignmentTier.MODERATE:
        argv = settings.command("mafft") + ["--maxiterate", "1"]
    elif tier is AlignmentTier.FAST:
        argv = settings.command("fftns") + ["--ep", "0"]
    else:
        argv = settings.command("mafft") + ["--auto"]
    env = {"MAFFT_BINARIES": settings.mafft_binaries} if settings.mafft_binaries else {}
    return ToolInvocation("mafft", argv + [str(source)], stdout=output, stderr=log, env=env)


def hmmbuild_invocation(settings: Settings, alignment: Path, output: Path, log: Path) -> ToolInvocation:
    alphabet = "--amino" if settings.is_protein else "--dna"
    argv = settings.command("hmmbuild") + [alphabet, str(output), str(alignment)]
    return ToolInvocation("hmmbuild", argv, stdout=log, stderr=log)


@dataclass(frozen=True)
class TrimalPass:
    source: Path
    output: Path
    options: tuple[str, ...]
    html: Path | None = None
    report: Path | None = None


def trimal_invocation(settings: Settings, step: TrimalPass, log: Path, *, append_log: bool) -> ToolInvocation:
    argv = settings.command("trimal") + ["-in", str(step.source), "-out", str(step.output)]
    argv += list(step.options)
    if step.html is not None:
        argv += ["-htmlout", str(step.html)]
    stdout = step.report if step.report is not None else log
    return ToolInvocation(
        "trimal",
        argv,
        stdout=stdout,
        stderr=log,
        append_stdout=step.report is None,
        append_stderr=append_log,
    )


def phyml_invocation(
    settings: Settings,
    phylip: Path,
    log: Path,
    error_log: Path,
) -> ToolInvocation:
    bootstrap = str(settings.bootstrap_count)
    if settings.is_protein:
        model = ["-d", "aa", "-n", "1", "-s", "SPR", "-b", bootstrap, "-m", "LG", "-v", "e"]
    else:
        model = ["-d", "nt", "-n", "1", "-s", "SPR", "-b", bootstrap, "-m", "HKY85"]
    argv = settings.command("phyml") + ["-i", str(phylip)] + model + ["-c", "4", "-a", "e", "-o", "tlr"]
    return ToolInvocation("phyml", argv, stdout=log, stderr=error_log)


def retree_script(tree_name: str) -> str:
    """Keystrokes for PHYLIP retree: read tree, midpoint root, write, quit."""
    return f"Y\n{tree_name}\nM\nW\nR\nQ\nQ\n"


def retree_invocation(settings: Settings, script: Path, cwd: Path, log: Path) -> ToolInvocation:
    return ToolInvocation("retree", settings.command("retree"), stdin=script, stdout=log, stderr=log, cwd=cwd)


def rap_invocation(
    settings: Settings,
    gene_tree: Path,
    outputs: dict[str, Path],
    log: Path,
    error_log: Path,
) -> ToolInvocation:
    gene_threshold = "80" if settings.bootstrap_count > 0 else "0.95"
    argv = settings.command("rap") + [
        "-g", str(gene_tree),
        "-s", str(settings.require_species_tree()),
        "-og", str(outputs["gene_tree"]),
        "-or", str(outputs["reconciled_tree"]),
        "-gt", gene_threshold,
        "-st", "10.0",
        "-pt", "0.00",
        "-stats", str(outputs["stats"]),
        "-phyloxml", str(outputs["phyloxml"]),
    ]
    return ToolInvocation("rap", argv, stdout=log, stderr=error_log)


def phyloxml_converter_invocation(settings: Settings, nhx: Path, output: Path, log: Path) -> ToolInvocation:
    argv = _absolute_jars(settings.command("phyloxml_converter")) + ["-f=gn", "-i", str(nhx), str(output)]
    return ToolInvocation("phyloxml_converter", argv, stdout=log, stderr=log)


def sdi_invocation(
    settings: Settings,
    phyloxml: Path,
    output: Path,
    cwd: Path,
    log: Path,
    error_log: Path,
    *,
    minimize_duplications: bool,
) -> ToolInvocation:
    species = str(settings.require_species_tree().resolve())
    if minimize_duplications:
        # sdi_r names its result after the input and writes it into cwd.
        argv = _absolute_jars(settings.command("sdi_r")) + ["-ml", "-mh", str(phyloxml.resolve()), species]
        tool = "sdi_r"
    else:
        argv = _absolute_jars(settings.command("sdi")) + ["-b", str(phyloxml.resolve()), species, str(output.resolve())]
        tool = "sdi"
    return ToolInvocation(
        tool, argv, stdout=log, stderr=error_log, append_stdout=True, append_stderr=True, cwd=cwd
    )


def dorio_invocation(
    settings: Settings,
    *,
    bootstrap_trees: Path,
    query: str,
    output: Path,
    rooted_tree: Path,
    distance_matrix: Path,
    log: Path,
    error_log: Path,
) -> ToolInvocation:
    argv = settings.command("dorio") + [
        f"M={bootstrap_trees}",
        f"N={query}",
        f"S={settings.require_species_tree()}",
        f"O={output}",
        f"T={rooted_tree}",
        f"D={distance_matrix}",
        "P=13",
        "L=30",
        "p",
    ]
    return ToolInvocation(
        "dorio", argv, stdout=log, stderr=error_log, append_stdout=True, append_stderr=True
    )


def distmat_invocation(settings: Settings, alignment: Path, output: Path) -> ToolInvocation:
    argv = settings.command("distmat") + ["-sequence", str(alignment), "-nucmethod", "4", "-outfile", str(output)]
    return ToolInvocation("distmat", argv)


def nw_reroot_invocation(settings: Settings, tree: str, outgroup: str) -> ToolInvocation:
    return ToolInvocation("nw_reroot", settings.command("nw_reroot") + ["-", outgroup], stdin_text=tree + "\n")


def sendmail_invocation(settings: Settings, message: str) -> ToolInvocation:
    return ToolInvocation("sendmail", settings.command("sendmail") + ["-t"], stdin_text=message)
