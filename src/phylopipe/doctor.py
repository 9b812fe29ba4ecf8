from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import DEFAULT_TOOL_COMMANDS, Settings, tool_env_key
from .notify import validate_email
from .pipeline import MIN_RIO_BOOTSTRAPS


@dataclass
class DoctorCheck:
    name: str
    status: str  # PASS | WARN | FAIL
    message: str
    fix: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status, "message": self.message, "fix": self.fix}


@dataclass
class DoctorReport:
    checks: list[DoctorCheck]

    @property
    def has_failures(self) -> bool:
        return any(check.status == "FAIL" for check in self.checks)

    def render(self) -> str:
        lines = []
        for check in self.checks:
            line = f"[{check.status}] {check.name}: {check.message}"
            lines.append(line)
            if check.fix:
                lines.append(f"  fix: {check.fix}")
        summary = "FAIL" if self.has_failures else "PASS"
        lines.append(f"\nDoctor summary: {summary}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "FAIL" if self.has_failures else "PASS",
            "checks": [check.to_dict() for check in self.checks],
        }


# Only needed by some runs; a missing one is a warning.
OPTIONAL_TOOLS = {"fftns", "retree", "sdi", "sdi_r", "phyloxml_converter", "dorio", "distmat", "nw_reroot", "sendmail"}


def _check_tool(settings: Settings, tool: str) -> DoctorCheck:
    argv = settings.command(tool)
    missing: list[str] = []
    if shutil.which(argv[0]) is None:
        missing.append(argv[0])
    for arg in argv[1:]:
        if arg.lower().endswith(".jar") and not Path(arg).exists():
            missing.append(arg)
    if not missing:
        return DoctorCheck(f"tool:{tool}", "PASS", " ".join(argv))
    status = "WARN" if tool in OPTIONAL_TOOLS else "FAIL"
    return DoctorCheck(
        f"tool:{tool}",
        status,
        f"not found: {', '.join(missing)}",
        fix=f"Install it or set {tool_env_key(tool)} / the 'tools.{tool}' setting.",
    )


def run_doctor(settings: Settings, *, email: str | None = None) -> DoctorReport:
    checks: list[DoctorCheck] = [_check_tool(settings, tool) for tool in DEFAULT_TOOL_COMMANDS]

    species_tree = settings.species_tree
    if species_tree is None:
        checks.append(
            DoctorCheck(
                "species_tree",
                "FAIL",
                "not configured; rooting and orthology need a reference species tree",
                fix="Set 'species_tree' in the settings JSON.",
            )
        )
    elif not species_tree.is_file() or species_tree.stat().st_size == 0:
        checks.append(DoctorCheck("species_tree", "FAIL", f"missing or empty: {species_tree}"))
    else:
        checks.append(DoctorCheck("species_tree", "PASS", str(species_tree)))

    if settings.bootstrap_count < MIN_RIO_BOOTSTRAPS:
        checks.append(
            DoctorCheck(
                "bootstrap_count",
                "WARN",
                f"{settings.bootstrap_count} replicates; RIO orthology needs at least {MIN_RIO_BOOTSTRAPS}",
            )
        )
    else:
        checks.append(DoctorCheck("bootstrap_count", "PASS", str(settings.bootstrap_count)))

    root = settings.output_root
    probe = root if root.exists() else root.parent
    if probe.exists() and os.access(probe, os.W_OK):
        checks.append(DoctorCheck("output_root", "PASS", str(root)))
    else:
        checks.append(DoctorCheck("output_root", "FAIL", f"not writable: {root}"))

    if email is not None:
        if validate_email(email):
            checks.append(DoctorCheck("email", "PASS", email))
        else:
            checks.append(DoctorCheck("email", "FAIL", f"invalid e-mail address: {email}"))

    return DoctorReport(checks=checks)
