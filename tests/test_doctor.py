from pathlib import Path

import pytest

from phylopipe.config import Settings
from phylopipe.doctor import run_doctor


def _by_name(report, name: str):
    return next(c for c in report.checks if c.name == name)


def test_doctor_flags_missing_species_tree_and_tools(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    report = run_doctor(Settings(output_root=tmp_path / "out"))

    assert report.has_failures
    assert _by_name(report, "species_tree").status == "FAIL"
    assert _by_name(report, "tool:mafft").status == "FAIL"
    assert _by_name(report, "tool:nw_reroot").status == "WARN"
    assert _by_name(report, "output_root").status == "PASS"
    assert "Doctor summary: FAIL" in report.render()


def test_doctor_passes_with_tools_on_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name in ("mafft", "fftns", "hmmbuild", "trimal", "phyml", "retree", "dorio", "distmat", "nw_reroot", "sendmail", "java"):
        exe = bin_dir / name
        exe.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        exe.chmod(0o755)
    jar_dir = tmp_path / "jars"
    jar_dir.mkdir()
    (jar_dir / "RapGreen.jar").write_bytes(b"PK")
    (jar_dir / "forester.jar").write_bytes(b"PK")
    monkeypatch.setenv("PATH", str(bin_dir))
    monkeypatch.chdir(jar_dir)
    species = tmp_path / "species.nwk"
    species.write_text("(ARATH,ORYSA);\n", encoding="utf-8")

    report = run_doctor(
        Settings(output_root=tmp_path / "out", species_tree=species, bootstrap_count=2),
        email="curator@example.org",
    )

    assert not report.has_failures
    assert _by_name(report, "bootstrap_count").status == "WARN"
    assert _by_name(report, "email").status == "PASS"
    assert report.to_dict()["status"] == "PASS"


def test_doctor_rejects_bad_email(tmp_path: Path) -> None:
    report = run_doctor(Settings(output_root=tmp_path), email="nobody")
    assert _by_name(report, "email").status == "FAIL"
