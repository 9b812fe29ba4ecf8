import subprocess
from pathlib import Path

import pytest

from phylopipe.config import Settings
from phylopipe.errors import StageExecutionError
from phylopipe.tools import (
    AlignmentTier,
    CommandOutcome,
    ToolInvocation,
    dorio_invocation,
    mafft_invocation,
    phyml_invocation,
    rap_invocation,
    run_checked,
    run_invocation,
    sdi_invocation,
    select_alignment_tier,
)


@pytest.mark.parametrize(
    ("count", "tier"),
    [
        (0, AlignmentTier.DEFAULT),
        (1, AlignmentTier.DEFAULT),
        (2, AlignmentTier.DEFAULT),
        (3, AlignmentTier.ACCURATE),
        (200, AlignmentTier.ACCURATE),
        (201, AlignmentTier.MODERATE),
        (500, AlignmentTier.MODERATE),
        (501, AlignmentTier.FAST),
        (10000, AlignmentTier.FAST),
        (10001, AlignmentTier.DEFAULT),
    ],
)
def test_alignment_tier_boundaries(count: int, tier: AlignmentTier) -> None:
    assert select_alignment_tier(count) is tier


def test_mafft_arguments_per_tier(tmp_path: Path) -> None:
    settings = Settings(mafft_binaries="/opt/mafft/libexec")
    src, out, log = tmp_path / "in", tmp_path / "out", tmp_path / "log"
    accurate = mafft_invocation(settings, AlignmentTier.ACCURATE, src, out, log)
    assert accurate.argv == ["mafft", "--ep", "0", "--maxiterate", "1000", "--genafpair", str(src)]
    assert accurate.env == {"MAFFT_BINARIES": "/opt/mafft/libexec"}
    assert mafft_invocation(settings, AlignmentTier.FAST, src, out, log).argv[0] == "fftns"
    assert "--auto" in mafft_invocation(settings, AlignmentTier.DEFAULT, src, out, log).argv


def test_tool_command_override_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PHYLOPIPE_PHYML_CMD", "/usr/local/bin/phyml-mpi --quiet")
    invocation = phyml_invocation(Settings(bootstrap_count=0), tmp_path / "a.phy", tmp_path / "l", tmp_path / "e")
    assert invocation.argv[:2] == ["/usr/local/bin/phyml-mpi", "--quiet"]
    assert invocation.argv[invocation.argv.index("-b") + 1] == "0"


def test_phyml_models_follow_sequence_type(tmp_path: Path) -> None:
    protein = phyml_invocation(Settings(), tmp_path / "a.phy", tmp_path / "l", tmp_path / "e").argv
    nucleic = phyml_invocation(Settings(sequence_type="nucleic"), tmp_path / "a.phy", tmp_path / "l", tmp_path / "e").argv
    assert "LG" in protein and "aa" in protein
    assert "HKY85" in nucleic and "nt" in nucleic


def test_rap_gene_threshold_depends_on_bootstraps(tmp_path: Path) -> None:
    species = tmp_path / "species.nwk"
    outputs = {k: tmp_path / k for k in ("gene_tree", "reconciled_tree", "stats", "phyloxml")}
    with_boot = rap_invocation(Settings(species_tree=species), tmp_path / "g", outputs, tmp_path / "l", tmp_path / "e")
    without = rap_invocation(
        Settings(species_tree=species, bootstrap_count=0), tmp_path / "g", outputs, tmp_path / "l", tmp_path / "e"
    )
    assert with_boot.argv[with_boot.argv.index("-gt") + 1] == "80"
    assert without.argv[without.argv.index("-gt") + 1] == "0.95"


def test_sdi_variants(tmp_path: Path) -> None:
    settings = Settings(species_tree=tmp_path / "species.xml")
    xml, out = tmp_path / "f_tree.xml", tmp_path / "f_tree.sdi.xml"
    minimized = sdi_invocation(settings, xml, out, tmp_path, tmp_path / "l", tmp_path / "e", minimize_duplications=True)
    plain = sdi_invocation(settings, xml, out, tmp_path, tmp_path / "l", tmp_path / "e", minimize_duplications=False)
    assert minimized.tool == "sdi_r" and "-ml" in minimized.argv
    assert plain.tool == "sdi" and plain.argv[-1] == str(out.resolve())
    assert any(a.endswith("forester.jar") and Path(a).is_absolute() for a in plain.argv)


def test_dorio_arguments(tmp_path: Path) -> None:
    settings = Settings(species_tree=tmp_path / "species.xml")
    invocation = dorio_invocation(
        settings,
        bootstrap_trees=tmp_path / "trees.sdi.xml",
        query="AT1G01010",
        output=tmp_path / "rio_AT1G01010.txt",
        rooted_tree=tmp_path / "tree.sdi.xml",
        distance_matrix=tmp_path / "dist",
        log=tmp_path / "rio.log",
        error_log=tmp_path / "rio_err.log",
    )
    assert invocation.argv[1] == f"M={tmp_path / 'trees.sdi.xml'}"
    assert "N=AT1G01010" in invocation.argv
    assert invocation.argv[-3:] == ["P=13", "L=30", "p"]
    assert invocation.append_stdout and invocation.append_stderr


def test_run_checked_translates_failures() -> None:
    invocation = ToolInvocation("phyml", ["phyml", "-i", "x"])
    log = Path("x_phyml.log")

    def _fail(inv: ToolInvocation) -> CommandOutcome:
        return CommandOutcome(2, "", "", 0.0, inv.command)

    with pytest.raises(StageExecutionError) as excinfo:
        run_checked(_fail, invocation, "phylogeny", logs=[log])
    assert excinfo.value.returncode == 2
    assert "x_phyml.log" in str(excinfo.value)

    def _missing(inv: ToolInvocation) -> CommandOutcome:
        raise FileNotFoundError(inv.argv[0])

    with pytest.raises(StageExecutionError, match="not found"):
        run_checked(_missing, invocation, "phylogeny")

    def _slow(inv: ToolInvocation) -> CommandOutcome:
        raise subprocess.TimeoutExpired(inv.argv, 1)

    with pytest.raises(StageExecutionError, match="timed out"):
        run_checked(_slow, invocation, "phylogeny")


def test_run_invocation_redirects_to_files(tmp_path: Path) -> None:
    out = tmp_path / "out.txt"
    invocation = ToolInvocation("cat", ["cat"], stdin_text="hello\n", stdout=out)
    outcome = run_invocation(invocation)
    assert outcome.returncode == 0
    assert out.read_text(encoding="utf-8") == "hello\n"
    assert ">" in invocation.command
