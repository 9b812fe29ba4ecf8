import re
import shutil
from pathlib import Path

import pytest

from phylopipe.config import MaskingFailurePolicy, PipelineConfig, RootingEngine, Settings
from phylopipe.errors import MissingInputError, StageExecutionError
from phylopipe.paths import ArtifactPaths
from phylopipe.pipeline import Pipeline
from phylopipe.steps import Step
from phylopipe.tools import CommandOutcome, ToolInvocation

RECORDS = {
    "AT1G01010_ARATH": "MKTAYIAKQRQISFVKSHFSRQ",
    "Os01g0100100_ORYSA": "MKTAYIAKQRQISFVKAHFSRQ",
    "Ma01_g00010.1_MUSAC": "MKSAYIAKQRQLSFVKSHFARQ",
}


def _write_alignment(path: Path, records: dict[str, str]) -> Path:
    lines: list[str] = []
    for name, seq in records.items():
        lines.append(f">{name}")
        lines.append(seq)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _arg_after(argv: list[str], flag: str) -> Path:
    return Path(argv[argv.index(flag) + 1])


def _placeholders(phylip: Path) -> list[str]:
    return [line.split()[0] for line in phylip.read_text(encoding="utf-8").splitlines()[1:] if line.strip()]


class FakeRunner:
    """Stands in for the external tools by writing the files they would write."""

    def __init__(self, fail: set[str] | None = None) -> None:
        self.calls: list[ToolInvocation] = []
        self.fail = fail or set()

    def tools(self) -> list[str]:
        return [c.tool for c in self.calls]

    def __call__(self, invocation: ToolInvocation) -> CommandOutcome:
        self.calls.append(invocation)
        if invocation.tool in self.fail:
            return CommandOutcome(1, "", "boom", 0.0, invocation.command)
        handler = getattr(self, f"_{invocation.tool}", None)
        if handler is not None:
            handler(invocation)
        return CommandOutcome(0, "", "", 0.0, invocation.command)

    def _mafft(self, inv: ToolInvocation) -> None:
        shutil.copyfile(inv.argv[-1], inv.stdout)

    def _hmmbuild(self, inv: ToolInvocation) -> None:
        Path(inv.argv[-2]).write_text("HMMER3/f\n", encoding="utf-8")

    def _trimal(self, inv: ToolInvocation) -> None:
        shutil.copyfile(_arg_after(inv.argv, "-in"), _arg_after(inv.argv, "-out"))
        if "-htmlout" in inv.argv:
            _arg_after(inv.argv, "-htmlout").write_text(
                "<span>SEQ0000001</span>          MKTAY\n", encoding="utf-8"
            )

    def _phyml(self, inv: ToolInvocation) -> None:
        phylip = _arg_after(inv.argv, "-i")
        a, b, c = _placeholders(phylip)
        tree = f"(({a}:0.1,{b}:0.2)90:0.05,{c}:0.3);\n"
        Path(f"{phylip}_phyml_tree").write_text(tree, encoding="utf-8")
        Path(f"{phylip}_phyml_boot_trees").write_text(tree * 3, encoding="utf-8")
        Path(f"{phylip}_phyml_dist.txt").write_text(
            f"3\n{a} 0.0 0.1 0.2\n{b} 0.1 0.0 0.3\n{c} 0.2 0.3 0.0\n\n3\n{a} 0.0\n", encoding="utf-8"
        )

    def _retree(self, inv: ToolInvocation) -> None:
        raw = inv.stdin.read_text(encoding="utf-8").splitlines()[1]
        tree = (inv.cwd / raw).read_text(encoding="utf-8")
        (inv.cwd / "outtree").write_text(tree, encoding="utf-8")

    def _rap(self, inv: ToolInvocation) -> None:
        tree = _arg_after(inv.argv, "-g").read_text(encoding="utf-8")
        for flag in ("-og", "-or", "-stats", "-phyloxml"):
            _arg_after(inv.argv, flag).write_text(tree, encoding="utf-8")

    def _phyloxml_converter(self, inv: ToolInvocation) -> None:
        Path(inv.argv[-1]).write_text(
            "<phyloxml><taxonomy><scientific_name>ARATH</scientific_name></taxonomy></phyloxml>\n",
            encoding="utf-8",
        )

    def _sdi(self, inv: ToolInvocation) -> None:
        Path(inv.argv[-1]).write_text("<phyloxml rooted='true'/>\n", encoding="utf-8")

    def _sdi_r(self, inv: ToolInvocation) -> None:
        source = Path(inv.argv[-2])
        target = inv.cwd / (source.name[: -len(".xml")] + ".sdi.xml")
        target.write_text("<phyloxml rooted='true'/>\n", encoding="utf-8")

    def _dorio(self, inv: ToolInvocation) -> None:
        output = next(a[2:] for a in inv.argv if a.startswith("O="))
        Path(output).write_text("orthologs\n", encoding="utf-8")


def _config(tmp_path: Path, **kwargs) -> PipelineConfig:
    species = tmp_path / "species.nwk"
    species.write_text("((ARATH,ORYSA),MUSAC);\n", encoding="utf-8")
    fasta = _write_alignment(tmp_path / "family.fasta", RECORDS)
    settings = kwargs.pop("settings", None) or Settings(species_tree=species, bootstrap_count=100)
    return PipelineConfig(
        family_id="GP000001",
        input_fasta=fasta,
        settings=settings,
        output_dir=tmp_path / "out",
        **kwargs,
    )


def _pipeline(config: PipelineConfig, runner: FakeRunner, sent: list | None = None) -> Pipeline:
    class _Notifier:
        def send(self, address: str, subject: str, body: str) -> None:
            if sent is not None:
                sent.append((address, subject, body))

    return Pipeline(config, runner=runner, notifier=_Notifier())


def test_full_run_with_rap(tmp_path: Path) -> None:
    runner = FakeRunner()
    config = _config(tmp_path)
    outcome = _pipeline(config, runner).run()
    paths = ArtifactPaths(config.family_dir, "GP000001")

    assert outcome.status == "completed"
    assert [r.stage for r in outcome.stages] == ["alignment", "masking", "phylogeny", "rooting", "hmm"]
    assert "dorio" not in runner.tools()
    assert paths.encoded.read_text(encoding="utf-8").startswith(">SEQ0000001\n")
    assert "AT1G01010_ARATH" in paths.decoded_tree.read_text(encoding="utf-8")
    assert "AT1G01010_ARATH" in paths.jalview.read_text(encoding="utf-8")
    assert "AT1G01010" in paths.rap_output("gene_tree").read_text(encoding="utf-8")
    assert "SEQ" not in paths.rap_output("reconciled_tree").read_text(encoding="utf-8")
    assert paths.phylip.read_text(encoding="utf-8").startswith(" 3 22\n")
    assert paths.hmm.exists()


def test_alignment_uses_accurate_tier_for_small_families(tmp_path: Path) -> None:
    runner = FakeRunner()
    _pipeline(_config(tmp_path, end_step=Step.ALIGNMENT), runner).run()
    mafft = next(c for c in runner.calls if c.tool == "mafft")
    assert "--genafpair" in mafft.argv


def test_sdi_run_feeds_rooted_bootstraps_to_rio(tmp_path: Path) -> None:
    runner = FakeRunner()
    config = _config(tmp_path, rooting_engine=RootingEngine.SDI)
    outcome = _pipeline(config, runner).run()
    paths = ArtifactPaths(config.family_dir, "GP000001")

    assert outcome.status == "completed"
    assert "sdi_r" in runner.tools()
    dorio = [c for c in runner.calls if c.tool == "dorio"]
    assert len(dorio) == 3
    assert all(f"M={paths.sdi_rooted(True)}" in c.argv for c in dorio)
    assert all(f"T={paths.sdi_rooted(False)}" in c.argv for c in dorio)
    assert {p.name for p in outcome.orthology_outputs} == {
        "rio_AT1G01010.txt",
        "rio_Os01g0100100.txt",
        "rio_Ma01_g00010.1.txt",
    }
    # only the first matrix, species codes stripped from row labels
    rio_matrix = paths.rio_distance_matrix.read_text(encoding="utf-8")
    assert rio_matrix.splitlines()[1].startswith("AT1G01010 0.0")
    assert rio_matrix.count("\n3\n") == 0
    assert "<code>ARATH</code>" in paths.sdi_phyloxml(False).read_text(encoding="utf-8")


def test_midpoint_rooting_uses_retree_and_plain_sdi(tmp_path: Path) -> None:
    runner = FakeRunner()
    config = _config(tmp_path, rooting_engine=RootingEngine.SDI, midpoint_rooting=True)
    outcome = _pipeline(config, runner).run()

    assert outcome.status == "completed"
    assert "retree" in runner.tools()
    assert "sdi" in runner.tools() and "sdi_r" not in runner.tools()
    assert not (config.family_dir / "outtree").exists()


def test_too_few_bootstraps_skip_rio_with_warning(tmp_path: Path) -> None:
    species = tmp_path / "species.nwk"
    species.write_text("(ARATH,ORYSA);\n", encoding="utf-8")
    runner = FakeRunner()
    config = _config(
        tmp_path,
        rooting_engine=RootingEngine.SDI,
        settings=Settings(species_tree=species, bootstrap_count=2),
    )
    outcome = _pipeline(config, runner).run()

    assert outcome.status == "completed"
    assert "dorio" not in runner.tools()
    assert any("not enough bootstraps" in w for w in outcome.warnings)


def test_rio_failures_are_warnings(tmp_path: Path) -> None:
    runner = FakeRunner(fail={"dorio"})
    outcome = _pipeline(_config(tmp_path, rooting_engine=RootingEngine.SDI), runner).run()
    assert outcome.status == "completed"
    assert outcome.orthology_outputs == []
    assert sum("orthology" in w for w in outcome.warnings) >= 3


def test_auto_resume_skips_completed_steps(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _pipeline(config, FakeRunner()).run()

    runner = FakeRunner()
    resumed = _config(tmp_path, auto_resume=True)
    outcome = _pipeline(resumed, runner).run()

    assert all(r.skipped for r in outcome.stages)
    assert runner.calls == []


def test_rerun_step_invalidates_later_outputs(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _pipeline(config, FakeRunner()).run()
    paths = ArtifactPaths(config.family_dir, "GP000001")
    paths.phylip.unlink()

    runner = FakeRunner()
    outcome = _pipeline(_config(tmp_path, auto_resume=True), runner).run()

    assert outcome.stage("alignment").skipped
    assert not outcome.stage("masking").skipped
    assert not outcome.stage("phylogeny").skipped
    assert not outcome.stage("rooting").skipped
    assert "mafft" not in runner.tools()


def test_resume_window_limits_steps(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _pipeline(config, FakeRunner()).run()

    runner = FakeRunner()
    outcome = _pipeline(
        _config(tmp_path, resume_step=Step.PHYLOGENY, end_step=Step.PHYLOGENY), runner
    ).run()

    assert [r.stage for r in outcome.stages] == ["phylogeny"]
    assert runner.tools() == ["phyml"]


def test_masking_failure_aborts_by_default(tmp_path: Path) -> None:
    with pytest.raises(StageExecutionError, match="masking"):
        _pipeline(_config(tmp_path), FakeRunner(fail={"trimal"})).run()


def test_masking_failure_fallback_uses_original_alignment(tmp_path: Path) -> None:
    config = _config(tmp_path, masking_failure_policy=MaskingFailurePolicy.USE_ORIGINAL_ALIGNMENT)
    outcome = _pipeline(config, FakeRunner(fail={"trimal"})).run()
    paths = ArtifactPaths(config.family_dir, "GP000001")

    assert outcome.status == "completed"
    assert any("original alignment is used" in w for w in outcome.warnings)
    assert paths.phylip.read_text(encoding="utf-8").startswith(" 3 22\n")


def test_masking_fallback_covers_io_errors(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def _unreadable_mask(*args, **kwargs):
        raise OSError("cannot read mask(3)")

    monkeypatch.setattr("phylopipe.pipeline.run_masking", _unreadable_mask)
    config = _config(tmp_path, masking_failure_policy=MaskingFailurePolicy.USE_ORIGINAL_ALIGNMENT)
    outcome = _pipeline(config, FakeRunner()).run()
    paths = ArtifactPaths(config.family_dir, "GP000001")

    assert outcome.status == "completed"
    assert any("cannot read mask(3)" in w for w in outcome.warnings)
    assert paths.phylip.read_text(encoding="utf-8").startswith(" 3 22\n")


def test_skip_masking_does_not_call_trimal(tmp_path: Path) -> None:
    runner = FakeRunner()
    outcome = _pipeline(_config(tmp_path, skip_masking=True), runner).run()
    assert outcome.status == "completed"
    assert "trimal" not in runner.tools()


def test_missing_input_fails_fast_and_notifies(tmp_path: Path) -> None:
    config = _config(tmp_path, email="curator@example.org")
    config.input_fasta = tmp_path / "absent.fasta"
    sent: list = []
    runner = FakeRunner()
    with pytest.raises(MissingInputError):
        _pipeline(config, runner, sent).run()
    assert runner.calls == []
    assert sent and "failed" in sent[0][1]


def test_tool_failure_names_stage_and_logs(tmp_path: Path) -> None:
    with pytest.raises(StageExecutionError) as excinfo:
        _pipeline(_config(tmp_path), FakeRunner(fail={"phyml"})).run()
    message = str(excinfo.value)
    assert message.startswith("phylogeny:")
    assert re.search(r"_phyml\.log", message)


def test_completion_notification(tmp_path: Path) -> None:
    sent: list = []
    _pipeline(_config(tmp_path, email="curator@example.org"), FakeRunner(), sent).run()
    assert sent[0][0] == "curator@example.org"
    assert "completed" in sent[0][1]
