import json
from pathlib import Path

import pytest

from phylopipe.cli import main

MATRIX = (
    "\t    1\t    2\t    3\n"
    "\t 0.00\t 0.40\t {d:.2f}\tSEQ0000001 1\n"
    "\t     \t 0.00\t {d:.2f}\tSEQ0000002 2\n"
    "\t     \t     \t 0.00\tSEQ0000003 3\n"
)


def _write_gene(root: Path, gene: str, tree: str, distance: float) -> None:
    gene_dir = root / gene
    gene_dir.mkdir(parents=True)
    (gene_dir / f"{gene}_cds_phylogeny_tree.nwk.out").write_text(tree + "\n", encoding="utf-8")
    (gene_dir / f"{gene}_cds.mafft").write_text(">a\nACGT\n", encoding="utf-8")
    # cached distmat output, so no external tool runs
    (gene_dir / f"{gene}_cds.mafft.dist").write_text(MATRIX.format(d=distance), encoding="utf-8")


def test_cli_topology_json_tables_and_plot(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    trees = tmp_path / "trees"
    for i in range(4):
        _write_gene(trees, f"a{i}", "((Ma01_g1.1:0.1,Maban_g1:0.2):0.05,Mabur_g7:0.3);", 0.1 + 0.01 * i)
        _write_gene(trees, f"b{i}", "((Mabur_g7:0.1,Maban_g1:0.2):0.05,Ma01_g1.1:0.3);", 0.3 + 0.01 * i)
    plot = tmp_path / "null.pdf"

    rc = main(
        [
            "topology",
            "--dir",
            str(trees),
            "--iterations",
            "200",
            "--seed",
            "5",
            "--output",
            str(tmp_path / "tables" / "musa"),
            "--plot",
            str(plot),
            "--manifest",
            str(tmp_path / "manifest.json"),
            "--json",
        ]
    )

    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["class_counts"] == {"type1": 4, "type2": 4}
    assert payload["d2"] == pytest.approx(-0.2)
    assert payload["iterations"] == 200
    assert (tmp_path / "tables" / "musa.topologies.tsv").exists()
    assert plot.exists() and plot.stat().st_size > 0
    manifest = json.loads((tmp_path / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["command"] == "topology"
    assert manifest["seed"] == 5
    assert manifest["result"]["class_counts"] == payload["class_counts"]


def test_cli_show_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "settings.json"
    config.write_text(json.dumps({"bootstrap_count": 7, "sequence_type": "nucleic"}), encoding="utf-8")
    assert main(["show-config", "--config", str(config)]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["bootstrap_count"] == 7
    assert payload["sequence_type"] == "nucleic"
    assert "phyml" in payload["tools"]


def test_cli_rejects_unknown_step(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["run", "-f", "GP1", "-i", str(tmp_path / "x.fa"), "-r", "assembly"])
    assert excinfo.value.code == 2


def test_cli_run_reports_missing_input(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["run", "-f", "GP1", "-i", str(tmp_path / "absent.fa"), "--output-dir", str(tmp_path / "out")])
    assert excinfo.value.code == 2
    assert "error: preparation: input file is missing" in capsys.readouterr().err


def test_cli_run_rejects_inverted_window(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    fasta = tmp_path / "in.fa"
    fasta.write_text(">a\nMK\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        main(["run", "-f", "GP1", "-i", str(fasta), "-r", "rooting", "-e", "alignment"])
    assert excinfo.value.code == 2
    assert "comes after" in capsys.readouterr().err


def test_cli_doctor_json(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    monkeypatch.delenv("PHYLOPIPE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    rc = main(["doctor", "--json", "--email", "curator@example.org"])
    assert rc == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "FAIL"
    names = {check["name"] for check in payload["checks"]}
    assert {"species_tree", "email", "tool:phyml"} <= names


def test_cli_reroot(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    src = tmp_path / "trees"
    src.mkdir()
    (src / "g.nwk.out").write_text("((Mabur_g2:0.1,Ma01_g3:0.2),Maban_g4:0.3);\n", encoding="utf-8")
    assert main(["reroot", "--dir", str(src), "--out", str(tmp_path / "rooted")]) == 0
    assert "skipped trees: 1" in capsys.readouterr().out
