from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


def append_suffix(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


@dataclass(frozen=True)
class ArtifactPaths:
    """Every artifact name of a run, derived from the family output directory.

    Nothing here depends on time or randomness, so a resumed run finds the
    outputs of earlier runs by recomputing the same names.
    """

    output_dir: Path
    family_id: str

    @property
    def main(self) -> Path:
        return self.output_dir / self.family_id

    def _m(self, suffix: str) -> Path:
        return append_suffix(self.main, suffix)

    # input and identifiers
    @property
    def source(self) -> Path:
        return self._m(".src")

    @property
    def encoded(self) -> Path:
        return self._m(".src.out")

    @property
    def dictionary(self) -> Path:
        return self._m(".dic")

    # alignment
    @property
    def alignment(self) -> Path:
        return self._m(".mafft")

    @property
    def mafft_log(self) -> Path:
        return self._m("_mafft.log")

    # hmm
    @property
    def hmm(self) -> Path:
        return self._m(".hmm")

    @property
    def hmm_log(self) -> Path:
        return self._m("_hmmbuild.log")

    # masking and filtering
    def mask(self, n: int) -> Path:
        return self._m(f".{n}.mask")

    def bsp(self, n: int) -> Path:
        return self._m(f".{n}.bsp")

    def masking_html(self, n: int) -> Path:
        return self._m(f".{n}_masking.html")

    @property
    def filtered_html(self) -> Path:
        return self._m("_filtered.html")

    @property
    def phylip(self) -> Path:
        return self._m(".phy")

    @property
    def filtered_fasta(self) -> Path:
        return self._m(".fltr.fasta")

    @property
    def filtered_seq(self) -> Path:
        return self._m("_filtered.seq")

    @property
    def jalview(self) -> Path:
        return append_suffix(self.filtered_fasta, ".aln")

    @property
    def trimal_log(self) -> Path:
        return self._m("_trimal.log")

    @property
    def quality_log(self) -> Path:
        return self._m("_quality.log")

    def masking_outputs(self) -> list[Path]:
        return [
            self.mask(1),
            self.mask(2),
            self.mask(3),
            self.bsp(1),
            self.bsp(2),
            self.masking_html(1),
            self.masking_html(2),
            self.filtered_html,
            self.phylip,
            self.filtered_fasta,
            self.filtered_seq,
        ]

    # phylogeny
    @property
    def phyml_raw_tree(self) -> Path:
        return append_suffix(self.phylip, "_phyml_tree")

    @property
    def bootstrap_trees(self) -> Path:
        return append_suffix(self.phylip, "_phyml_boot_trees")

    @property
    def distance_matrix(self) -> Path:
        return append_suffix(self.phylip, "_phyml_dist.txt")

    @property
    def phylogeny_tree(self) -> Path:
        return self._m("_phylogeny_tree.nwk")

    @property
    def decoded_tree(self) -> Path:
        return append_suffix(self.phylogeny_tree, ".out")

    @property
    def phyml_log(self) -> Path:
        return self._m("_phyml.log")

    @property
    def phyml_error_log(self) -> Path:
        return self._m("_phyml_err.log")

    @property
    def retree_script(self) -> Path:
        return self.output_dir / "retree.script"

    @property
    def retree_outtree(self) -> Path:
        return self.output_dir / "outtree"

    @property
    def retree_log(self) -> Path:
        return self._m("_retree.log")

    # rap
    @property
    def rap_dictionary(self) -> Path:
        return self._m("_rap.dic")

    @property
    def rap_input_tree(self) -> Path:
        return self._m("_rap_input.nwk")

    def rap_output(self, kind: str, *, encoded: bool = False) -> Path:
        suffixes = {
            "gene_tree": "_rap_gene_tree.nwk",
            "reconciled_tree": "_rap_reconciled_gene_tree.nwk",
            "stats": "_rap_stats_tree.txt",
            "phyloxml": "_rap_tree.xml",
        }
        return self._m((".enc" if encoded else "") + suffixes[kind])

    @property
    def rap_kinds(self) -> tuple[str, ...]:
        return ("gene_tree", "reconciled_tree", "stats", "phyloxml")

    @property
    def rap_log(self) -> Path:
        return self._m("_rap.log")

    @property
    def rap_error_log(self) -> Path:
        return self._m("_rap_err.log")

    # sdi
    def sdi_seed(self, bootstrap: bool) -> Path:
        return self._m("_trees" if bootstrap else "_tree")

    def sdi_nhx(self, bootstrap: bool) -> Path:
        return append_suffix(self.sdi_seed(bootstrap), ".nhx")

    def sdi_phyloxml(self, bootstrap: bool) -> Path:
        return append_suffix(self.sdi_seed(bootstrap), ".xml")

    def sdi_rooted(self, bootstrap: bool) -> Path:
        return append_suffix(self.sdi_seed(bootstrap), ".sdi.xml")

    @property
    def decoded_bootstrap_trees(self) -> Path:
        return append_suffix(self.bootstrap_trees, ".out")

    @property
    def phyloxml_log(self) -> Path:
        return self._m("_phyloxml.log")

    @property
    def sdi_log(self) -> Path:
        return self._m("_sdi.log")

    @property
    def sdi_error_log(self) -> Path:
        return self._m("_sdi_err.log")

    # rio
    @property
    def decoded_distance_matrix(self) -> Path:
        return append_suffix(self.distance_matrix, ".out")

    @property
    def rio_distance_matrix(self) -> Path:
        return append_suffix(self.decoded_distance_matrix, ".dist")

    def rio_output(self, query: str) -> Path:
        return self.output_dir / f"rio_{query}.txt"

    @property
    def rio_log(self) -> Path:
        return self._m("_rio.log")

    @property
    def rio_error_log(self) -> Path:
        return self._m("_rio_err.log")
