from __future__ import annotations

import re
from pathlib import Path

from .idcodec import SPECIES_CODE_PATTERN

_NEWICK_SPECIES_LEAF = re.compile(r"([\w.]+)_([A-Z]+):([\d.]+)")
_SCIENTIFIC_NAME = re.compile("scientific_name", re.IGNORECASE)
_DISTANCE_ROW_CODE = re.compile(rf"^([\w.]+){SPECIES_CODE_PATTERN} ", re.MULTILINE)


def newick_to_nhx(text: str) -> str:
    """Move trailing species codes of leaf names into NHX ``S=`` tags."""
    return _NEWICK_SPECIES_LEAF.sub(r"\1:\3[&&NHX:S=\2]", text)


def phyloxml_species_as_code(text: str) -> str:
    # The converter writes species codes as scientific names.
    return _SCIENTIFIC_NAME.sub("code", text)


def first_distance_matrix(text: str) -> str:
    """First matrix of a PhyML distance file, species codes removed from row labels."""
    head, sep, _ = text.partition("\n\n")
    block = head + "\n" if sep else text
    return _DISTANCE_ROW_CODE.sub(r"\1 ", block)


def write_nhx(newick_path: Path, nhx_path: Path) -> Path:
    nhx_path.write_text(newick_to_nhx(newick_path.read_text(encoding="utf-8")), encoding="utf-8")
    return nhx_path


def rewrite_phyloxml_codes(path: Path) -> Path:
    path.write_text(phyloxml_species_as_code(path.read_text(encoding="utf-8")), encoding="utf-8")
    return path


def write_rio_distance_matrix(decoded_matrix: Path, output: Path) -> Path:
    output.write_text(first_distance_matrix(decoded_matrix.read_text(encoding="utf-8")), encoding="utf-8")
    return output
