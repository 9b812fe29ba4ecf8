"""Placeholder identifiers for tool-unsafe sequence names.

External tools truncate or reject long names and names with punctuation, so
every name is swapped for ``SEQ`` plus a seven digit ordinal before a tool
sees it and swapped back wherever output has to be human readable.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Iterator

from .errors import IdentifierCodecError
from .io import FastaRecord, read_fasta_records, write_fasta_records
from .paths import append_suffix
from .phylo import parse_newick, read_newick_trees

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "SEQ"
PLACEHOLDER_WIDTH = 7
PLACEHOLDER_PATTERN = r"SEQ\d{7}"
SPECIES_CODE_PATTERN = r"_[A-Z0-9]{3,5}"
HTML_NAME_PATTERN = r"SEQ\d{7}</span>\s{10}"
HTML_NAME_WIDTH = 20

_SPECIES_CODE_TAIL = re.compile(rf"({SPECIES_CODE_PATTERN})\s*$")
_QUERY_LINE = re.compile(rf"^(.+){SPECIES_CODE_PATTERN}$")
_NEWICK_LEAF = re.compile(r"(?<=[(,])(\s*)([^\s(),:;\[\]]+)")

Replacer = Callable[[str, dict[str, str]], str]


def make_placeholder(ordinal: int, species_code: str = "") -> str:
    if ordinal < 1 or ordinal >= 10**PLACEHOLDER_WIDTH:
        raise IdentifierCodecError(f"Placeholder ordinal out of range: {ordinal}")
    return f"{PLACEHOLDER_PREFIX}{ordinal:0{PLACEHOLDER_WIDTH}d}{species_code}"


def species_code(name: str) -> str:
    match = _SPECIES_CODE_TAIL.search(name)
    return match.group(1) if match else ""


def strip_species_code(name: str) -> str:
    return _SPECIES_CODE_TAIL.sub("", name)


def truncate_html_name(match: str, mapping: dict[str, str]) -> str:
    """Replacement for HTML reports where names sit in fixed-width columns."""
    key = re.sub(r"</span>\s*$", "", match)
    name = mapping.get(key, key)
    if len(name) > HTML_NAME_WIDTH:
        name = name[:9] + ".." + name[-9:]
    return name.ljust(HTML_NAME_WIDTH) + "</span>"


class IdentifierDictionary:
    """Bidirectional placeholder <-> original name mapping.

    Ordinals follow encoding order: every encoded record gets the next one,
    so duplicate input names still map to distinct placeholders.
    """

    def __init__(self, *, keep_species_code: bool = False) -> None:
        self.keep_species_code = keep_species_code
        self._names: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, placeholder: str) -> bool:
        return placeholder in self._names

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._names.items())

    def name_of(self, placeholder: str) -> str:
        try:
            return self._names[placeholder]
        except KeyError:
            raise IdentifierCodecError(f"Unknown placeholder: {placeholder}") from None

    def encode_name(self, name: str) -> str:
        ordinal = len(self._names) + 1
        if self.keep_species_code:
            code = species_code(name)
            self._names[make_placeholder(ordinal)] = strip_species_code(name)
            return make_placeholder(ordinal, code)
        placeholder = make_placeholder(ordinal)
        self._names[placeholder] = name
        return placeholder

    def decode_text(
        self,
        text: str,
        pattern: str = PLACEHOLDER_PATTERN,
        replace: Replacer | None = None,
    ) -> str:
        regex = re.compile(pattern)
        if replace is None:
            return regex.sub(lambda m: self._names.get(m.group(0), m.group(0)), text)
        return regex.sub(lambda m: replace(m.group(0), self._names), text)

    def decode_file(
        self,
        input_path: str | Path,
        output_path: str | Path | None = None,
        *,
        pattern: str = PLACEHOLDER_PATTERN,
        replace: Replacer | None = None,
    ) -> Path:
        src = Path(input_path)
        if not src.is_file():
            raise IdentifierCodecError(f"Input file for name decoding is not readable: {src}")
        dst = Path(output_path) if output_path is not None else append_suffix(src, ".out")
        text = src.read_text(encoding="utf-8")
        dst.write_text(self.decode_text(text, pattern=pattern, replace=replace), encoding="utf-8")
        _require_output(dst, "decode")
        return dst

    def decode_in_place(self, path: str | Path, **kwargs) -> Path:
        p = Path(path)
        decoded = self.decode_file(p, append_suffix(p, ".decoding"), **kwargs)
        decoded.replace(p)
        return p

    def queries(self) -> list[str]:
        """Original names carrying a species code, with the code removed."""
        out: list[str] = []
        for name in self._names.values():
            match = _QUERY_LINE.match(name)
            if match:
                out.append(match.group(1))
        return out

    def save(self, path: str | Path) -> Path:
        p = Path(path)
        with p.open("w", encoding="utf-8") as handle:
            for placeholder, name in self._names.items():
                handle.write(f"{placeholder}\t{name}\n")
        return p

    @classmethod
    def load(cls, path: str | Path) -> "IdentifierDictionary":
        p = Path(path)
        if not p.exists():
            raise IdentifierCodecError(f"Dictionary file not found: {p}")
        dictionary = cls()
        with p.open("r", encoding="utf-8") as handle:
            for line_no, raw in enumerate(handle, start=1):
                line = raw.rstrip("\n")
                if not line:
                    continue
                placeholder, sep, name = line.partition("\t")
                if not sep:
                    raise IdentifierCodecError(f"Malformed dictionary line {line_no} in {p}")
                dictionary._names[placeholder] = name
        return dictionary


def _require_output(path: Path, action: str) -> None:
    if not path.is_file() or path.stat().st_size == 0:
        raise IdentifierCodecError(f"Failed to {action} IDs: {path} is empty")


def encode_fasta(
    input_path: str | Path,
    dictionary_path: str | Path,
    output_path: str | Path | None = None,
    *,
    keep_species_code: bool = False,
) -> tuple[Path, IdentifierDictionary]:
    src = Path(input_path)
    dst = Path(output_path) if output_path is not None else append_suffix(src, ".out")
    dictionary = IdentifierDictionary(keep_species_code=keep_species_code)
    encoded = [
        FastaRecord(name=dictionary.encode_name(r.name), sequence=r.sequence, description=r.description)
        for r in read_fasta_records(src)
    ]
    write_fasta_records(dst, encoded)
    dictionary.save(dictionary_path)
    _require_output(dst, "encode")
    logger.debug("Encoded %d sequence names from %s into %s", len(dictionary), src, dst)
    return dst, dictionary


def encode_newick(
    input_path: str | Path,
    dictionary_path: str | Path,
    output_path: str | Path | None = None,
    *,
    keep_species_code: bool = False,
) -> tuple[Path, IdentifierDictionary]:
    """Encode the leaf labels of the first tree in a Newick file."""
    src = Path(input_path)
    dst = Path(output_path) if output_path is not None else append_suffix(src, ".out")
    trees = read_newick_trees(src)
    if not trees:
        raise IdentifierCodecError(f"Newick file '{src}' does not contain a valid tree")
    tree = trees[0]
    try:
        leaves = parse_newick(tree).leaf_names()
    except ValueError as exc:
        raise IdentifierCodecError(f"Newick file '{src}' does not contain a valid tree: {exc}") from exc

    dictionary = IdentifierDictionary(keep_species_code=keep_species_code)
    mapping = {leaf: dictionary.encode_name(leaf) for leaf in leaves}

    def _swap(match: re.Match[str]) -> str:
        label = match.group(2)
        return match.group(1) + mapping.get(label, label)

    dst.write_text(_NEWICK_LEAF.sub(_swap, tree) + "\n", encoding="utf-8")
    dictionary.save(dictionary_path)
    _require_output(dst, "encode")
    return dst, dictionary

