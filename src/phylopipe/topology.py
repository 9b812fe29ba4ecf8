"""Coarse classification of gene-tree topologies.

A tree is reduced to a grouping string: leaf labels are collapsed into
group codes by ordered label rules, then every numeric token (branch
lengths, support values) is removed. Topology rules are matched in order
against that string; the first match names the class.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Sequence

_NUMERIC_TOKEN = re.compile(r"[0-9Ee+\-.]+[:,;)]")
_NUMERIC_WITH_COLON = re.compile(r"[0-9Ee+\-.:]+([:,;)])")


@dataclass(frozen=True)
class LabelRule:
    pattern: str
    code: str

    def apply(self, text: str) -> str:
        return re.sub(self.pattern, f"{self.code}:", text)


@dataclass(frozen=True)
class TopologyRule:
    """Class ``name`` when any ``any_of`` substring and every ``requires`` substring occur."""

    name: str
    any_of: tuple[str, ...]
    requires: tuple[str, ...] = ()

    def matches(self, normalized: str) -> bool:
        return any(s in normalized for s in self.any_of) and all(s in normalized for s in self.requires)


DEFAULT_LABEL_RULES: tuple[LabelRule, ...] = (
    LabelRule(r"Mabur\w+:", "MABUR"),
    LabelRule(r"Maban\w+:", "MABAN"),
    LabelRule(r"Musba\w+:", "MUSBA"),
    LabelRule(r"Mazeb\w+:", "MAZEB"),
    LabelRule(r"Ma\d{2}_[gpt][\w.]+:", "MUSAC"),
)

TYPE1 = "type1"
TYPE2 = "type2"

DEFAULT_TOPOLOGY_RULES: tuple[TopologyRule, ...] = (
    # malaccensis sister to banksii, burmannica elsewhere
    TopologyRule(TYPE1, ("(MUSAC,MABAN)", "(MABAN,MUSAC)"), requires=("MABUR",)),
    # burmannica sister to banksii
    TopologyRule(TYPE2, ("(MABUR,MABAN)", "(MABAN,MABUR)")),
)


def strip_numeric_annotations(text: str) -> str:
    """Drop numbers in front of structural characters until none are left."""
    while _NUMERIC_TOKEN.search(text):
        text = _NUMERIC_WITH_COLON.sub(r"\1", text, count=1)
    return text


class TopologyClassifier:
    def __init__(
        self,
        label_rules: Sequence[LabelRule] = DEFAULT_LABEL_RULES,
        topology_rules: Sequence[TopologyRule] = DEFAULT_TOPOLOGY_RULES,
    ) -> None:
        self.label_rules = tuple(label_rules)
        self.topology_rules = tuple(topology_rules)

    @property
    def class_names(self) -> list[str]:
        names: list[str] = []
        for rule in self.topology_rules:
            if rule.name not in names:
                names.append(rule.name)
        return names

    def normalize(self, text: str) -> str:
        normalized = text.replace("\r", "").replace("\n", "")
        for rule in self.label_rules:
            normalized = rule.apply(normalized)
        return strip_numeric_annotations(normalized)

    def classify_normalized(self, normalized: str) -> str | None:
        for rule in self.topology_rules:
            if rule.matches(normalized):
                return rule.name
        return None

    def classify(self, text: str) -> tuple[str, str | None]:
        normalized = self.normalize(text)
        return normalized, self.classify_normalized(normalized)


@dataclass
class TopologyTally:
    counts: Counter = field(default_factory=Counter)
    members: dict[str, list[str]] = field(default_factory=dict)
    total: int = 0

    def add(self, normalized: str, topology_class: str | None, source: str) -> None:
        self.total += 1
        self.counts[normalized] += 1
        if topology_class is not None:
            self.members.setdefault(topology_class, []).append(source)

    def class_count(self, name: str) -> int:
        return len(self.members.get(name, []))

    def most_common(self, n: int | None = None) -> list[tuple[str, int]]:
        return self.counts.most_common(n)


def tally_trees(
    trees: Iterable[tuple[str, str]],
    classifier: TopologyClassifier | None = None,
) -> TopologyTally:
    """Classify ``(source, tree_text)`` pairs."""
    classifier = classifier or TopologyClassifier()
    tally = TopologyTally()
    for source, text in trees:
        normalized, topology_class = classifier.classify(text)
        tally.add(normalized, topology_class, source)
    return tally
