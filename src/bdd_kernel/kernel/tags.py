from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


def normalize_tag(tag: str) -> str:
    # Tags are compared without the leading "@" and case-sensitively.
    tag = tag.strip()
    if tag.startswith("@"):
        tag = tag[1:]
    if not tag:
        raise ValueError("Tag must be a non-empty string")
    return tag


@dataclass(frozen=True, slots=True)
class TagTerm:
    tag: str
    negated: bool = False

    def matches(self, tags: frozenset[str]) -> bool:
        return (self.tag in tags) != self.negated


@dataclass(frozen=True, slots=True)
class TagFilter:
    # Conjunction of disjunctions: "@a,@b&&~@c" means (a or b) and not c.
    source: str
    clauses: tuple[tuple[TagTerm, ...], ...]

    @classmethod
    def parse(cls, source: str) -> TagFilter:
        clauses: list[tuple[TagTerm, ...]] = []
        for raw_clause in source.split("&&"):
            terms: list[TagTerm] = []
            for raw_term in raw_clause.split(","):
                raw_term = raw_term.strip()
                if not raw_term:
                    raise ValueError(f"Empty term in tag filter: {source!r}")
                negated = raw_term.startswith("~")
                if negated:
                    raw_term = raw_term[1:]
                terms.append(TagTerm(tag=normalize_tag(raw_term), negated=negated))
            clauses.append(tuple(terms))
        return cls(source=source, clauses=tuple(clauses))

    def matches(self, tags: Iterable[str]) -> bool:
        active = frozenset(normalize_tag(tag) for tag in tags)
        return all(any(term.matches(active) for term in clause) for clause in self.clauses)

    def __str__(self) -> str:
        return self.source
