"""Declaration model: semantic identities, lexical occurrences and dependency edges.

A semantic declaration is what a programmer thinks of: *the* function f(),
*the* class A. A lexical occurrence is one place in the buffer where it is
written. A class may have several forward declarations and one definition;
all of them are occurrences of the same semantic declaration, identified by
its fully qualified name.
"""
import bisect
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple
import networkx as nx
from tree_sitter import Node


# Declaration kinds
FUNCTION = 'function'
CLASS = 'class'
ENUM = 'enum'
TYPEDEF = 'typedef'
VARIABLE = 'variable'
USING = 'using'
CONCEPT = 'concept'
USING_DIRECTIVE = 'using_directive'
NAMESPACE_ALIAS = 'namespace_alias'
UNKNOWN = 'unknown'
# Top-level text produced by a macro invocation, kept verbatim
MACRO_INVOCATION = 'macro_invocation'

# Source of references made by items that are never removed
ROOT = '<root>'


@dataclass(frozen=True, order=True)
class SourceRange:
    """Half-open byte range [start, end) in the original buffer."""
    start: int
    end: int

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def covers(self, other: 'SourceRange') -> bool:
        return self.start <= other.start and other.end <= self.end

    def __len__(self) -> int:
        return self.end - self.start


class RangeSet:
    """Union of byte ranges with fast membership queries."""

    def __init__(self, ranges: Iterable[SourceRange] = ()):
        self._ranges: List[SourceRange] = merge_ranges(ranges)
        self._starts = [r.start for r in self._ranges]

    def __iter__(self) -> Iterator[SourceRange]:
        return iter(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    def union(self, ranges: Iterable[SourceRange]) -> 'RangeSet':
        return RangeSet(list(self._ranges) + list(ranges))

    def _find(self, offset: int) -> Optional[SourceRange]:
        index = bisect.bisect_right(self._starts, offset) - 1
        if index >= 0 and self._ranges[index].contains(offset):
            return self._ranges[index]
        return None

    def contains(self, offset: int) -> bool:
        return self._find(offset) is not None

    def covers(self, rng: SourceRange) -> bool:
        """True if every byte of ``rng`` lies in the set."""
        if len(rng) == 0:
            return self.contains(rng.start)
        hit = self._find(rng.start)
        return hit is not None and hit.end >= rng.end


def merge_ranges(ranges: Iterable[SourceRange]) -> List[SourceRange]:
    """Sort ranges and merge overlapping or adjacent ones (union of intervals)."""
    ordered = sorted(r for r in ranges if r.end >= r.start)
    merged: List[SourceRange] = []
    for rng in ordered:
        if merged and rng.start <= merged[-1].end:
            if rng.end > merged[-1].end:
                merged[-1] = SourceRange(merged[-1].start, rng.end)
        else:
            merged.append(rng)
    return merged


@dataclass(eq=False)
class Occurrence:
    """One lexical declaration: a top-level item of the main file."""
    kind: str
    node: Node = field(repr=False, compare=False)
    range: SourceRange
    scope: Tuple[str, ...] = ()
    keys: Tuple[str, ...] = ()
    is_definition: bool = True
    is_template: bool = False
    always_keep: bool = False
    has_default_args: bool = False
    signature: Optional[Tuple[str, ...]] = None
    lookup_scope: Tuple[str, ...] = ()
    template_params: frozenset = frozenset()
    member_names: List[str] = field(default_factory=list)
    scoped_enumerators: List[str] = field(default_factory=list)
    unscoped_enumerators: List[str] = field(default_factory=list)
    using_target: Optional[List[str]] = None
    alias_name: Optional[str] = None
    body: Optional[Node] = field(default=None, repr=False, compare=False)

    @property
    def key(self) -> Optional[str]:
        return self.keys[0] if self.keys else None

    @property
    def is_delayed(self) -> bool:
        """Function templates with a body are parsed lazily."""
        return self.is_template and self.kind == FUNCTION and self.body is not None


@dataclass
class SemanticDecl:
    """A canonical declaration and all of its lexical occurrences."""
    key: str
    kind: str
    occurrences: List[Occurrence] = field(default_factory=list)

    @property
    def canonical(self) -> Occurrence:
        return self.occurrences[0]

    @property
    def definitions(self) -> List[Occurrence]:
        return [occ for occ in self.occurrences if occ.is_definition]


class DeclarationModel:
    """Identity table plus the dependency graph between semantic declarations."""

    def __init__(self):
        self.decls: Dict[str, SemanticDecl] = {}
        self.occurrences: List[Occurrence] = []
        self.graph = nx.DiGraph()
        self.entry_points: Set[str] = set()
        self.delayed: List[Occurrence] = []
        self.namespaces: Set[str] = set()
        # (source, target) -> byte offsets of the references
        self._sites: Dict[Tuple[str, str], List[int]] = {}

    def add_occurrence(self, occ: Occurrence):
        """Register a lexical occurrence under each identity it declares.

        The first occurrence of an identity in document order becomes its
        canonical declaration.
        """
        self.occurrences.append(occ)
        for key in occ.keys:
            decl = self.decls.get(key)
            if decl is None:
                decl = SemanticDecl(key=key, kind=occ.kind)
                self.decls[key] = decl
                self.graph.add_node(key, kind=occ.kind)
            if occ not in decl.occurrences:
                decl.occurrences.append(occ)
        if occ.is_delayed:
            self.delayed.append(occ)

    def canonical(self, key: str) -> Optional[Occurrence]:
        decl = self.decls.get(key)
        return decl.canonical if decl else None

    def add_dependency(self, source: str, target: str, site: Optional[int] = None):
        """Record that ``source`` references ``target`` (at byte ``site``)."""
        if source != ROOT:
            self.graph.add_edge(source, target)
        if site is not None:
            self._sites.setdefault((source, target), []).append(site)

    def add_entry_point(self, key: str):
        self.entry_points.add(key)

    def uses(self, key: str) -> List[str]:
        """Declarations directly referenced by ``key``."""
        if key not in self.graph:
            return []
        return list(self.graph.successors(key))

    def reference_sites(self, target: str) -> List[Tuple[str, int]]:
        """All (source, offset) pairs referencing ``target``."""
        sites = []
        for (source, dst), offsets in self._sites.items():
            if dst == target:
                sites.extend((source, offset) for offset in offsets)
        return sorted(sites, key=lambda s: s[1])

    def to_dot(self) -> str:
        """Render the dependency graph in Graphviz DOT format."""
        lines = ['digraph dependencies {']
        for key in sorted(self.graph.nodes):
            kind = self.graph.nodes[key].get('kind', UNKNOWN)
            style = ', style=bold' if key in self.entry_points else ''
            lines.append(f'  "{_dot_escape(key)}" [label="{_dot_escape(key)}\\n({kind})"{style}];')
        for source, target in sorted(self.graph.edges):
            lines.append(f'  "{_dot_escape(source)}" -> "{_dot_escape(target)}";')
        lines.append('}')
        return '\n'.join(lines) + '\n'


def _dot_escape(text: str) -> str:
    return text.replace('\\', '\\\\').replace('"', '\\"')
