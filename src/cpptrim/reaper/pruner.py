"""Lexical pruning: translate reachability into declaration removals."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from ..analyzer.declarations import (CLASS, ENUM, FUNCTION, ROOT, VARIABLE,
                                     DeclarationModel, Occurrence, RangeSet, SourceRange)
from ..analyzer.parser import line_start
from .rewriter import SmartRewriter

logger = logging.getLogger(__name__)

# Kinds whose non-defining occurrences may be redundant
REFINABLE_KINDS = {CLASS, ENUM, FUNCTION, VARIABLE}

_BLANK = b' \t'


@dataclass
class RemovedDeclarations:
    """What the pruner removed, in original buffer offsets."""
    keys: Set[str] = field(default_factory=set)
    ranges: List[SourceRange] = field(default_factory=list)
    unused: List[Occurrence] = field(default_factory=list)
    redundant: List[Occurrence] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.unused) + len(self.redundant)


class LexicalPruner:
    """Decides per lexical occurrence whether it is removed.

    An occurrence of an unused identity is removed whole. For used
    identities, a non-defining occurrence (forward declaration, prototype,
    extern variable) is removed when a matching definition makes it
    redundant. Defining occurrences of used identities always survive.
    """

    def __init__(self, source: bytes, model: DeclarationModel, used: Set[str],
                 rewriter: SmartRewriter):
        self.source = source
        self.model = model
        self.used = used
        self.rewriter = rewriter
        self.removed = RemovedDeclarations()

    def run(self) -> RemovedDeclarations:
        """Record removal decisions for every occurrence.

        Unused occurrences are decided first. Redundancy is then decided in
        reverse document order, so a use inside a later occurrence that is
        itself removed no longer keeps a forward declaration alive.
        """
        for occ in self.model.occurrences:
            if occ.always_keep or not occ.keys:
                continue
            if not any(key in self.used for key in occ.keys):
                self._remove(occ)
                self.removed.unused.append(occ)
                self.removed.keys.update(occ.keys)

        removed = RangeSet(self.removed.ranges)
        for occ in reversed(self.model.occurrences):
            if occ.always_keep or not occ.keys or removed.covers(occ.range):
                continue
            if self._is_redundant(occ, removed):
                self._remove(occ)
                self.removed.redundant.append(occ)
                removed = removed.union([occ.range])
        self.removed.redundant.reverse()
        logger.debug("Pruner: %d unused and %d redundant occurrences removed",
                     len(self.removed.unused), len(self.removed.redundant))
        return self.removed

    def _remove(self, occ: Occurrence):
        self.removed.ranges.append(occ.range)

    def _is_redundant(self, occ: Occurrence, removed: RangeSet) -> bool:
        if occ.is_definition or occ.kind not in REFINABLE_KINDS:
            return False
        if occ.has_default_args or len(occ.keys) != 1:
            return False
        definition = self._matching_definition(occ)
        if definition is None:
            return False
        if occ.range.start >= definition.range.end:
            return True
        # A use between the declaration and the definition needs the declaration
        for source, offset in self.model.reference_sites(occ.key):
            if source != ROOT and source not in self.used:
                continue
            if removed.contains(offset):
                continue
            if occ.range.end <= offset < definition.range.start:
                return False
        return True

    def _matching_definition(self, occ: Occurrence) -> Optional[Occurrence]:
        decl = self.model.decls.get(occ.key)
        if decl is None:
            return None
        for definition in decl.definitions:
            if definition is occ or definition.kind != occ.kind:
                continue
            if definition.is_template != occ.is_template:
                continue
            if definition.signature == occ.signature:
                return definition
        return None

    def finalize(self):
        """Emit delete edits, widened so the remaining text stays tidy."""
        for rng in self.removed.ranges:
            span = widen_removal(self.source, rng)
            self.rewriter.remove_range(span.start, span.end)


def widen_removal(source: bytes, rng: SourceRange, swallow_semicolons: bool = True) -> SourceRange:
    """Widen a removed declaration over its terminator and surrounding blank space.

    The trailing ``;`` of class specifiers and stray empty declarations are
    swallowed, then trailing blanks and one line break. A declaration
    occupying whole lines takes its indentation too.
    """
    length = len(source)
    start, end = rng.start, rng.end

    pos = _skip_blanks(source, end)
    while swallow_semicolons and pos < length and source[pos:pos + 1] == b';':
        end = pos + 1
        pos = _skip_blanks(source, end)

    begin = line_start(source, start)
    begins_line = source[begin:start].strip(_BLANK) == b''
    if source.startswith(b'\r\n', pos):
        end = pos + 2
    elif source.startswith(b'\n', pos) or pos == length:
        end = min(pos + 1, length)
    elif begins_line:
        # more code follows on the same line
        return SourceRange(start, pos)
    else:
        return SourceRange(start, end)
    return SourceRange(begin if begins_line else start, end)


def _skip_blanks(source: bytes, pos: int) -> int:
    while pos < len(source) and source[pos:pos + 1] in (b' ', b'\t'):
        pos += 1
    return pos
