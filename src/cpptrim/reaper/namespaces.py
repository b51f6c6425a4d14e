"""Namespace cleanup after pruning: drop emptied blocks, join reopenings."""
import logging
import re
from typing import Dict, Iterable, List, Optional, Set

from ..analyzer.declarations import USING_DIRECTIVE, NAMESPACE_ALIAS, RangeSet, SourceRange
from ..analyzer.extractor import NamespaceBlock
from .pruner import widen_removal
from .rewriter import SmartRewriter

logger = logging.getLogger(__name__)

_COMMENT = re.compile(rb'//[^\n]*|/\*.*?\*/', re.DOTALL)


class NamespaceMerger:
    """Second pass over namespace blocks.

    Reads only removed ranges and block ranges: it never changes which
    declarations are used.
    """

    def __init__(self, source: bytes, blocks: List[NamespaceBlock], rewriter: SmartRewriter,
                 scheduled: Optional[Iterable[SourceRange]] = None,
                 required_namespaces: Optional[Set[str]] = None):
        """Initialize merger.

        Args:
            source: Original buffer
            blocks: Namespace and linkage blocks in document order
            rewriter: Rewriter holding the pruner's deletions
            scheduled: Ranges other passes will delete later (inactive branches, directives)
            required_namespaces: Namespaces named by surviving using-directives or aliases
        """
        self.source = source
        self.blocks = blocks
        self.rewriter = rewriter
        self.scheduled = list(scheduled or [])
        self.required = set(required_namespaces or ())
        self.deleted: List[NamespaceBlock] = []
        self.merged = 0

    def run(self):
        removed = self.rewriter.removed_ranges().union(self.scheduled)
        deleted = self._delete_empty(removed)
        removed = removed.union(self._extend(b.range) for b in deleted)
        self._collapse(removed, set(deleted))
        logger.debug("Namespaces: %d empty blocks deleted, %d reopenings merged",
                     len(self.deleted), self.merged)

    def _delete_empty(self, removed: RangeSet) -> List[NamespaceBlock]:
        first_blocks: Dict[str, NamespaceBlock] = {}
        for block in self.blocks:
            if block.is_namespace:
                first_blocks.setdefault(block.name, block)
        protected = {first_blocks[name] for name in self.required if name in first_blocks}

        deleted: Set[NamespaceBlock] = set()
        # Innermost blocks first
        for block in sorted(self.blocks, key=_depth, reverse=True):
            if block in protected or any(child not in deleted for child in block.children):
                continue
            inner = SourceRange(block.body.start + 1, max(block.body.start + 1, block.body.end - 1))
            cleared = removed.union(self._extend(child.range) for child in block.children
                                    if child in deleted)
            if self._is_blank(inner, cleared):
                deleted.add(block)

        # Only the outermost deleted block needs an edit
        for block in self.blocks:
            if block in deleted and not _has_deleted_ancestor(block, deleted):
                span = self._extend(block.range)
                self.rewriter.remove_range(span.start, span.end)
                self.deleted.append(block)
        return [b for b in self.blocks if b in deleted]

    def _collapse(self, removed: RangeSet, deleted: Set[NamespaceBlock]):
        """Join ``namespace a {...} namespace a {...}`` into one block."""
        siblings: Dict[Optional[NamespaceBlock], List[NamespaceBlock]] = {}
        for block in self.blocks:
            if block in deleted or _has_deleted_ancestor(block, deleted):
                continue
            siblings.setdefault(block.parent, []).append(block)
        for group in siblings.values():
            for first, second in zip(group, group[1:]):
                if not first.is_namespace or first.header != second.header:
                    continue
                if not first.header or not second.header:
                    continue
                between = SourceRange(first.range.end, second.range.start)
                if not self._is_blank(between, removed):
                    continue
                # Delete from the closing brace of the first block to the opening brace of the second
                self.rewriter.remove_range(first.body.end - 1, second.body.start + 1)
                self.merged += 1

    def _is_blank(self, rng: SourceRange, removed: RangeSet) -> bool:
        """True if nothing but whitespace and comments of ``rng`` survives."""
        pos = rng.start
        pieces = []
        for cut in removed:
            if cut.end <= pos:
                continue
            if cut.start >= rng.end:
                break
            if cut.start > pos:
                pieces.append(self.source[pos:cut.start])
            pos = max(pos, cut.end)
        if pos < rng.end:
            pieces.append(self.source[pos:rng.end])
        text = _COMMENT.sub(b'', b''.join(pieces))
        return text.strip(b' \t\r\n\f\v;') == b''

    def _extend(self, rng: SourceRange) -> SourceRange:
        return widen_removal(self.source, rng, swallow_semicolons=False)


def required_namespaces(occurrences, resolver) -> Set[str]:
    """Namespaces a surviving using-directive or namespace alias names."""
    required = set()
    for occ in occurrences:
        if occ.kind in (USING_DIRECTIVE, NAMESPACE_ALIAS) and occ.using_target:
            name = resolver.resolve_namespace(occ.using_target, occ.scope)
            if name is not None:
                required.add(name)
    return required


def _depth(block: NamespaceBlock) -> int:
    depth = 0
    while block.parent is not None:
        block = block.parent
        depth += 1
    return depth


def _has_deleted_ancestor(block: NamespaceBlock, deleted) -> bool:
    parent = block.parent
    while parent is not None:
        if parent in deleted:
            return True
        parent = parent.parent
    return False
