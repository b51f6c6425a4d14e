"""Conflict-safe application of text edits to the original buffer."""
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..analyzer.declarations import RangeSet, SourceRange, merge_ranges
from ..errors import RewriteError

logger = logging.getLogger(__name__)

DEGRADED_OUTPUT = "Inliner error"

DELETE = 'delete'
INSERT = 'insert'


@dataclass(frozen=True)
class Edit:
    """A delete-range or insert-at-offset edit, in original buffer offsets."""
    kind: str
    start: int
    end: int
    text: bytes = b''


class SmartRewriter:
    """Collects edits from every pass and applies them once.

    Overlapping and adjacent deletions are merged so each region is removed
    exactly once; insertions that fall strictly inside a deleted region are
    dropped. With no edits the result is byte-identical to the input.
    """

    def __init__(self, source: Optional[bytes]):
        """Initialize rewriter.

        Args:
            source: Original buffer (None when no buffer could be read)
        """
        self.source = source
        self.edits: List[Edit] = []
        self._result: Optional[bytes] = None

    def remove_range(self, start: int, end: int):
        """Schedule deletion of bytes [start, end)."""
        self.edits.append(Edit(DELETE, start, end))
        self._result = None

    def insert_text(self, offset: int, text: str | bytes):
        """Schedule insertion of ``text`` before the byte at ``offset``."""
        if isinstance(text, str):
            text = text.encode('utf-8', errors='surrogateescape')
        self.edits.append(Edit(INSERT, offset, offset, text))
        self._result = None

    def removed_ranges(self) -> RangeSet:
        """Union of every scheduled deletion that is well formed."""
        return RangeSet(SourceRange(e.start, e.end) for e in self.edits
                        if e.kind == DELETE and self._valid(e))

    def _valid(self, edit: Edit) -> bool:
        if self.source is None:
            return False
        return 0 <= edit.start <= edit.end <= len(self.source)

    def apply_changes(self) -> bytes:
        """Apply all edits in a single forward pass.

        Returns:
            The rewritten buffer

        Raises:
            RewriteError: If there is no buffer or an edit lies outside it
        """
        if self.source is None:
            raise RewriteError("No source buffer to rewrite")
        for edit in self.edits:
            if not self._valid(edit):
                raise RewriteError(f"Edit {edit.kind} [{edit.start}, {edit.end}) outside buffer "
                                   f"of {len(self.source)} bytes")

        deletions = merge_ranges(SourceRange(e.start, e.end) for e in self.edits if e.kind == DELETE)
        insertions = sorted((e for e in self.edits if e.kind == INSERT), key=lambda e: e.start)

        source = self.source
        out = bytearray()
        pos = 0
        index = 0
        dropped = 0
        for rng in deletions:
            while index < len(insertions) and insertions[index].start <= rng.start:
                ins = insertions[index]
                out += source[pos:ins.start]
                out += ins.text
                pos = ins.start
                index += 1
            while index < len(insertions) and insertions[index].start < rng.end:
                dropped += 1
                index += 1
            out += source[pos:rng.start]
            pos = rng.end
        for ins in insertions[index:]:
            out += source[pos:ins.start]
            out += ins.text
            pos = ins.start
        out += source[pos:]

        if dropped:
            logger.debug("Dropped %d insertions inside deleted text", dropped)
        logger.debug("Applied %d deletions (%d merged regions), %d insertions",
                     sum(1 for e in self.edits if e.kind == DELETE), len(deletions),
                     len(insertions) - dropped)
        self._result = bytes(out)
        return self._result

    def get_result(self) -> str:
        """Rewritten text, or DEGRADED_OUTPUT if the edits could not be applied."""
        try:
            result = self._result if self._result is not None else self.apply_changes()
        except RewriteError as e:
            logger.error("Rewrite failed: %s", e)
            return DEGRADED_OUTPUT
        return result.decode('utf-8', errors='surrogateescape')
