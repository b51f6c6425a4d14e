"""Removal of inactive preprocessor branches and dead macro definitions."""
import logging
from typing import Iterable, List, Optional

from ..analyzer.declarations import RangeSet, SourceRange
from ..analyzer.preprocessor import ConditionalGroup, MacroRecord, PreprocessorCallbacks
from .rewriter import SmartRewriter

logger = logging.getLogger(__name__)


class RemoveInactivePreprocessorBlocks(PreprocessorCallbacks):
    """Listens to preprocessor events, then prunes once the removed set is final.

    Recording and acting are separate phases: events only accumulate state,
    and nothing is scheduled for deletion until finalize() receives the
    ranges every other pass has removed.
    """

    def __init__(self, source: bytes, rewriter: SmartRewriter,
                 macros_to_keep: Optional[Iterable[str]] = None):
        """Initialize tracker.

        Args:
            source: Original buffer
            rewriter: Rewriter collecting the deletions
            macros_to_keep: Macro names whose definitions are never removed
        """
        self.source = source
        self.rewriter = rewriter
        self.macros_to_keep = set(macros_to_keep or ())
        self.groups: List[ConditionalGroup] = []
        self.definitions: List[MacroRecord] = []
        self.removed_macros: List[MacroRecord] = []

    # Recording ---------------------------------------------------------

    def macro_defined(self, record: MacroRecord):
        self.definitions.append(record)

    def conditional_group(self, group: ConditionalGroup):
        self.groups.append(group)

    def scheduled_ranges(self) -> List[SourceRange]:
        """Text finalize() will delete for conditional groups.

        For each group the scanner evaluated: every directive line and the
        body of every branch not taken.
        """
        ranges: List[SourceRange] = []
        for group in self.groups:
            if not group.evaluated:
                continue
            for branch in group.branches:
                ranges.append(branch.header)
                if not branch.taken:
                    ranges.append(branch.body)
            if group.endif is not None:
                ranges.append(group.endif)
        return ranges

    # Acting ------------------------------------------------------------

    def finalize(self, removed: RangeSet):
        """Schedule branch and macro deletions.

        Args:
            removed: Ranges already deleted by the declaration passes
        """
        scheduled = self.scheduled_ranges()
        for rng in scheduled:
            self.rewriter.remove_range(rng.start, rng.end)
        skipped = sum(1 for g in self.groups if not g.evaluated)
        if skipped:
            logger.debug("Left %d conditional groups with unevaluable conditions untouched", skipped)

        gone = removed.union(scheduled)
        pending = [r for r in self.definitions
                   if not r.is_predefined and r.name not in self.macros_to_keep]
        # Deleting one definition can leave another macro without live expansions
        changed = True
        while changed:
            changed = False
            for record in list(pending):
                if gone.covers(record.definition):
                    pending.remove(record)
                    continue
                if all(gone.covers(site) for site in record.expansions):
                    self.rewriter.remove_range(record.definition.start, record.definition.end)
                    self.removed_macros.append(record)
                    gone = gone.union([record.definition])
                    pending.remove(record)
                    changed = True
        logger.debug("Preprocessor: %d conditional groups, %d of %d macro definitions removed",
                     len(self.groups), len(self.removed_macros), len(self.definitions))
