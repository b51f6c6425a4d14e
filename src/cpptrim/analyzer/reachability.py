"""Reachability over the declaration dependency graph."""
import logging
from collections import deque
from typing import Iterable, Set

from .declarations import ROOT, DeclarationModel

logger = logging.getLogger(__name__)


class ReachabilityEngine:
    """Computes the set of declarations transitively used from the entry points."""

    def __init__(self, model: DeclarationModel):
        self.model = model

    def compute(self, seeds: Iterable[str] = None) -> Set[str]:
        """Worklist search from the entry points.

        Cycles and self-loops are handled by the visited set. Traversal
        order has no influence on the result.

        Args:
            seeds: Identities to start from (defaults to the model's entry points)

        Returns:
            Set of used identity keys
        """
        if seeds is None:
            seeds = self.model.entry_points
        used: Set[str] = set()
        queue = deque(key for key in seeds if key != ROOT)
        while queue:
            key = queue.popleft()
            if key in used:
                continue
            used.add(key)
            for target in self.model.uses(key):
                if target not in used:
                    queue.append(target)
        logger.debug("Reachability: %d of %d declarations used",
                     len(used & set(self.model.decls)), len(self.model.decls))
        return used
