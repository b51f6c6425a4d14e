"""Name lookup: spelled names at a scope to declaration identities."""
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

# Alias kinds
DIRECT = 'direct'        # the identity's own qualified name
MEMBER = 'member'        # class member, resolves to the enclosing class
ENUMERATOR = 'enumerator'
USING = 'using'          # introduced by a using-declaration


class ScopeResolver:
    """Resolves names the way unqualified and qualified lookup would, approximately.

    Lookup tries the innermost enclosing scope first and walks outwards,
    then namespaces nominated by using-directives, then falls back to a
    suffix match over every known qualified name. The fallback
    over-approximates, which is the safe direction: an extra edge can only
    keep more code.
    """

    def __init__(self):
        # qualified spelling -> {identity: alias kind}
        self.known: Dict[str, Dict[str, str]] = {}
        self.namespaces: Set[str] = set()
        self.classes: Set[str] = set()
        self.namespace_aliases: Dict[str, str] = {}
        self.using_directives: Dict[Tuple[str, ...], List[str]] = {}
        self._suffix_index: Dict[str, Set[str]] = {}

    def declare(self, qualified: str, identity: str, kind: str = DIRECT):
        """Make ``qualified`` resolve to ``identity``."""
        entry = self.known.setdefault(qualified, {})
        entry.setdefault(identity, kind)
        if kind != MEMBER:
            last = qualified.rsplit('::', 1)[-1]
            self._suffix_index.setdefault(last, set()).add(qualified)

    def declare_namespace(self, qualified: str):
        self.namespaces.add(qualified)

    def declare_class(self, qualified: str):
        self.classes.add(qualified)

    def declare_namespace_alias(self, scope: Sequence[str], alias: str, target: Sequence[str]):
        name = '::'.join(tuple(scope) + (alias,))
        resolved = self.resolve_namespace(target, scope) or '::'.join(target)
        self.namespace_aliases[name] = resolved

    def add_using_directive(self, scope: Sequence[str], target: Sequence[str]) -> Optional[str]:
        """Record ``using namespace target;`` at ``scope``.

        Returns:
            The qualified namespace nominated, or None if it is unknown
        """
        nominated = self.resolve_namespace(target, scope)
        if nominated is None:
            return None
        directives = self.using_directives.setdefault(tuple(scope), [])
        if nominated not in directives:
            directives.append(nominated)
        return nominated

    def resolve_namespace(self, parts: Sequence[str], scope: Sequence[str]) -> Optional[str]:
        parts = list(parts)
        if not parts:
            return None
        for prefix in _prefixes(scope):
            candidate = '::'.join(prefix + parts)
            if candidate in self.namespaces:
                return candidate
            if candidate in self.namespace_aliases:
                return self.namespace_aliases[candidate]
        return None

    def is_user_scope(self, parts: Sequence[str], scope: Sequence[str]) -> bool:
        """True if ``parts`` names a namespace or class declared in this file."""
        if self.resolve_namespace(parts, scope) is not None:
            return True
        for prefix in _prefixes(scope):
            if '::'.join(prefix + list(parts)) in self.classes:
                return True
        return False

    def resolve(self, parts: Sequence[str], scope: Sequence[str]) -> Set[str]:
        """Identities a (possibly qualified) name may refer to.

        Args:
            parts: Name components, e.g. ``['ns', 'A']``
            scope: Enclosing scope of the reference, outermost first

        Returns:
            Set of identity keys, empty if the name is not declared here
        """
        parts = [p for p in parts if p]
        if not parts:
            return set()
        parts = self._expand_alias(parts, scope)

        for prefix in _prefixes(scope):
            hit = self.known.get('::'.join(prefix + parts))
            if hit:
                return set(hit)

        for prefix in _prefixes(scope):
            for namespace in self._directives_at(prefix):
                hit = self.known.get(namespace + '::' + '::'.join(parts))
                if hit:
                    return set(hit)

        return self._fallback(parts)

    def resolve_any_prefix(self, parts: Sequence[str], scope: Sequence[str]) -> Set[str]:
        """Resolve the whole name, else the longest resolvable qualifier.

        ``A::value`` where only ``A`` is known still refers to ``A``.
        """
        parts = list(parts)
        while parts:
            found = self.resolve(parts, scope)
            if found:
                return found
            parts = parts[:-1]
        return set()

    def _expand_alias(self, parts: List[str], scope: Sequence[str]) -> List[str]:
        if len(parts) < 2:
            return parts
        for prefix in _prefixes(scope):
            target = self.namespace_aliases.get('::'.join(prefix + parts[:1]))
            if target is not None:
                return target.split('::') + parts[1:]
        return parts

    def _directives_at(self, prefix: List[str]) -> Iterable[str]:
        seen = set()
        pending = list(self.using_directives.get(tuple(prefix), []))
        # Directives are transitive
        while pending:
            namespace = pending.pop(0)
            if namespace in seen:
                continue
            seen.add(namespace)
            yield namespace
            pending.extend(self.using_directives.get(tuple(namespace.split('::')), []))

    def _fallback(self, parts: List[str]) -> Set[str]:
        joined = '::'.join(parts)
        found: Set[str] = set()
        for qualified in self._suffix_index.get(parts[-1], ()):
            if qualified == joined or qualified.endswith('::' + joined):
                for identity, kind in self.known[qualified].items():
                    if kind != MEMBER:
                        found.add(identity)
        if found:
            logger.debug("Resolved %s by suffix match to %s", joined, sorted(found))
        return found


def _prefixes(scope: Sequence[str]) -> Iterable[List[str]]:
    """Scope prefixes, innermost first, ending with the global scope."""
    scope = list(scope)
    for i in range(len(scope), -1, -1):
        yield scope[:i]
