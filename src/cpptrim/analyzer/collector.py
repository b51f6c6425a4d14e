"""Dependency collection: declarations, edges, entry points and diagnostics."""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple
from tree_sitter import Node

from ..errors import CompilationError
from .declarations import (CLASS, ENUM, FUNCTION, MACRO_INVOCATION, NAMESPACE_ALIAS, ROOT, TYPEDEF,
                           USING, USING_DIRECTIVE, VARIABLE, DeclarationModel, Occurrence,
                           RangeSet, SourceRange)
from .extractor import DeclarationExtractor, Extraction
from .parser import (QUALIFIED_TYPES, LanguageParser, line_start, node_text,
                     qualified_parts)
from .preprocessor import PreprocessorScanner
from .scopes import ENUMERATOR, MEMBER, ScopeResolver
from .scopes import USING as USING_ALIAS

logger = logging.getLogger(__name__)

# Subtrees never containing references to declarations
OPAQUE_TYPES = {
    'string_literal', 'raw_string_literal', 'char_literal', 'concatenated_string',
    'system_lib_string', 'number_literal', 'comment', 'user_defined_literal',
    'preproc_def', 'preproc_function_def', 'preproc_include', 'preproc_call',
    'field_identifier', 'operator_name', 'primitive_type', 'auto',
    'template_parameter_list',
}

REFERENCE_TYPES = {'identifier', 'type_identifier', 'namespace_identifier'}

# Initializers that may run arbitrary code at static-initialization time
SIDE_EFFECT_TYPES = {'call_expression', 'lambda_expression', 'new_expression', 'argument_list'}

# Errors inside these are tolerated: they never affect which items exist
BODY_TYPES = {'compound_statement', 'field_declaration_list'}


@dataclass
class Diagnostic:
    """One syntax problem in the input."""
    severity: str  # 'error' or 'warning'
    offset: int
    line: int
    message: str

    def __str__(self) -> str:
        return f"line {self.line}: {self.severity}: {self.message}"


class Diagnostics:
    """Collects syntax diagnostics; can be suppressed for code that may be discarded."""

    def __init__(self):
        self.errors: List[Diagnostic] = []
        self.warnings: List[Diagnostic] = []
        self.suppressed_count = 0
        self._suppress_depth = 0

    @contextmanager
    def suppressed(self) -> Iterator[None]:
        """Drop every diagnostic reported inside the ``with`` block."""
        self._suppress_depth += 1
        try:
            yield
        finally:
            self._suppress_depth -= 1

    @property
    def is_suppressed(self) -> bool:
        return self._suppress_depth > 0

    def report(self, severity: str, offset: int, line: int, message: str):
        if self.is_suppressed:
            self.suppressed_count += 1
            logger.debug("Suppressed %s at line %d: %s", severity, line, message)
            return
        diagnostic = Diagnostic(severity, offset, line, message)
        if severity == 'error':
            self.errors.append(diagnostic)
        else:
            self.warnings.append(diagnostic)
            logger.warning("Syntax problem tolerated at %s", diagnostic)


class DependenciesCollector:
    """Builds the DeclarationModel for one translation unit.

    Collection runs in phases over the tree:

    1. Extract and classify top-level items in active code.
    2. Force-parse delayed function templates with diagnostics suppressed,
       fixing their extents by brace matching.
    3. Register identities and lookup entries.
    4. Link every reference to an edge; seed entry points.
    5. Check for syntax errors outside tolerated regions.
    """

    def __init__(self, source: bytes, scanner: PreprocessorScanner,
                 entry_points: Sequence[str] = ('main',)):
        """Initialize collector.

        Args:
            source: Original buffer
            scanner: Preprocessor scanner that already ran over the tree
            entry_points: Qualified names that must be kept (``main`` and pinned names)
        """
        self.source = source
        self.scanner = scanner
        self.entry_names = list(entry_points)
        self.model = DeclarationModel()
        self.resolver = ScopeResolver()
        self.diagnostics = Diagnostics()
        self.extraction: Optional[Extraction] = None
        self._forced: Dict[Occurrence, Tuple[Node, int]] = {}
        self._delayed_extents: List[SourceRange] = []
        self._delayed_parser: Optional[LanguageParser] = None

    def collect(self, root: Node) -> DeclarationModel:
        """Run all phases.

        Args:
            root: translation_unit node

        Returns:
            Populated DeclarationModel

        Raises:
            CompilationError: If active code outside function templates has syntax errors
        """
        extractor = DeclarationExtractor(self.source, self.scanner.inactive, self.scanner.expansion_sites)
        self.extraction = extractor.extract(root)
        occurrences = self._force_delayed(self.extraction.occurrences)
        self.extraction.occurrences = occurrences
        surviving = set(occurrences)
        for block in self.extraction.blocks:
            block.items = [occ for occ in block.items if occ in surviving]

        self._register(occurrences)
        for occ in occurrences:
            self._link(occ)
        self._seed_entry_points()

        self._check_syntax(root)
        if self.diagnostics.errors:
            first = self.diagnostics.errors[0]
            raise CompilationError(
                f"{len(self.diagnostics.errors)} syntax error(s); first at {first}",
                diagnostics=self.diagnostics.errors,
            )

        logger.debug("Collected %d occurrences, %d declarations, %d edges, %d entry points",
                     len(self.model.occurrences), len(self.model.decls),
                     self.model.graph.number_of_edges(), len(self.model.entry_points))
        return self.model

    # ------------------------------------------------------------------
    # Delayed templates
    # ------------------------------------------------------------------

    def _force_delayed(self, occurrences: List[Occurrence]) -> List[Occurrence]:
        absorbed: Set[Occurrence] = set()
        for occ in occurrences:
            if occ in absorbed or not occ.is_delayed:
                continue
            extent = self._true_extent(occ)
            if self._delayed_parser is None:
                self._delayed_parser = LanguageParser()
            tree = self._delayed_parser.parse_source(self.source[extent.start:extent.end])
            with self.diagnostics.suppressed():
                self._check_tree(tree.root_node, extent.start, ())
            self._forced[occ] = (tree.root_node, extent.start)
            self._delayed_extents.append(extent)
            if extent.end > occ.range.end:
                for other in occurrences:
                    if other is not occ and occ.range.start <= other.range.start < extent.end:
                        absorbed.add(other)
                logger.debug("Delayed template at byte %d extends to %d (absorbed %d items)",
                             occ.range.start, extent.end, len(absorbed))
            occ.range = extent
        return [occ for occ in occurrences if occ not in absorbed]

    def _true_extent(self, occ: Occurrence) -> SourceRange:
        body = occ.body
        if body is None or self.source[body.start_byte:body.start_byte + 1] != b'{':
            return occ.range
        end = match_braces(self.source, body.start_byte)
        if end is None:
            return occ.range
        return SourceRange(occ.range.start, max(end, occ.range.end))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _register(self, occurrences: List[Occurrence]):
        for block in self.extraction.blocks:
            if block.is_namespace:
                self.resolver.declare_namespace(block.name)
                self.model.namespaces.add(block.name)
        for scope, namespace in self.extraction.transparent_namespaces:
            self.resolver.add_using_directive(scope, namespace.split('::')[len(scope):])

        pending_using = []
        for occ in occurrences:
            if occ.kind == USING:
                pending_using.append(occ)
                continue
            if occ.kind == USING_DIRECTIVE:
                if self.resolver.add_using_directive(occ.scope, occ.using_target) is None:
                    logger.debug("using namespace %s names no namespace in this file",
                                 '::'.join(occ.using_target))
                continue
            if occ.kind == NAMESPACE_ALIAS:
                if occ.alias_name:
                    self.resolver.declare_namespace_alias(occ.scope, occ.alias_name, occ.using_target)
                continue
            self._declare(occ)

        for occ in pending_using:
            targets = self.resolver.resolve(occ.using_target, occ.scope) if occ.using_target else set()
            targets.discard(ROOT)
            if targets:
                occ.keys = tuple(sorted(targets))
                alias = '::'.join(occ.scope + (occ.using_target[-1],))
                for target in targets:
                    self.resolver.declare(alias, target, USING_ALIAS)
            else:
                occ.always_keep = True

        for occ in occurrences:
            if self._in_foreign_scope(occ):
                occ.always_keep = True
            self.model.add_occurrence(occ)

    def _declare(self, occ: Occurrence):
        for key in occ.keys:
            self.resolver.declare(key, key)
        if not occ.keys:
            return
        key = occ.key
        if occ.kind == CLASS:
            self.resolver.declare_class(key)
            for member in occ.member_names:
                self.resolver.declare(key + '::' + member, key, MEMBER)
        if occ.kind == ENUM:
            for name in occ.scoped_enumerators:
                self.resolver.declare(key + '::' + name, key, ENUMERATOR)
            for name in occ.unscoped_enumerators:
                self.resolver.declare(key + '::' + name, key, ENUMERATOR)
                self.resolver.declare('::'.join(occ.scope + (name,)), key, ENUMERATOR)

    def _in_foreign_scope(self, occ: Occurrence) -> bool:
        """Items extending the standard library or unknown scopes cannot be judged."""
        if occ.scope and occ.scope[0] == 'std':
            return True
        for key in occ.keys:
            parts = key.split('::')
            qualifier = parts[len(occ.scope):-1]
            if qualifier and not self.resolver.is_user_scope(qualifier, occ.scope):
                return True
        return False

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def _link(self, occ: Occurrence):
        if occ.kind in (USING_DIRECTIVE, NAMESPACE_ALIAS):
            return
        keys = set(occ.keys)
        source = occ.key if occ.keys else ROOT

        for key in occ.keys[1:]:
            self.model.add_dependency(occ.key, key)
            self.model.add_dependency(key, occ.key)

        if occ.kind == USING:
            return

        root, shift = self._forced.get(occ, (occ.node, 0))
        for target, site in self._references(root, occ, shift):
            if target in keys:
                continue
            self.model.add_dependency(source, target, site)
            if source == ROOT:
                self.model.add_entry_point(target)

        self._link_member_definition(occ)
        if occ.kind == FUNCTION and occ.key and occ.key.rsplit('::', 1)[-1].startswith('operator'):
            self._link_free_operator(occ)
        if occ.kind == VARIABLE and occ.is_definition and self._has_side_effects(occ):
            occ.always_keep = True

        if occ.always_keep and occ.keys:
            for key in occ.keys:
                self.model.add_entry_point(key)

    def _link_member_definition(self, occ: Occurrence):
        """Out-of-line members and their class keep each other alive."""
        for key in occ.keys:
            owner = key.rsplit('::', 1)[0] if '::' in key else None
            if owner and owner in self.resolver.classes and owner in self.model.decls and owner != key:
                self.model.add_dependency(key, owner)
                self.model.add_dependency(owner, key)

    def _link_free_operator(self, occ: Occurrence):
        """Operators are called implicitly: keep them whenever an operand type is kept."""
        owner = occ.key.rsplit('::', 1)[0] if '::' in occ.key else None
        if owner and owner in self.resolver.classes:
            return
        root, shift = self._forced.get(occ, (occ.node, 0))
        operand_types = set()
        for params in _find_all(root, 'parameter_list'):
            for target, _ in self._references(params, occ, shift):
                decl = self.model.decls.get(target)
                if decl is not None and decl.kind in (CLASS, ENUM, TYPEDEF) and target not in occ.keys:
                    operand_types.add(target)
            break
        if not operand_types:
            occ.always_keep = True
            return
        for target in operand_types:
            self.model.add_dependency(target, occ.key)

    def _has_side_effects(self, occ: Occurrence) -> bool:
        node = occ.node
        for declarator in _find_all(node, 'init_declarator'):
            value = declarator.child_by_field_name('value')
            if value is not None and any(True for _ in _find_types(value, SIDE_EFFECT_TYPES)):
                return True
        type_node = occ.node.child_by_field_name('type')
        if type_node is None:
            return False
        # Objects of classes with user constructors or destructors run code
        for target in self.resolver.resolve_any_prefix(qualified_parts(type_node), occ.lookup_scope):
            canonical = self.model.canonical(target)
            if canonical is None or canonical.kind != CLASS:
                continue
            short = target.rsplit('::', 1)[-1]
            for definition in self.model.decls[target].definitions:
                if short in definition.member_names or '~' + short in definition.member_names:
                    return True
        return False

    def _references(self, root: Node, occ: Occurrence, shift: int) -> Iterator[Tuple[str, int]]:
        """Yield (identity, byte offset) for every name referenced under ``root``."""
        scope = occ.lookup_scope
        params = occ.template_params
        inactive = self.scanner.inactive
        stack = [root]
        while stack:
            node = stack.pop()
            start = node.start_byte + shift
            if inactive.contains(start) and node is not root:
                continue
            t = node.type
            if node.child_count == 0 and start in self.scanner.expansion_sites:
                for name in self.scanner.body_names(start):
                    for target in self.resolver.resolve([name], scope):
                        yield target, start
            if t in OPAQUE_TYPES:
                continue
            if t == 'field_expression':
                argument = node.child_by_field_name('argument')
                if argument is not None:
                    stack.append(argument)
                continue
            if t in QUALIFIED_TYPES:
                parts = qualified_parts(node)
                if parts and parts[0] not in params:
                    for target in self.resolver.resolve_any_prefix(parts, scope):
                        yield target, start
                stack.extend(_template_arguments(node))
                continue
            if t in REFERENCE_TYPES:
                name = node_text(node)
                if name not in params:
                    for target in self.resolver.resolve([name], scope):
                        yield target, start
                continue
            stack.extend(reversed(node.children))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _seed_entry_points(self):
        found = False
        for name in self.entry_names:
            if name in self.model.decls:
                targets = {name}
            else:
                targets = self.resolver.resolve(name.split('::'), ())
            for target in targets:
                self.model.add_entry_point(target)
                found = True
        if not found:
            logger.warning("None of the entry points %s is declared; only always-kept code survives",
                           ', '.join(self.entry_names))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _check_syntax(self, root: Node):
        # Delayed templates were checked on their own; macro output is opaque
        macro_items = [occ.range for occ in self.extraction.occurrences
                       if occ.kind == MACRO_INVOCATION]
        skip = RangeSet(self._delayed_extents + macro_items)
        self._check_tree(root, 0, skip)

    def _check_tree(self, root: Node, shift: int, skip: Iterable):
        stack: List[Tuple[Node, bool]] = [(root, False)]
        while stack:
            node, in_body = stack.pop()
            if not node.has_error and not node.is_missing:
                continue
            offset = node.start_byte + shift
            if self.scanner.inactive.contains(offset) or self.scanner.directive_lines.contains(offset):
                continue
            if skip and node is not root:
                # A missing token belongs to the text just before it
                if skip.contains(offset) or (node.is_missing and skip.contains(offset - 1)):
                    continue
            if node.is_error or node.is_missing:
                severity = 'warning' if in_body else 'error'
                line = self.source.count(b'\n', 0, line_start(self.source, offset)) + 1
                what = f"missing {node.type}" if node.is_missing else "unexpected input"
                snippet = self.source[offset:offset + 40].split(b'\n', 1)[0]
                self.diagnostics.report(severity, offset, line,
                                        f"{what} near '{snippet.decode('utf-8', errors='replace')}'")
                if node.is_missing:
                    continue
            child_in_body = in_body or node.type in BODY_TYPES
            for child in reversed(node.children):
                stack.append((child, child_in_body))


def match_braces(source: bytes, open_pos: int) -> Optional[int]:
    """Offset just past the brace matching the one at ``open_pos``.

    String and character literals and comments are skipped.

    Returns:
        End offset, or None if the braces never balance
    """
    depth = 0
    pos = open_pos
    length = len(source)
    while pos < length:
        ch = source[pos:pos + 1]
        if ch == b'{':
            depth += 1
        elif ch == b'}':
            depth -= 1
            if depth == 0:
                return pos + 1
        elif ch in (b'"', b"'"):
            pos = _skip_literal(source, pos, ch)
            continue
        elif source.startswith(b'//', pos):
            nl = source.find(b'\n', pos)
            pos = length if nl == -1 else nl
            continue
        elif source.startswith(b'/*', pos):
            close = source.find(b'*/', pos + 2)
            pos = length if close == -1 else close + 2
            continue
        pos += 1
    return None


def _skip_literal(source: bytes, pos: int, quote: bytes) -> int:
    if quote == b'"' and pos > 0 and source[pos - 1:pos] == b'R':
        # Raw string: R"delim( ... )delim"
        paren = source.find(b'(', pos)
        if paren != -1:
            closing = b')' + source[pos + 1:paren] + b'"'
            end = source.find(closing, paren)
            if end != -1:
                return end + len(closing)
    pos += 1
    while pos < len(source):
        ch = source[pos:pos + 1]
        if ch == b'\\':
            pos += 2
            continue
        if ch == quote or ch == b'\n':
            return pos + 1
        pos += 1
    return pos


def _find_all(root: Node, node_type: str) -> Iterator[Node]:
    yield from _find_types(root, {node_type})


def _find_types(root: Node, node_types: Set[str]) -> Iterator[Node]:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in node_types:
            yield node
        stack.extend(reversed(node.children))


def _template_arguments(node: Node) -> List[Node]:
    """Template argument lists and decltype operands nested in a qualified name."""
    found = []
    stack = list(node.children)
    while stack:
        child = stack.pop()
        if child.type in ('template_argument_list', 'decltype'):
            found.append(child)
            continue
        stack.extend(child.children)
    return found
