"""Preprocessor scanning: directive evaluation and macro event delivery.

The scanner walks the syntax tree in document order the way a preprocessor
walks tokens. It keeps a table of defined macros, evaluates conditional
inclusion groups against it, and reports what it sees to a
PreprocessorCallbacks listener:

- every conditional group (with each branch tagged taken / not taken),
- every macro definition and its replacement-text identifiers.

Expansion sites of defined macros in active code are recorded on the
MacroRecord itself.

Branch decisions come only from macro evaluation, never from declaration
reachability. A group whose condition cannot be evaluated keeps all its
branches; each of them is scanned from the macro table as it stood before
the group, and afterwards a name the branches disagree on is uncertain:
an expansion binds to every definition that may reach it, and a condition
testing the name is itself unevaluable.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple
from tree_sitter import Node

from .declarations import RangeSet, SourceRange
from .parser import (ALTERNATIVE_TYPES, CONDITIONAL_TYPES, LanguageParser,
                     line_end, line_start, node_text)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(rb'[A-Za-z_][A-Za-z0-9_]*')
_STRING_OR_CHAR = re.compile(rb'"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'')

# Leaves whose text is never a macro expansion
_OPAQUE_PARENTS = {
    'string_literal', 'raw_string_literal', 'char_literal',
    'system_lib_string', 'concatenated_string', 'user_defined_literal',
}


@dataclass(eq=False)
class MacroRecord:
    """One #define: name, definition range and expansion sites."""
    name: str
    definition: Optional[SourceRange]
    value: str = ''
    is_function_like: bool = False
    body_names: List[Tuple[str, int]] = field(default_factory=list)
    expansions: List[SourceRange] = field(default_factory=list)

    @property
    def is_predefined(self) -> bool:
        """Command-line and builtin macros have no text in the buffer."""
        return self.definition is None


@dataclass
class Branch:
    """One branch of a conditional-inclusion group."""
    header: SourceRange
    body: SourceRange
    taken: bool


@dataclass
class ConditionalGroup:
    """An #if/#ifdef ... #endif group."""
    range: SourceRange
    branches: List[Branch]
    endif: Optional[SourceRange]
    evaluated: bool = True

    @property
    def taken_branch(self) -> Optional[Branch]:
        return next((b for b in self.branches if b.taken), None)


class PreprocessorCallbacks:
    """Listener for preprocessor events. Subclasses override what they need."""

    def macro_defined(self, record: MacroRecord):
        pass

    def conditional_group(self, group: ConditionalGroup):
        pass


class Unevaluable(Exception):
    """A conditional expression the scanner cannot evaluate."""


class ConditionEvaluator:
    """Integer evaluation of #if expressions over the current macro table."""

    BINARY_OPS = {
        '+': lambda a, b: a + b,
        '-': lambda a, b: a - b,
        '*': lambda a, b: a * b,
        '/': lambda a, b: _c_div(a, b),
        '%': lambda a, b: _c_mod(a, b),
        '<<': lambda a, b: _c_shift(a, b, left=True),
        '>>': lambda a, b: _c_shift(a, b, left=False),
        '<': lambda a, b: int(a < b),
        '>': lambda a, b: int(a > b),
        '<=': lambda a, b: int(a <= b),
        '>=': lambda a, b: int(a >= b),
        '==': lambda a, b: int(a == b),
        '!=': lambda a, b: int(a != b),
        '&': lambda a, b: a & b,
        '^': lambda a, b: a ^ b,
        '|': lambda a, b: a | b,
    }

    def __init__(self, macros: Dict[str, MacroRecord], parser: LanguageParser,
                 undefined: Optional[Set[str]] = None,
                 uncertain: Optional[Dict[str, List[Optional[MacroRecord]]]] = None):
        self.macros = macros
        self.parser = parser
        self.undefined = undefined if undefined is not None else set()
        self.uncertain = uncertain if uncertain is not None else {}
        self._expanding: Set[str] = set()

    def evaluate(self, node: Optional[Node]) -> int:
        if node is None:
            raise Unevaluable('incomplete expression')
        t = node.type
        if t == 'number_literal':
            return _parse_int(node_text(node))
        if t == 'char_literal':
            return _parse_char(node_text(node))
        if t in ('true', 'false'):
            return int(t == 'true')
        if t == 'identifier':
            return self._evaluate_identifier(node_text(node))
        if t == 'preproc_defined':
            name = next((c for c in node.named_children if c.type == 'identifier'), None)
            if name is None:
                raise Unevaluable(node_text(node))
            return int(self.is_defined(node_text(name)))
        if t == 'parenthesized_expression':
            inner = [c for c in node.named_children if c.type != 'comment']
            if len(inner) != 1:
                raise Unevaluable(node_text(node))
            return self.evaluate(inner[0])
        if t == 'unary_expression':
            op = node_text(node.child_by_field_name('operator'))
            value = self.evaluate(node.child_by_field_name('argument'))
            if op == '!':
                return int(not value)
            if op == '-':
                return -value
            if op == '+':
                return value
            if op == '~':
                return ~value
            raise Unevaluable(op)
        if t == 'binary_expression':
            op = node_text(node.child_by_field_name('operator'))
            left = self.evaluate(node.child_by_field_name('left'))
            # Short-circuit like the real preprocessor
            if op == '&&':
                return int(bool(left) and bool(self.evaluate(node.child_by_field_name('right'))))
            if op == '||':
                return int(bool(left) or bool(self.evaluate(node.child_by_field_name('right'))))
            right = self.evaluate(node.child_by_field_name('right'))
            if op not in self.BINARY_OPS:
                raise Unevaluable(op)
            return self.BINARY_OPS[op](left, right)
        if t == 'conditional_expression':
            cond = self.evaluate(node.child_by_field_name('condition'))
            branch = node.child_by_field_name('consequence' if cond else 'alternative')
            return self.evaluate(branch)
        raise Unevaluable(f"{t}: {node_text(node)}")

    def _evaluate_identifier(self, name: str) -> int:
        if name == 'true':
            return 1
        if name == 'false':
            return 0
        if name in self.uncertain:
            raise Unevaluable(name)
        record = self.macros.get(name)
        if record is None:
            self.is_defined(name)
            return 0
        if record.is_function_like or not record.value.strip():
            raise Unevaluable(name)
        if name in self._expanding:
            # Self-referential macro: the name is not expanded again
            return 0
        self._expanding.add(name)
        try:
            return self.evaluate_text(record.value)
        finally:
            self._expanding.discard(name)

    def is_defined(self, name: str) -> bool:
        if name in self.uncertain:
            # Defined or undefined inside a group that was not evaluated
            raise Unevaluable(name)
        if name in self.macros:
            return True
        if is_reserved(name) and name not in self.undefined:
            # Compiler-provided macro this front end does not model
            raise Unevaluable(name)
        return False

    def evaluate_text(self, text: str) -> int:
        """Evaluate replacement text by parsing it as an #if condition."""
        tree = self.parser.parse_source(b'#if ' + text.encode('utf-8') + b'\n#endif\n')
        root = tree.root_node
        group = next((c for c in root.children if c.type == 'preproc_if'), None)
        if group is None or root.has_error:
            raise Unevaluable(text)
        return self.evaluate(group.child_by_field_name('condition'))


def is_reserved(name: str) -> bool:
    """Names reserved for the implementation: __x and _X."""
    return name.startswith('__') or (len(name) > 1 and name[0] == '_' and name[1].isupper())


def _c_div(a: int, b: int) -> int:
    if b == 0:
        raise Unevaluable('division by zero')
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _c_mod(a: int, b: int) -> int:
    return a - b * _c_div(a, b)


def _c_shift(a: int, b: int, left: bool) -> int:
    # Negative or over-wide counts are undefined for intmax_t
    if b < 0 or b >= 64:
        raise Unevaluable(f"shift count {b}")
    return a << b if left else a >> b


def _parse_int(text: str) -> int:
    literal = text.replace("'", '').rstrip('uUlLzZ')
    try:
        lower = literal.lower()
        if lower.startswith(('0x', '0b')):
            return int(literal, 0)
        if len(literal) > 1 and literal.startswith('0'):
            return int(literal, 8)
        return int(literal, 10)
    except ValueError:
        raise Unevaluable(text)


def _parse_char(text: str) -> int:
    body = text.strip()
    if body.startswith(("u'", "U'", "L'")):
        body = body[1:]
    body = body[1:-1]
    escapes = {'\\n': 10, '\\t': 9, '\\0': 0, "\\'": 39, '\\\\': 92, '\\r': 13}
    if body in escapes:
        return escapes[body]
    if len(body) == 1:
        return ord(body)
    raise Unevaluable(text)


# (defined macros, uncertain names, explicitly undefined names)
_MacroState = Tuple[Dict[str, MacroRecord], Dict[str, List[Optional[MacroRecord]]], Set[str]]


def _possible_definitions(state: _MacroState, name: str) -> List[Optional[MacroRecord]]:
    macros, uncertain, _ = state
    if name in uncertain:
        return uncertain[name]
    return [macros.get(name)]


class PreprocessorScanner:
    """Walks the tree in document order, evaluating directives.

    After scan() the scanner exposes the facts the later passes need:
    inactive branch bodies, directive line ranges, and which identifier
    offsets are macro expansions.
    """

    def __init__(self, source: bytes, parser: LanguageParser,
                 predefined: Optional[Dict[str, str]] = None,
                 undefined: Optional[Iterable[str]] = None):
        """Initialize scanner.

        Args:
            source: Original buffer
            parser: Parser used to evaluate macro replacement text
            predefined: Macros defined on the command line / by the compiler
            undefined: Names explicitly undefined on the command line
        """
        self.source = source
        self.parser = parser
        self.macros: Dict[str, MacroRecord] = {}
        for name, value in (predefined or {}).items():
            self.macros[name] = MacroRecord(name=name, definition=None, value=value)
        self.records: List[MacroRecord] = []
        self.groups: List[ConditionalGroup] = []
        self.expansion_sites: Dict[int, List[MacroRecord]] = {}
        # name -> every definition that may be in effect (None: may be undefined)
        self.uncertain: Dict[str, List[Optional[MacroRecord]]] = {}
        self._inactive: List[SourceRange] = []
        self._directives: List[SourceRange] = []
        self.undefined: Set[str] = set(undefined or ())
        self._evaluator = ConditionEvaluator(self.macros, parser, self.undefined, self.uncertain)
        self._callbacks = PreprocessorCallbacks()
        self.inactive = RangeSet()
        self.directive_lines = RangeSet()

    def scan(self, root: Node, callbacks: Optional[PreprocessorCallbacks] = None):
        """Scan the whole translation unit and deliver events.

        Args:
            root: translation_unit node
            callbacks: Listener receiving preprocessor events
        """
        if callbacks is not None:
            self._callbacks = callbacks
        self._visit(root)
        self._report_nested_expansions()
        self.inactive = RangeSet(self._inactive)
        self.directive_lines = RangeSet(self._directives)
        logger.debug("Scanned %d macro definitions, %d conditional groups (%d inactive branches)",
                     len(self.records), len(self.groups), len(self._inactive))

    def body_names(self, offset: int) -> List[str]:
        """Identifiers a macro expansion at ``offset`` introduces, transitively.

        Args:
            offset: Byte offset of an expansion site

        Returns:
            Names from the replacement text of every definition the site may
            expand and of any macros those expand in turn
        """
        records = self.expansion_sites.get(offset, [])
        names: List[str] = []
        seen = {r.name for r in records}
        pending = list(records)
        while pending:
            current = pending.pop()
            for name, _ in current.body_names:
                nested = self.macros_named(name)
                if nested:
                    for other in nested:
                        if other.name not in seen:
                            seen.add(other.name)
                            pending.append(other)
                elif name not in names:
                    names.append(name)
        return names

    def macros_named(self, name: str) -> List[MacroRecord]:
        return [r for r in self.records if r.name == name]

    def bindings(self, name: str) -> List[MacroRecord]:
        """Definitions an occurrence of ``name`` may expand at this point of the scan."""
        if name in self.uncertain:
            return [r for r in self.uncertain[name] if r is not None]
        record = self.macros.get(name)
        return [record] if record is not None else []

    # ------------------------------------------------------------------
    # Tree walk
    # ------------------------------------------------------------------

    def _visit(self, node: Node):
        t = node.type
        if t in CONDITIONAL_TYPES:
            self._conditional(node)
            return
        if t in ('preproc_def', 'preproc_function_def'):
            self._define(node)
            return
        if t == 'preproc_call':
            self._directive_call(node)
            return
        if t in ('preproc_include', 'comment') or t in _OPAQUE_PARENTS:
            return
        if node.child_count == 0:
            self._maybe_expansion(node)
            return
        for child in node.children:
            self._visit(child)

    def _maybe_expansion(self, node: Node):
        text = node.text
        if not text or not _IDENTIFIER.fullmatch(text):
            return
        records = self.bindings(text.decode('utf-8'))
        if not records:
            return
        site = SourceRange(node.start_byte, node.end_byte)
        for record in records:
            record.expansions.append(site)
        self.expansion_sites[node.start_byte] = records

    def _check_sites(self, node: Optional[Node]):
        """Identifiers tested by a directive count as uses of the macro."""
        if node is None:
            return
        if node.child_count == 0:
            text = node.text
            if text and _IDENTIFIER.fullmatch(text):
                site = SourceRange(node.start_byte, node.end_byte)
                for record in self.bindings(text.decode('utf-8')):
                    record.expansions.append(site)
            return
        for child in node.children:
            self._check_sites(child)

    def _define(self, node: Node):
        name_node = node.child_by_field_name('name')
        if name_node is None:
            return
        name = node_text(name_node)
        value_node = node.child_by_field_name('value')
        value = node_text(value_node) if value_node is not None else ''
        start = line_start(self.source, node.start_byte)
        end = max(node.end_byte, line_end(self.source, node.end_byte - 1) if node.end_byte else 0)
        record = MacroRecord(
            name=name,
            definition=SourceRange(start, end),
            value=value,
            is_function_like=node.type == 'preproc_function_def',
            body_names=self._replacement_names(value_node),
        )
        if record.is_function_like:
            params = node.child_by_field_name('parameters')
            param_names = {node_text(p) for p in params.named_children} if params else set()
            record.body_names = [(n, o) for n, o in record.body_names if n not in param_names]
        self.macros[name] = record
        self.uncertain.pop(name, None)
        self.records.append(record)
        self._callbacks.macro_defined(record)

    def _replacement_names(self, value_node: Optional[Node]) -> List[Tuple[str, int]]:
        if value_node is None:
            return []
        raw = value_node.text
        # Blank out literals so their contents are not taken for identifiers
        masked = _STRING_OR_CHAR.sub(lambda m: b' ' * len(m.group(0)), raw)
        return [(m.group(0).decode('utf-8'), value_node.start_byte + m.start())
                for m in _IDENTIFIER.finditer(masked)]

    def _directive_call(self, node: Node):
        directive = node.child_by_field_name('directive')
        if directive is None:
            return
        if node_text(directive).replace(' ', '').replace('\t', '') != '#undef':
            return
        argument = node.child_by_field_name('argument')
        if argument is None:
            return
        name = node_text(argument).strip()
        # An #undef ends the macro without using it; a leftover #undef is harmless
        self.macros.pop(name, None)
        self.uncertain.pop(name, None)
        self.undefined.add(name)

    def _conditional(self, node: Node):
        """Evaluate one conditional group and visit its active branches."""
        chain = []
        current = node
        while current is not None:
            chain.append(current)
            current = current.child_by_field_name('alternative')
        endif = next((c for c in reversed(node.children) if c.type == '#endif'), None)

        decisions: List[bool] = []
        evaluated = True
        taken_found = False
        for part in chain:
            if taken_found:
                decisions.append(False)
                continue
            try:
                value = self._branch_condition(part)
            except Unevaluable as e:
                logger.debug("Cannot evaluate condition at byte %d: %s", part.start_byte, e)
                evaluated = False
                break
            decisions.append(value)
            taken_found = value

        branches = []
        for index, part in enumerate(chain):
            header = self._header_range(part)
            follower = chain[index + 1] if index + 1 < len(chain) else endif
            body_end = line_start(self.source, follower.start_byte) if follower is not None else part.end_byte
            body = SourceRange(header.end, max(header.end, body_end))
            taken = evaluated and decisions[index]
            branches.append(Branch(header=header, body=body, taken=taken))
            self._directives.append(header)

        endif_range = None
        if endif is not None and not endif.is_missing:
            endif_range = SourceRange(line_start(self.source, endif.start_byte),
                                      line_end(self.source, endif.start_byte))
            self._directives.append(endif_range)

        group = ConditionalGroup(
            range=SourceRange(node.start_byte, node.end_byte),
            branches=branches,
            endif=endif_range,
            evaluated=evaluated,
        )
        self.groups.append(group)

        if evaluated:
            for part, branch in zip(chain, branches):
                if branch.taken:
                    self._visit_branch(part)
                else:
                    self._inactive.append(branch.body)
        else:
            before = self._snapshot()
            outcomes = []
            for index, part in enumerate(chain):
                self._restore(before)
                if index > len(decisions):
                    # Conditions past the unevaluable one were never checked
                    self._check_sites(part.child_by_field_name('condition')
                                      or part.child_by_field_name('name'))
                self._visit_branch(part)
                outcomes.append(self._snapshot())
            if chain[-1].type != 'preproc_else':
                # No branch compiled at all
                outcomes.append(before)
            self._merge(outcomes)

        self._callbacks.conditional_group(group)

    def _snapshot(self) -> _MacroState:
        return (dict(self.macros), dict(self.uncertain), set(self.undefined))

    def _restore(self, state: _MacroState):
        # The evaluator shares these objects, so they are updated in place
        macros, uncertain, undefined = state
        self.macros.clear()
        self.macros.update(macros)
        self.uncertain.clear()
        self.uncertain.update(uncertain)
        self.undefined.clear()
        self.undefined.update(undefined)

    def _merge(self, outcomes: List[_MacroState]):
        """Join the tables the branches of an unevaluated group left behind."""
        names: Set[str] = set()
        for macros, uncertain, _ in outcomes:
            names.update(macros)
            names.update(uncertain)
        merged: Dict[str, MacroRecord] = {}
        uncertain_names: Dict[str, List[Optional[MacroRecord]]] = {}
        for name in sorted(names):
            candidates: List[Optional[MacroRecord]] = []
            for state in outcomes:
                for record in _possible_definitions(state, name):
                    if record not in candidates:
                        candidates.append(record)
            if len(candidates) > 1:
                uncertain_names[name] = candidates
            elif candidates[0] is not None:
                merged[name] = candidates[0]
        undefined = set.intersection(*(state[2] for state in outcomes))
        if uncertain_names:
            logger.debug("Macros left uncertain by an unevaluated group: %s",
                         ', '.join(uncertain_names))
        self._restore((merged, uncertain_names, undefined))

    def _branch_condition(self, part: Node) -> bool:
        t = part.type
        if t == 'preproc_else':
            return True
        if t in ('preproc_ifdef', 'preproc_elifdef'):
            name = part.child_by_field_name('name')
            if name is None:
                raise Unevaluable(node_text(part))
            self._check_sites(name)
            negate = part.children[0].type in ('#ifndef', '#elifndef')
            defined = self._evaluator.is_defined(node_text(name))
            return defined != negate
        condition = part.child_by_field_name('condition')
        if condition is None:
            raise Unevaluable(node_text(part))
        self._check_sites(condition)
        return bool(self._evaluator.evaluate(condition))

    def _header_range(self, part: Node) -> SourceRange:
        anchor = part.child_by_field_name('condition') or part.child_by_field_name('name')
        if anchor is None:
            anchor = part.children[0]
        start = line_start(self.source, part.start_byte)
        return SourceRange(start, line_end(self.source, anchor.end_byte - 1 if anchor.end_byte > anchor.start_byte else anchor.start_byte))

    def _visit_branch(self, part: Node):
        for index, child in enumerate(part.children):
            field_name = part.field_name_for_child(index)
            if field_name in ('name', 'condition', 'alternative'):
                continue
            if child.type in ALTERNATIVE_TYPES or child.type == '#endif':
                continue
            self._visit(child)

    def _report_nested_expansions(self):
        """Identifiers in replacement text expand whichever macro carries that name."""
        by_name: Dict[str, List[MacroRecord]] = {}
        for record in self.records:
            by_name.setdefault(record.name, []).append(record)
        for record in self.records:
            for name, offset in record.body_names:
                for target in by_name.get(name, []):
                    if target is record:
                        continue
                    site = SourceRange(offset, offset + len(name.encode('utf-8')))
                    target.expansions.append(site)
