"""Tree-sitter parser front end for C++ translation units."""
import re
from pathlib import Path
from typing import Iterator, List, Optional
from tree_sitter import Language, Parser, Tree, Node
import tree_sitter_cpp as tscpp

from ..errors import CompilationError


# Node types whose children are treated as a sequence of top-level items
CONTAINER_TYPES = {'translation_unit', 'declaration_list'}

# Conditional-inclusion groups and their alternative branches
CONDITIONAL_TYPES = {'preproc_if', 'preproc_ifdef'}
ALTERNATIVE_TYPES = {'preproc_else', 'preproc_elif', 'preproc_elifdef'}

# Scoped name spellings across tree-sitter-cpp releases
QUALIFIED_TYPES = {
    'qualified_identifier',
    'scoped_identifier',
    'scoped_type_identifier',
    'scoped_namespace_identifier',
}

NAME_TYPES = {
    'identifier',
    'type_identifier',
    'field_identifier',
    'namespace_identifier',
}

_WHITESPACE = re.compile(rb'\s+')


class LanguageParser:
    """C++ parser using tree-sitter v0.22+ API."""

    SUPPORTED_EXTENSIONS = {'.cpp', '.cc', '.cxx', '.c++', '.hpp', '.hh', '.h'}

    def __init__(self):
        self.language = 'cpp'
        self.parser = self._create_parser()

    def _create_parser(self) -> Parser:
        """Factory method using tree-sitter v0.25+ API.

        Returns:
            Configured Parser instance
        """
        lang = Language(tscpp.language())
        return Parser(lang)

    def parse_source(self, source_code: bytes) -> Tree:
        """Parse an in-memory buffer.

        Args:
            source_code: Raw bytes of the translation unit

        Returns:
            Parsed Tree object
        """
        return self.parser.parse(source_code)

    def parse_file(self, file_path: str | Path) -> tuple[Tree, bytes]:
        """Read and parse a source file.

        Args:
            file_path: Path to the merged C++ source file

        Returns:
            Tuple of (tree, source bytes)

        Raises:
            CompilationError: If the file cannot be read
        """
        file_path = Path(file_path)
        try:
            source_code = file_path.read_bytes()
        except OSError as e:
            raise CompilationError(f"Cannot read {file_path}: {e}") from e
        return self.parse_source(source_code), source_code


def node_text(node: Node) -> str:
    """Decoded text of a node."""
    return node.text.decode('utf-8', errors='replace')


def normalized_text(source: bytes, start: int, end: int) -> str:
    """Slice of the buffer with all whitespace removed."""
    return _WHITESPACE.sub(b'', source[start:end]).decode('utf-8', errors='replace')


def qualified_parts(node: Node) -> List[str]:
    """Split a (possibly qualified) name node into its components.

    Template argument lists are dropped, so ``A<T>::f`` yields ``['A', 'f']``.
    A leading ``::`` contributes nothing.
    """
    t = node.type
    if t in QUALIFIED_TYPES:
        parts = []
        scope = node.child_by_field_name('scope')
        if scope is not None:
            parts.extend(qualified_parts(scope))
        name = node.child_by_field_name('name')
        if name is not None:
            parts.extend(qualified_parts(name))
        return parts
    if t in ('template_type', 'template_function', 'template_method'):
        name = node.child_by_field_name('name')
        return qualified_parts(name) if name is not None else []
    if t == 'nested_namespace_specifier':
        parts = []
        for child in node.named_children:
            parts.extend(qualified_parts(child))
        return parts
    if t == 'destructor_name':
        return ['~' + node_text(node).lstrip('~').strip()]
    if t in ('operator_name', 'operator_cast'):
        return [_WHITESPACE.sub(b'', node.text).decode('utf-8', errors='replace')]
    return [node_text(node).strip()]


def declarator_name(node: Optional[Node]) -> Optional[Node]:
    """Descend through pointer/reference/function/array declarators to the name.

    Args:
        node: A declarator node (or None)

    Returns:
        The innermost name node, or None for abstract declarators
    """
    while node is not None:
        t = node.type
        if t in NAME_TYPES or t in QUALIFIED_TYPES or t in (
                'destructor_name', 'operator_name', 'operator_cast',
                'template_function', 'template_type'):
            return node
        inner = node.child_by_field_name('declarator')
        if inner is None:
            # reference_declarator and friends carry no field name
            inner = next((c for c in node.named_children
                          if c.type not in ('type_qualifier', 'attribute_specifier',
                                            'attribute_declaration', 'ms_pointer_modifier')),
                         None)
        node = inner
    return None


def is_function_declarator(node: Optional[Node]) -> bool:
    """True if a declarator declares a function (possibly behind pointers)."""
    while node is not None:
        if node.type == 'function_declarator':
            inner = node.child_by_field_name('declarator')
            # int (*fp)(int) declares a variable, not a function
            return inner is None or inner.type != 'parenthesized_declarator'
        if node.type in ('init_declarator', 'parenthesized_declarator', 'array_declarator'):
            return False
        inner = node.child_by_field_name('declarator')
        if inner is None:
            inner = next((c for c in node.named_children if c.type != 'type_qualifier'), None)
        node = inner
    return False


def find_function_declarator(node: Optional[Node]) -> Optional[Node]:
    while node is not None:
        if node.type == 'function_declarator':
            return node
        inner = node.child_by_field_name('declarator')
        if inner is None:
            inner = next((c for c in node.named_children if c.type != 'type_qualifier'), None)
        node = inner
    return None


def iter_active_children(container: Node, inactive) -> Iterator[Node]:
    """Yield the items of a container, flattening taken preprocessor branches.

    Conditional groups are transparent: their directive lines are skipped and
    their branch contents are yielded in place unless the branch lies in an
    inactive range.

    Args:
        container: translation_unit, declaration_list or a conditional node
        inactive: RangeSet of inactive branch bodies
    """
    yield from _iter_branch(container, inactive)


def _iter_branch(node: Node, inactive) -> Iterator[Node]:
    for index, child in enumerate(node.children):
        field = node.field_name_for_child(index)
        if field in ('name', 'condition'):
            continue
        if field == 'alternative' or child.type in ALTERNATIVE_TYPES:
            yield from _iter_branch(child, inactive)
            continue
        if child.type in CONDITIONAL_TYPES:
            yield from _iter_branch(child, inactive)
            continue
        if not child.is_named or child.type == 'comment':
            continue
        if inactive.contains(child.start_byte):
            continue
        yield child


def line_start(source: bytes, offset: int) -> int:
    """Offset of the first byte of the line containing ``offset``."""
    return source.rfind(b'\n', 0, offset) + 1


def line_end(source: bytes, offset: int) -> int:
    """Offset just past the newline ending the (logical) line at ``offset``.

    Backslash-continued lines are treated as one line.
    """
    pos = offset
    while True:
        nl = source.find(b'\n', pos)
        if nl == -1:
            return len(source)
        before = source[pos:nl].rstrip(b'\r')
        if before.endswith(b'\\'):
            pos = nl + 1
            continue
        return nl + 1
