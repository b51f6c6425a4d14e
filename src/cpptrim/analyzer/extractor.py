"""Top-level declaration extraction from parsed C++ syntax trees."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from tree_sitter import Node

from .declarations import (CLASS, CONCEPT, ENUM, FUNCTION, MACRO_INVOCATION, NAMESPACE_ALIAS, TYPEDEF,
                           UNKNOWN, USING, USING_DIRECTIVE, VARIABLE, Occurrence,
                           RangeSet, SourceRange)
from .parser import (declarator_name, find_function_declarator, is_function_declarator,
                     iter_active_children, node_text, normalized_text, qualified_parts)
from .preprocessor import MacroRecord

ANONYMOUS_NAMESPACE = '(anonymous)'

CLASS_TYPES = {'class_specifier', 'struct_specifier', 'union_specifier'}

# Items that carry no declaration of their own
SKIPPED_TYPES = {
    'preproc_def', 'preproc_function_def', 'preproc_include', 'preproc_call',
    'comment', 'empty_declaration',
}


@dataclass(eq=False)
class NamespaceBlock:
    """One namespace definition or braced linkage specification."""
    name: str
    kind: str  # 'namespace' or 'linkage'
    node: Node = field(repr=False)
    range: SourceRange
    body: SourceRange
    header: str = ''
    parent: Optional['NamespaceBlock'] = field(default=None, repr=False)
    items: List[Occurrence] = field(default_factory=list, repr=False)
    children: List['NamespaceBlock'] = field(default_factory=list, repr=False)

    @property
    def is_namespace(self) -> bool:
        return self.kind == 'namespace'


@dataclass
class Extraction:
    """Everything the extractor found in one translation unit."""
    occurrences: List[Occurrence] = field(default_factory=list)
    blocks: List[NamespaceBlock] = field(default_factory=list)
    # (parent scope, qualified namespace) of inline and anonymous namespaces
    transparent_namespaces: List[Tuple[Tuple[str, ...], str]] = field(default_factory=list)


class DeclarationExtractor:
    """Classify every top-level item of the main file into occurrences.

    Top-level means directly inside the translation unit, a namespace body
    or a linkage-specification body, with taken preprocessor branches
    flattened in place. Class bodies are not descended into: a class is a
    single item whose members are recorded only as names.
    """

    def __init__(self, source: bytes, inactive: Optional[RangeSet] = None,
                 macro_sites: Optional[Dict[int, List[MacroRecord]]] = None):
        """Initialize extractor.

        Args:
            source: Original buffer
            inactive: Inactive preprocessor branch bodies, skipped entirely
            macro_sites: Macro expansion sites by byte offset
        """
        self.source = source
        self.inactive = inactive if inactive is not None else RangeSet()
        self.macro_sites = macro_sites if macro_sites is not None else {}

    def extract(self, root: Node) -> Extraction:
        """Extract occurrences and namespace blocks in document order.

        Args:
            root: translation_unit node

        Returns:
            Extraction with occurrences sorted by start offset
        """
        result = Extraction()
        self._walk_container(root, (), None, result)
        result.occurrences.sort(key=lambda o: o.range.start)
        return result

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def _walk_container(self, container: Node, scope: Tuple[str, ...],
                        block: Optional[NamespaceBlock], result: Extraction):
        for item in iter_active_children(container, self.inactive):
            t = item.type
            if t in SKIPPED_TYPES:
                continue
            if t == 'namespace_definition':
                self._namespace(item, scope, block, result)
                continue
            if t == 'linkage_specification':
                body = item.child_by_field_name('body')
                if body is not None and body.type == 'declaration_list':
                    child = self._new_block(item, body, '', 'linkage', block, result)
                    self._walk_container(body, scope, child, result)
                    continue
            if self._is_macro_invocation(item):
                occ = Occurrence(kind=MACRO_INVOCATION, node=item,
                                 range=SourceRange(item.start_byte, item.end_byte),
                                 scope=scope, lookup_scope=scope, always_keep=True)
            else:
                occ = self._classify(item, scope)
            result.occurrences.append(occ)
            if block is not None:
                block.items.append(occ)

    def _namespace(self, node: Node, scope: Tuple[str, ...],
                   parent: Optional[NamespaceBlock], result: Extraction):
        name_node = node.child_by_field_name('name')
        parts = qualified_parts(name_node) if name_node is not None else [ANONYMOUS_NAMESPACE]
        inner = scope + tuple(parts)
        body = node.child_by_field_name('body')
        if body is None:
            return
        block = self._new_block(node, body, '::'.join(inner), 'namespace', parent, result)
        block.header = normalized_text(self.source, node.start_byte, body.start_byte)
        is_inline = any(c.type == 'inline' for c in node.children)
        if is_inline or name_node is None:
            result.transparent_namespaces.append((scope, '::'.join(inner)))
        self._walk_container(body, inner, block, result)

    def _is_macro_invocation(self, item: Node) -> bool:
        """An item that opens with a function-like macro call, or that only
        parses badly because a macro expands into it, is not classified."""
        records = self.macro_sites.get(item.start_byte)
        if not records:
            return False
        return item.has_error or any(r.is_function_like for r in records)

    def _new_block(self, node: Node, body: Node, name: str, kind: str,
                   parent: Optional[NamespaceBlock], result: Extraction) -> NamespaceBlock:
        block = NamespaceBlock(
            name=name,
            kind=kind,
            node=node,
            range=SourceRange(node.start_byte, node.end_byte),
            body=SourceRange(body.start_byte, body.end_byte),
            parent=parent,
        )
        if parent is not None:
            parent.children.append(block)
        result.blocks.append(block)
        return block

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _classify(self, item: Node, scope: Tuple[str, ...]) -> Occurrence:
        occ = Occurrence(kind=UNKNOWN, node=item,
                         range=SourceRange(item.start_byte, item.end_byte),
                         scope=scope, lookup_scope=scope)
        inner = item
        if item.type == 'linkage_specification':
            inner = item.child_by_field_name('body')
        template_params: List[str] = []
        template_defaults = False
        template_text = []
        while inner is not None and inner.type == 'template_declaration':
            params = inner.child_by_field_name('parameters')
            if params is not None:
                names, defaults = self._template_parameters(params)
                template_params.extend(names)
                template_defaults = template_defaults or defaults
                template_text.append(normalized_text(self.source, params.start_byte, params.end_byte))
            occ.is_template = True
            inner = next((c for c in inner.named_children
                          if c.type not in ('template_parameter_list', 'comment', 'requires_clause')),
                         None)
        occ.template_params = frozenset(template_params)

        if inner is None:
            occ.always_keep = True
            return occ

        handler = getattr(self, '_item_' + inner.type, None)
        if handler is None and inner.type in CLASS_TYPES:
            handler = self._item_class
        if handler is None:
            occ.always_keep = True
            return occ
        handler(inner, occ)
        if occ.is_template and occ.signature is not None:
            occ.signature = tuple(template_text) + occ.signature
        occ.has_default_args = occ.has_default_args or template_defaults
        if not occ.keys and occ.kind not in (USING, USING_DIRECTIVE, NAMESPACE_ALIAS):
            occ.always_keep = True
        return occ

    def _qualify(self, occ: Occurrence, name_node: Node) -> str:
        return '::'.join(occ.scope + tuple(qualified_parts(name_node)))

    def _item_function_definition(self, node: Node, occ: Occurrence):
        declarator = node.child_by_field_name('declarator')
        name = declarator_name(declarator)
        occ.kind = FUNCTION
        occ.body = node.child_by_field_name('body')
        if name is None:
            # Macro-like constructs tree-sitter reads as K&R definitions
            return
        parts = qualified_parts(name)
        occ.keys = ('::'.join(occ.scope + tuple(parts)),)
        occ.lookup_scope = occ.scope + tuple(parts[:-1])
        fdecl = find_function_declarator(declarator)
        if fdecl is not None:
            occ.signature, occ.has_default_args = self._function_signature(fdecl)

    def _item_declaration(self, node: Node, occ: Occurrence):
        declarators = node.children_by_field_name('declarator')
        type_node = node.child_by_field_name('type')
        keys: List[str] = []
        if type_node is not None and type_node.child_by_field_name('body') is not None:
            # struct A { ... } a;
            self._record_type_body(type_node, occ, keys)
        if not declarators:
            occ.keys = tuple(keys)
            return
        first = declarators[0]
        if is_function_declarator(first):
            occ.kind = FUNCTION
            occ.is_definition = False
            fdecl = find_function_declarator(first)
            occ.signature, occ.has_default_args = self._function_signature(fdecl)
            name = declarator_name(first)
            if name is not None:
                parts = qualified_parts(name)
                occ.lookup_scope = occ.scope + tuple(parts[:-1])
        else:
            if occ.kind == UNKNOWN:
                occ.kind = VARIABLE
            storage = {node_text(c) for c in node.children if c.type == 'storage_class_specifier'}
            has_init = any(d.type == 'init_declarator' for d in declarators)
            occ.is_definition = not ('extern' in storage and not has_init)
            if occ.kind == VARIABLE and type_node is not None:
                occ.signature = (normalized_text(self.source, type_node.start_byte, type_node.end_byte),)
        for declarator in declarators:
            name = declarator_name(declarator)
            if name is not None:
                keys.append(self._qualify(occ, name))
        occ.keys = tuple(dict.fromkeys(keys))

    def _item_field_declaration(self, node: Node, occ: Occurrence):
        # Top-level items tree-sitter recovers as field declarations
        self._item_declaration(node, occ)

    def _item_type_definition(self, node: Node, occ: Occurrence):
        occ.kind = TYPEDEF
        keys: List[str] = []
        for declarator in node.children_by_field_name('declarator'):
            name = declarator_name(declarator)
            if name is not None:
                keys.append(self._qualify(occ, name))
        type_node = node.child_by_field_name('type')
        if type_node is not None and type_node.child_by_field_name('body') is not None:
            self._record_type_body(type_node, occ, keys)
            occ.kind = TYPEDEF
        occ.keys = tuple(dict.fromkeys(keys))

    def _item_alias_declaration(self, node: Node, occ: Occurrence):
        occ.kind = TYPEDEF
        name = node.child_by_field_name('name')
        if name is not None:
            occ.keys = (self._qualify(occ, name),)

    def _item_concept_definition(self, node: Node, occ: Occurrence):
        occ.kind = CONCEPT
        name = node.child_by_field_name('name')
        if name is not None:
            occ.keys = (self._qualify(occ, name),)

    def _item_class(self, node: Node, occ: Occurrence):
        keys: List[str] = []
        self._record_type_body(node, occ, keys)
        occ.kind = CLASS
        name = node.child_by_field_name('name')
        # A specialization never stands in for the primary template
        is_specialization = name is not None and name.type == 'template_type'
        occ.signature = ('specialization',) if is_specialization else ()
        if node.child_by_field_name('body') is None:
            occ.is_definition = False
            if name is not None:
                keys.append(self._qualify(occ, name))
        occ.keys = tuple(keys)

    def _item_enum_specifier(self, node: Node, occ: Occurrence):
        keys: List[str] = []
        self._record_type_body(node, occ, keys)
        occ.kind = ENUM
        body = node.child_by_field_name('body')
        header_end = body.start_byte if body is not None else node.end_byte
        occ.signature = (normalized_text(self.source, node.start_byte, header_end),)
        if body is None:
            name = node.child_by_field_name('name')
            occ.is_definition = False
            if name is not None:
                keys.append(self._qualify(occ, name))
        occ.keys = tuple(keys)

    def _item_using_declaration(self, node: Node, occ: Occurrence):
        target = next((c for c in node.named_children if c.type != 'comment'), None)
        is_directive = any(c.type == 'namespace' for c in node.children)
        occ.using_target = qualified_parts(target) if target is not None else []
        if is_directive:
            occ.kind = USING_DIRECTIVE
            occ.always_keep = True
        else:
            # keys are resolved once every declaration is known
            occ.kind = USING

    def _item_namespace_alias_definition(self, node: Node, occ: Occurrence):
        occ.kind = NAMESPACE_ALIAS
        occ.always_keep = True
        name = node.child_by_field_name('name')
        occ.alias_name = node_text(name) if name is not None else None
        target = next((c for c in reversed(node.named_children) if c is not name
                       and c.type != 'comment'), None)
        occ.using_target = qualified_parts(target) if target is not None else []

    def _item_template_instantiation(self, node: Node, occ: Occurrence):
        # template class A<int>; is removed together with A
        occ.kind = UNKNOWN
        target = node.child_by_field_name('type')
        declarator = node.child_by_field_name('declarator')
        name = declarator_name(declarator) if declarator is not None else None
        if name is None and target is not None:
            name = target.child_by_field_name('name')
        if name is not None:
            occ.keys = (self._qualify(occ, name),)

    def _item_static_assert_declaration(self, node: Node, occ: Occurrence):
        occ.always_keep = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_type_body(self, type_node: Node, occ: Occurrence, keys: List[str]):
        """Record a class or enum specifier with a body as part of ``occ``."""
        name = type_node.child_by_field_name('name')
        body = type_node.child_by_field_name('body')
        if body is None:
            return
        if type_node.type == 'enum_specifier':
            occ.kind = ENUM
            enumerators = [node_text(e.child_by_field_name('name'))
                           for e in body.named_children
                           if e.type == 'enumerator' and e.child_by_field_name('name') is not None]
            scoped = any(c.type in ('class', 'struct') for c in type_node.children)
            if scoped:
                occ.scoped_enumerators.extend(enumerators)
            else:
                occ.unscoped_enumerators.extend(enumerators)
        elif type_node.type in CLASS_TYPES:
            occ.kind = CLASS
            occ.member_names.extend(self._member_names(body))
        if name is not None:
            keys.insert(0, self._qualify(occ, name))
            if type_node.type in CLASS_TYPES:
                occ.lookup_scope = occ.scope + tuple(qualified_parts(name))

    def _member_names(self, body: Node, prefix: str = '') -> List[str]:
        """Names declared in a class body, relative to the class."""
        names: List[str] = []

        def add(name_node: Optional[Node]):
            if name_node is not None:
                parts = qualified_parts(name_node)
                if parts:
                    names.append(prefix + parts[-1])

        for member in iter_active_children(body, self.inactive):
            t = member.type
            while t == 'template_declaration':
                member = next((c for c in member.named_children
                               if c.type not in ('template_parameter_list', 'comment')), None)
                if member is None:
                    break
                t = member.type
            if member is None:
                continue
            if t in ('field_declaration', 'declaration', 'type_definition'):
                for declarator in member.children_by_field_name('declarator'):
                    add(declarator_name(declarator))
                nested = member.child_by_field_name('type')
                if nested is not None and nested.child_by_field_name('body') is not None:
                    names.extend(self._nested_names(nested, prefix))
            elif t == 'function_definition':
                add(declarator_name(member.child_by_field_name('declarator')))
            elif t == 'alias_declaration':
                add(member.child_by_field_name('name'))
            elif t in CLASS_TYPES or t == 'enum_specifier':
                names.extend(self._nested_names(member, prefix))
            elif t == 'using_declaration':
                target = next((c for c in member.named_children if c.type != 'comment'), None)
                if target is not None:
                    add(target)
        return names

    def _nested_names(self, type_node: Node, prefix: str) -> List[str]:
        names: List[str] = []
        name = type_node.child_by_field_name('name')
        body = type_node.child_by_field_name('body')
        nested = prefix + node_text(name) if name is not None else None
        if nested is not None:
            names.append(nested)
        if body is None:
            return names
        if type_node.type == 'enum_specifier':
            scoped = any(c.type in ('class', 'struct') for c in type_node.children)
            for e in body.named_children:
                enum_name = e.child_by_field_name('name') if e.type == 'enumerator' else None
                if enum_name is None:
                    continue
                if nested is not None:
                    names.append(nested + '::' + node_text(enum_name))
                if not scoped:
                    names.append(prefix + node_text(enum_name))
        elif nested is not None:
            names.extend(self._member_names(body, nested + '::'))
        return names

    def _template_parameters(self, params: Node) -> Tuple[List[str], bool]:
        names: List[str] = []
        has_defaults = False
        for param in params.named_children:
            t = param.type
            if t.startswith('optional_'):
                has_defaults = True
            if t in ('type_parameter_declaration', 'variadic_type_parameter_declaration',
                     'optional_type_parameter_declaration'):
                name = param.child_by_field_name('name')
                if name is None:
                    name = next((c for c in param.named_children if c.type == 'type_identifier'), None)
                if name is not None:
                    names.append(node_text(name))
            elif t in ('parameter_declaration', 'optional_parameter_declaration',
                       'variadic_parameter_declaration'):
                name = declarator_name(param.child_by_field_name('declarator'))
                if name is not None:
                    names.append(node_text(name))
            elif t == 'template_template_parameter_declaration':
                inner = next((c for c in param.named_children
                              if c.type != 'template_parameter_list'), None)
                if inner is not None:
                    inner_names, inner_defaults = self._template_parameters_of(inner)
                    names.extend(inner_names)
                    has_defaults = has_defaults or inner_defaults
        return names, has_defaults

    def _template_parameters_of(self, param: Node) -> Tuple[List[str], bool]:
        name = param.child_by_field_name('name')
        if name is None:
            name = next((c for c in param.named_children if c.type == 'type_identifier'), None)
        return ([node_text(name)] if name is not None else []), param.type.startswith('optional_')

    def _function_signature(self, fdecl: Node) -> Tuple[Tuple[str, ...], bool]:
        """Parameter types with names and defaults stripped, plus trailing qualifiers."""
        params = fdecl.child_by_field_name('parameters')
        signature: List[str] = []
        has_defaults = False
        if params is None:
            return tuple(signature), has_defaults
        for param in params.named_children:
            if param.type == 'comment':
                continue
            if param.type == 'optional_parameter_declaration':
                has_defaults = True
            name = declarator_name(param.child_by_field_name('declarator'))
            default = param.child_by_field_name('default_value')
            cut_from = param.end_byte
            if default is not None:
                # back up over the '='
                eq = self.source.rfind(b'=', param.start_byte, default.start_byte)
                cut_from = eq if eq != -1 else default.start_byte
            spans = [(param.start_byte, cut_from)]
            if name is not None and param.start_byte <= name.start_byte < cut_from:
                spans = [(param.start_byte, name.start_byte), (name.end_byte, cut_from)]
            signature.append(''.join(normalized_text(self.source, s, e) for s, e in spans))
        trailing = normalized_text(self.source, params.end_byte, fdecl.end_byte)
        signature.append(trailing)
        return tuple(signature), has_defaults
