"""The optimizer: removes code unreachable from the entry points of one translation unit."""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Set

from tree_sitter import Tree

from .analyzer.collector import DependenciesCollector
from .analyzer.declarations import DeclarationModel
from .analyzer.parser import LanguageParser
from .analyzer.preprocessor import MacroRecord, PreprocessorScanner
from .analyzer.reachability import ReachabilityEngine
from .errors import CompilationError
from .reaper.namespaces import NamespaceMerger, required_namespaces
from .reaper.preprocessor_blocks import RemoveInactivePreprocessorBlocks
from .reaper.pruner import LexicalPruner, RemovedDeclarations
from .reaper.rewriter import SmartRewriter

logger = logging.getLogger(__name__)

# -std value -> __cplusplus
STANDARDS = {
    '98': '199711L', '03': '199711L',
    '11': '201103L', '0x': '201103L',
    '14': '201402L', '1y': '201402L',
    '17': '201703L', '1z': '201703L',
    '20': '202002L', '2a': '202002L',
    '23': '202302L', '2b': '202302L',
    '26': '202400L', '2c': '202400L',
}

_STD_FLAG = re.compile(r'^(?:c|gnu)\+\+(\w\w)$')

# Options whose value may be given as the next argument
_VALUE_OPTIONS = ('-D', '-U', '-I', '-isystem')


@dataclass
class CompileOptions:
    """The subset of compiler options that affects preprocessing."""
    defines: Dict[str, str] = field(default_factory=dict)
    undefines: Set[str] = field(default_factory=set)
    include_dirs: List[str] = field(default_factory=list)
    system_include_dirs: List[str] = field(default_factory=list)
    std: str = 'c++17'
    ignored: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, args: Sequence[str], default_std: str = 'c++17') -> 'CompileOptions':
        """Parse command-line options.

        Args:
            args: Options such as ``-DNAME=1``, ``-I dir``, ``-std=c++17``
            default_std: Standard used when no ``-std`` is given

        Returns:
            CompileOptions

        Raises:
            CompilationError: On a non-option argument, a missing value or an unknown standard
        """
        options = cls(std=default_std)
        args = list(args)
        i = 0
        while i < len(args):
            arg = args[i]
            if not arg.startswith('-'):
                raise CompilationError(f"Unexpected argument: {arg!r}")
            option = next((o for o in _VALUE_OPTIONS if arg.startswith(o)), None)
            if option is not None:
                value = arg[len(option):]
                if not value:
                    i += 1
                    if i >= len(args):
                        raise CompilationError(f"Missing value for {option}")
                    value = args[i]
                options._apply(option, value)
            elif arg.startswith('-std='):
                options.std = arg[len('-std='):]
            else:
                options.ignored.append(arg)
            i += 1
        options.cplusplus()
        if options.ignored:
            logger.debug("Ignoring options: %s", ' '.join(options.ignored))
        return options

    def _apply(self, option: str, value: str):
        if option == '-D':
            name, _, definition = value.partition('=')
            if not name:
                raise CompilationError(f"Missing macro name in -D{value}")
            self.defines[name] = definition if '=' in value else '1'
            self.undefines.discard(name)
        elif option == '-U':
            self.defines.pop(value, None)
            self.undefines.add(value)
        elif option == '-I':
            self.include_dirs.append(value)
        else:
            self.system_include_dirs.append(value)

    def cplusplus(self) -> str:
        """Value of ``__cplusplus`` for the selected standard."""
        match = _STD_FLAG.match(self.std)
        if match is None or match.group(1) not in STANDARDS:
            raise CompilationError(f"Unknown language standard: -std={self.std}")
        return STANDARDS[match.group(1)]

    def predefined_macros(self) -> Dict[str, str]:
        macros = {'__cplusplus': self.cplusplus()}
        macros.update(self.defines)
        for name in self.undefines:
            macros.pop(name, None)
        return macros


@dataclass
class OptimizationResult:
    """Output text plus what each pass decided, for reporting."""
    text: str
    model: DeclarationModel
    used: Set[str]
    removed: RemovedDeclarations
    removed_macros: List[MacroRecord]
    namespaces_deleted: int = 0
    namespaces_merged: int = 0
    inactive_branches: int = 0
    input_size: int = 0

    @property
    def output_size(self) -> int:
        return len(self.text.encode('utf-8', errors='surrogateescape'))


class Optimizer:
    """Runs the whole pruning pipeline for one file at a time.

    No state is carried between runs: every call builds a fresh parser,
    model and rewriter.
    """

    def __init__(self, cmd_line_options: Sequence[str] = (),
                 macros_to_keep: Iterable[str] = (),
                 entry_points: Sequence[str] = ('main',)):
        """Initialize optimizer.

        Args:
            cmd_line_options: Compiler options (``-D``, ``-U``, ``-I``, ``-isystem``, ``-std``)
            macros_to_keep: Macro names whose definitions are never removed
            entry_points: Qualified names of the declarations to keep
        """
        self.cmd_line_options = list(cmd_line_options)
        self.macros_to_keep = set(macros_to_keep)
        self.entry_points = list(entry_points)

    def do_optimize(self, path: str | Path) -> str:
        """Optimize a file and return the optimized text."""
        return self.run_file(path).text

    def optimize_source(self, source: str | bytes) -> str:
        """Optimize an in-memory translation unit and return the optimized text."""
        return self.run_source(source).text

    def run_file(self, path: str | Path) -> OptimizationResult:
        options = CompileOptions.parse(self.cmd_line_options)
        parser = LanguageParser()
        tree, source = parser.parse_file(path)
        logger.debug("Optimizing %s (%d bytes)", path, len(source))
        return self._run(tree, source, parser, options)

    def run_source(self, source: str | bytes) -> OptimizationResult:
        if isinstance(source, str):
            source = source.encode('utf-8', errors='surrogateescape')
        options = CompileOptions.parse(self.cmd_line_options)
        parser = LanguageParser()
        return self._run(parser.parse_source(source), source, parser, options)

    def _run(self, tree: Tree, source: bytes, parser: LanguageParser,
             options: CompileOptions) -> OptimizationResult:
        root = tree.root_node
        rewriter = SmartRewriter(source)

        tracker = RemoveInactivePreprocessorBlocks(source, rewriter, self.macros_to_keep)
        scanner = PreprocessorScanner(source, parser, options.predefined_macros(),
                                      undefined=options.undefines)
        scanner.scan(root, tracker)

        collector = DependenciesCollector(source, scanner, self.entry_points)
        model = collector.collect(root)

        used = ReachabilityEngine(model).compute()

        pruner = LexicalPruner(source, model, used, rewriter)
        removed = pruner.run()
        pruner.finalize()

        merger = NamespaceMerger(
            source, collector.extraction.blocks, rewriter,
            scheduled=tracker.scheduled_ranges(),
            required_namespaces=required_namespaces(model.occurrences, collector.resolver),
        )
        merger.run()

        tracker.finalize(rewriter.removed_ranges())

        text = rewriter.get_result()
        return OptimizationResult(
            text=text,
            model=model,
            used=used,
            removed=removed,
            removed_macros=list(tracker.removed_macros),
            namespaces_deleted=len(merger.deleted),
            namespaces_merged=merger.merged,
            inactive_branches=sum(1 for g in tracker.groups if g.evaluated
                                  for b in g.branches if not b.taken),
            input_size=len(source),
        )


def build_graph(path: str | Path, cmd_line_options: Sequence[str] = (),
                entry_points: Sequence[str] = ('main',)) -> DeclarationModel:
    """Run only the analysis passes and return the dependency model."""
    options = CompileOptions.parse(cmd_line_options)
    parser = LanguageParser()
    tree, source = parser.parse_file(path)
    scanner = PreprocessorScanner(source, parser, options.predefined_macros(),
                                  undefined=options.undefines)
    scanner.scan(tree.root_node)
    collector = DependenciesCollector(source, scanner, entry_points)
    return collector.collect(tree.root_node)
