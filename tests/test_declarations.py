"""Tests for the declaration model, range sets and reachability."""
import pytest

from cpptrim.analyzer.declarations import (CLASS, FUNCTION, ROOT, DeclarationModel,
                                           Occurrence, RangeSet, SourceRange, merge_ranges)
from cpptrim.analyzer.reachability import ReachabilityEngine


def make_occurrence(key, kind=FUNCTION, start=0, end=1, is_definition=True):
    return Occurrence(kind=kind, node=None, range=SourceRange(start, end),
                      keys=(key,), is_definition=is_definition)


@pytest.fixture
def model():
    return DeclarationModel()


class TestRanges:

    def test_merge_overlapping_and_adjacent(self):
        merged = merge_ranges([SourceRange(5, 8), SourceRange(0, 2), SourceRange(2, 4),
                               SourceRange(7, 10)])
        assert merged == [SourceRange(0, 4), SourceRange(5, 10)]

    def test_contains(self):
        ranges = RangeSet([SourceRange(0, 4), SourceRange(10, 12)])
        assert ranges.contains(0)
        assert ranges.contains(3)
        assert not ranges.contains(4)
        assert ranges.contains(11)
        assert not ranges.contains(12)

    def test_covers(self):
        ranges = RangeSet([SourceRange(0, 4), SourceRange(4, 8)])
        assert ranges.covers(SourceRange(2, 8))
        assert not ranges.covers(SourceRange(2, 9))
        assert not RangeSet().covers(SourceRange(0, 1))

    def test_union_does_not_modify(self):
        ranges = RangeSet([SourceRange(0, 2)])
        bigger = ranges.union([SourceRange(2, 5)])
        assert list(bigger) == [SourceRange(0, 5)]
        assert list(ranges) == [SourceRange(0, 2)]


class TestDeclarationModel:

    def test_first_occurrence_is_canonical(self, model):
        forward = make_occurrence('A', CLASS, 0, 7, is_definition=False)
        definition = make_occurrence('A', CLASS, 10, 30)
        model.add_occurrence(forward)
        model.add_occurrence(definition)
        assert model.canonical('A') is forward
        assert model.decls['A'].definitions == [definition]
        assert len(model.decls) == 1

    def test_dependencies_and_sites(self, model):
        model.add_occurrence(make_occurrence('main'))
        model.add_occurrence(make_occurrence('helper'))
        model.add_dependency('main', 'helper', 42)
        model.add_dependency('main', 'helper', 17)
        assert model.uses('main') == ['helper']
        assert model.reference_sites('helper') == [('main', 17), ('main', 42)]

    def test_root_references_are_not_edges(self, model):
        model.add_occurrence(make_occurrence('f'))
        model.add_dependency(ROOT, 'f', 3)
        assert ROOT not in model.graph
        assert model.reference_sites('f') == [(ROOT, 3)]

    def test_uses_of_unknown_key(self, model):
        assert model.uses('nothing') == []

    def test_to_dot(self, model):
        model.add_occurrence(make_occurrence('main'))
        model.add_occurrence(make_occurrence('ns::helper'))
        model.add_dependency('main', 'ns::helper')
        model.add_entry_point('main')
        dot = model.to_dot()
        assert dot.startswith('digraph dependencies {')
        assert '"main" -> "ns::helper";' in dot
        assert 'style=bold' in dot
        assert dot.rstrip().endswith('}')


class TestReachability:

    def test_transitive(self, model):
        for key in ('main', 'a', 'b', 'unused'):
            model.add_occurrence(make_occurrence(key))
        model.add_dependency('main', 'a')
        model.add_dependency('a', 'b')
        model.add_dependency('unused', 'a')
        model.add_entry_point('main')
        assert ReachabilityEngine(model).compute() == {'main', 'a', 'b'}

    def test_cycles_and_self_loops(self, model):
        for key in ('main', 'a', 'b'):
            model.add_occurrence(make_occurrence(key))
        model.add_dependency('main', 'a')
        model.add_dependency('a', 'b')
        model.add_dependency('b', 'a')
        model.add_dependency('b', 'b')
        model.add_entry_point('main')
        assert ReachabilityEngine(model).compute() == {'main', 'a', 'b'}

    def test_unreachable_cycle(self, model):
        for key in ('main', 'x', 'y'):
            model.add_occurrence(make_occurrence(key))
        model.add_dependency('x', 'y')
        model.add_dependency('y', 'x')
        model.add_entry_point('main')
        assert ReachabilityEngine(model).compute() == {'main'}

    def test_explicit_seeds(self, model):
        for key in ('main', 'x'):
            model.add_occurrence(make_occurrence(key))
        model.add_entry_point('main')
        assert ReachabilityEngine(model).compute(seeds=['x', ROOT]) == {'x'}

    def test_no_entry_points(self, model):
        model.add_occurrence(make_occurrence('f'))
        assert ReachabilityEngine(model).compute() == set()
