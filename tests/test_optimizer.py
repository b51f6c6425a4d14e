"""End-to-end tests: source in, pruned source out."""
import pytest

from cpptrim.errors import CompilationError
from cpptrim.optimizer import Optimizer


class TestUnusedDeclarations:

    def test_unused_function_removed(self, optimize):
        source = "int unused(){return 1;} int main(){return 0;}"
        assert optimize(source) == "int main(){return 0;}"

    def test_call_chain_kept(self, optimize):
        source = ("int helper(){return 1;}\n"
                  "int unused(){return 2;}\n"
                  "int main(){return helper();}\n")
        assert optimize(source) == "int helper(){return 1;}\nint main(){return helper();}\n"

    def test_everything_used_is_identity(self, optimize):
        source = ("struct P { int x; };\n"
                  "int sq(P p){return p.x * p.x;}\n"
                  "int main(){P p{3}; return sq(p);}\n")
        assert optimize(source) == source

    def test_bytes_preserved(self, optimize):
        source = "int main(){\r\n  // héllo\r\n  return 0;\r\n}\r\n"
        assert optimize(source) == source

    def test_crlf_line_removed(self, optimize):
        source = "int unused(){return 1;}\r\nint main(){return 0;}\r\n"
        assert optimize(source) == "int main(){return 0;}\r\n"

    def test_unused_enum(self, optimize):
        source = "enum Color { RED, GREEN };\nenum Unused { X };\nint main(){return GREEN;}\n"
        assert optimize(source) == "enum Color { RED, GREEN };\nint main(){return GREEN;}\n"

    def test_out_of_line_member_kept_with_class(self, optimize):
        source = ("struct S { int f(); };\n"
                  "int S::f(){return 1;}\n"
                  "int main(){S s; return s.f();}\n")
        assert optimize(source) == source

    def test_unused_function_template(self, optimize):
        source = ("template <typename T>\nT twice(T v){return v + v;}\n"
                  "template <typename T>\nT unused_t(T v){return v;}\n"
                  "int main(){return twice(2);}\n")
        assert optimize(source) == ("template <typename T>\nT twice(T v){return v + v;}\n"
                                    "int main(){return twice(2);}\n")

    def test_pinned_entry_point(self, optimize):
        source = "void hook(){}\nvoid other(){}\nint main(){return 0;}\n"
        result = optimize(source, entry_points=['main', 'hook'])
        assert result == "void hook(){}\nint main(){return 0;}\n"

    def test_idempotent(self, optimize):
        source = ("class A;\nint helper(){return 1;}\nint dead(){return 2;}\n"
                  "class A { public: int x; };\nint main(){ A a; return a.x + helper(); }\n")
        once = optimize(source)
        assert optimize(once) == once


class TestAlwaysKept:

    def test_initializer_with_call(self, optimize):
        source = "int compute(){return 4;}\nint cached = compute();\nint main(){return 0;}\n"
        assert optimize(source) == source

    def test_global_with_constructor(self, optimize):
        source = "struct Init { Init(){} };\nInit init_guard;\nint main(){return 0;}\n"
        assert optimize(source) == source

    def test_operator_for_used_type(self, optimize):
        source = ("struct W { int y; };\n"
                  "bool operator==(const W& a, const W& b){return a.y == b.y;}\n"
                  "int main(){W a{1}, b{1}; return a == b;}\n")
        assert optimize(source) == source

    def test_operator_for_unused_type(self, optimize):
        source = ("struct W { int y; };\n"
                  "bool operator==(const W& a, const W& b){return a.y == b.y;}\n"
                  "int main(){return 0;}\n")
        assert optimize(source) == "int main(){return 0;}\n"


class TestRedundantDeclarations:
    """Forward declarations disappear once a definition makes them unnecessary."""

    def test_forward_class_declarations(self, optimize):
        source = ("class A;\nclass A;\nclass A { public: int x; };\n"
                  "int main(){ A a; return a.x; }\n")
        assert optimize(source) == "class A { public: int x; };\nint main(){ A a; return a.x; }\n"

    def test_prototype_before_definition(self, optimize):
        source = "int g();\nint g(){return 1;}\nint main(){return g();}\n"
        assert optimize(source) == "int g(){return 1;}\nint main(){return g();}\n"

    def test_prototype_needed_by_earlier_use(self, optimize):
        source = "int g();\nint f(){return g();}\nint g(){return 1;}\nint main(){return f();}\n"
        assert optimize(source) == source

    def test_prototype_with_default_argument(self, optimize):
        source = "int g(int x = 1);\nint g(int x){return x;}\nint main(){return g();}\n"
        assert optimize(source) == source

    def test_forward_declaration_used_only_by_redundant_prototype(self, optimize):
        source = ("class A;\nvoid g(A*);\nclass A { int x; };\nvoid g(A*){}\n"
                  "int main(){ g(0); return 0; }")
        once = optimize(source)
        assert once == "class A { int x; };\nvoid g(A*){}\nint main(){ g(0); return 0; }"
        assert optimize(once) == once

    @pytest.mark.parametrize('source', [
        "class A;\nvoid g(A*);\nclass A { int x; };\nvoid g(A*){}\nint main(){ g(0); return 0; }\n",
        "struct B;\nstruct C;\nvoid h(B*, C*);\nstruct B {};\nstruct C {};\nvoid h(B*, C*){}\n"
        "int main(){ h(0, 0); return 0; }\n",
        "int g();\nint f(){return g();}\nint g(){return 1;}\nint unused(){return f();}\nint main(){return g();}\n",
    ])
    def test_second_run_changes_nothing(self, optimize, source):
        once = optimize(source)
        assert optimize(once) == once


class TestNamespaces:

    def test_emptied_namespace_deleted(self, optimize):
        source = ("namespace a { int f(){return 1;} }\n"
                  "namespace b { int g(){return 2;} }\n"
                  "int main(){return a::f();}\n")
        assert optimize(source) == "namespace a { int f(){return 1;} }\nint main(){return a::f();}\n"

    def test_reopenings_merged(self):
        source = ("namespace a { int f(){return 1;} }\n"
                  "namespace a { int unused(){return 0;} }\n"
                  "namespace a { int g(){return 2;} }\n"
                  "int main(){return a::f()+a::g();}\n")
        result = Optimizer().run_source(source)
        assert result.text == ("namespace a { int f(){return 1;}  int g(){return 2;} }\n"
                               "int main(){return a::f()+a::g();}\n")
        assert result.namespaces_deleted == 1
        assert result.namespaces_merged == 1

    def test_namespace_named_by_using_directive_kept(self, optimize):
        source = "namespace a { int unused(){return 0;} }\nusing namespace a;\nint main(){return 0;}\n"
        result = optimize(source)
        assert "namespace a {" in result
        assert "using namespace a;" in result
        assert "unused" not in result

    def test_using_declaration(self, optimize):
        source = ("namespace n { int f(){return 1;} int g(){return 2;} }\n"
                  "using n::f;\nint main(){return f();}\n")
        result = optimize(source)
        assert "using n::f;" in result
        assert "int f()" in result
        assert "int g()" not in result


class TestPreprocessor:

    def test_inactive_branch_removed(self, optimize):
        source = "#ifdef FOO\nint f(){return 1;}\n#endif\nint main(){return 0;}"
        assert optimize(source) == "int main(){return 0;}"

    @pytest.mark.parametrize('options,expected', [
        (['-DFAST'], "int impl(){return 1;}\nint main(){return impl();}\n"),
        ([], "int impl(){return 2;}\nint main(){return impl();}\n"),
    ])
    def test_branch_selected_by_define(self, optimize, options, expected):
        source = ("#ifdef FAST\nint impl(){return 1;}\n#else\nint impl(){return 2;}\n#endif\n"
                  "int main(){return impl();}\n")
        assert optimize(source, cmd_line_options=options) == expected

    def test_unevaluable_group_untouched(self, optimize):
        source = "#ifdef __GNUC__\nint gnu;\n#endif\nint main(){return gnu;}\n"
        assert optimize(source) == source

    def test_alternative_definitions_kept(self, optimize):
        source = "#ifdef _WIN32\n#define P 1\n#else\n#define P 2\n#endif\nint main(){return P;}"
        assert optimize(source) == source

    def test_macro_from_unevaluated_group_keeps_later_group(self, optimize):
        source = ("#ifdef __GNUC__\n#define FAST 1\n#endif\n"
                  "#ifdef FAST\nint f(){return 1;}\n#else\nint f(){return 2;}\n#endif\n"
                  "int main(){return f();}\n")
        assert optimize(source) == source

    def test_negative_shift_leaves_group_unevaluated(self, optimize):
        source = "#if (1 << -1)\nint a;\n#endif\nint main(){return a;}"
        assert optimize(source) == source

    def test_used_macro_kept(self, optimize):
        source = "#define USED_MACRO 5\nint main(){return USED_MACRO;}"
        assert optimize(source) == source

    def test_unused_macro_removed(self, optimize):
        source = "#define DEBUG_LEVEL 3\nint main(){return 0;}"
        assert optimize(source) == "int main(){return 0;}"

    def test_keep_list(self, optimize):
        source = "#define DEBUG_LEVEL 3\nint main(){return 0;}"
        assert optimize(source, macros_to_keep=['DEBUG_LEVEL']) == source

    def test_dead_macro_chain(self):
        source = "#define A 1\n#define B A\nint main(){return 0;}"
        result = Optimizer().run_source(source)
        assert result.text == "int main(){return 0;}"
        assert sorted(r.name for r in result.removed_macros) == ['A', 'B']

    def test_macro_used_only_by_removed_code(self, optimize):
        source = "#define N 1\nint unused(){return N;}\nint main(){return 0;}\n"
        assert optimize(source) == "int main(){return 0;}\n"

    def test_macro_inside_string_is_not_a_use(self, optimize):
        source = '#define N 1\nconst char* s = "N";\nint main(){return 0;}\n'
        assert optimize(source) == "int main(){return 0;}\n"

    def test_error_in_inactive_branch(self, optimize):
        source = "#if 0\nint broken( = ;\n#endif\nint main(){return 0;}\n"
        result = optimize(source)
        assert "broken" not in result
        assert "int main(){return 0;}" in result


class TestMacroInvocations:
    """Top-level macro calls that expand into declarations are kept verbatim."""

    def test_declaring_macro_call(self, optimize):
        source = "#define DECL(n) int n(){return 1;}\nDECL(g)\nint main(){return g();}\n"
        assert optimize(source) == source

    def test_macro_call_with_semicolon(self, optimize):
        source = ("#define DECL(n) int n(){return 1;}\nDECL(g);\n"
                  "int unused(){return 2;}\nint main(){return g();}\n")
        result = optimize(source)
        assert "DECL(g);" in result
        assert "#define DECL" in result
        assert "unused" not in result


class TestFailures:

    def test_syntax_error(self):
        with pytest.raises(CompilationError):
            Optimizer().run_source("int main(){return 0;}\n@@@ garbage ;;\n")

    def test_bad_option(self):
        with pytest.raises(CompilationError):
            Optimizer(cmd_line_options=['main.cpp']).run_source("int main(){return 0;}")

    def test_missing_file(self, tmp_path):
        with pytest.raises(CompilationError):
            Optimizer().run_file(tmp_path / 'missing.cpp')

    def test_run_file(self, tmp_path):
        path = tmp_path / 'input.cpp'
        path.write_bytes(b"int unused(){return 1;}\nint main(){return 0;}\n")
        assert Optimizer().do_optimize(path) == "int main(){return 0;}\n"
