"""Tests for the cpptrim command line."""
import pytest
from typer.testing import CliRunner

from cpptrim import __version__
from cpptrim.main import app


runner = CliRunner()

SOURCE = "int unused(){return 1;}\nint main(){return 0;}\n"


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / 'input.cpp'
    path.write_text(SOURCE)
    return path


class TestOptimizeCommand:

    def test_single_file_to_stdout(self, source_file):
        result = runner.invoke(app, ['optimize', str(source_file)])
        assert result.exit_code == 0
        assert "int main(){return 0;}" in result.stdout
        assert "unused" not in result.stdout

    def test_output_option(self, source_file, tmp_path):
        target = tmp_path / 'out.cpp'
        result = runner.invoke(app, ['optimize', str(source_file), '-o', str(target)])
        assert result.exit_code == 0
        assert target.read_text() == "int main(){return 0;}\n"

    def test_batch_writes_min_files(self, source_file, tmp_path):
        other = tmp_path / 'other.cpp'
        other.write_text("int main(){return 1;}\n")
        result = runner.invoke(app, ['optimize', str(source_file), str(other)])
        assert result.exit_code == 0
        assert (tmp_path / 'input.min.cpp').read_text() == "int main(){return 0;}\n"
        assert (tmp_path / 'other.min.cpp').read_text() == "int main(){return 1;}\n"

    def test_output_with_several_files(self, source_file, tmp_path):
        result = runner.invoke(app, ['optimize', str(source_file), str(source_file),
                                     '-o', str(tmp_path / 'out.cpp')])
        assert result.exit_code == 2

    def test_define_selects_branch(self, tmp_path):
        path = tmp_path / 'branch.cpp'
        path.write_text("#ifdef FAST\nint impl(){return 1;}\n#else\nint impl(){return 2;}\n#endif\n"
                        "int main(){return impl();}\n")
        result = runner.invoke(app, ['optimize', str(path), '-D', 'FAST'])
        assert result.exit_code == 0
        assert "return 1;" in result.stdout
        assert "return 2;" not in result.stdout

    def test_undefine_overrides_define(self, tmp_path):
        path = tmp_path / 'branch.cpp'
        path.write_text("#ifdef FAST\nint impl(){return 1;}\n#else\nint impl(){return 2;}\n#endif\n"
                        "int main(){return impl();}\n")
        result = runner.invoke(app, ['optimize', str(path), '-D', 'FAST', '-U', 'FAST'])
        assert result.exit_code == 0
        assert "return 2;" in result.stdout
        assert "return 1;" not in result.stdout

    def test_system_include_dir_accepted(self, source_file, tmp_path):
        result = runner.invoke(app, ['optimize', str(source_file), '--isystem', str(tmp_path)])
        assert result.exit_code == 0
        assert "int main(){return 0;}" in result.stdout

    def test_entry_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv('CPPTRIM_ENTRY_POINTS', 'main,hook')
        path = tmp_path / 'hook.cpp'
        path.write_text("void hook(){}\nint main(){return 0;}\n")
        result = runner.invoke(app, ['optimize', str(path)])
        assert result.exit_code == 0
        assert "void hook(){}" in result.stdout

    def test_dump_graph(self, source_file, tmp_path):
        graph_path = tmp_path / 'deps.dot'
        result = runner.invoke(app, ['optimize', str(source_file), '--dump-graph', str(graph_path)])
        assert result.exit_code == 0
        assert '"main"' in graph_path.read_text()

    def test_missing_file_fails(self, tmp_path):
        result = runner.invoke(app, ['optimize', str(tmp_path / 'missing.cpp')])
        assert result.exit_code == 1

    def test_syntax_error_fails(self, tmp_path):
        path = tmp_path / 'broken.cpp'
        path.write_text("int main(){return 0;}\n@@@ garbage ;;\n")
        result = runner.invoke(app, ['optimize', str(path)])
        assert result.exit_code == 1


class TestOtherCommands:

    def test_graph(self, source_file):
        result = runner.invoke(app, ['graph', str(source_file)])
        assert result.exit_code == 0
        assert 'digraph dependencies {' in result.stdout
        assert '"unused"' in result.stdout

    def test_graph_with_undefine(self, source_file):
        result = runner.invoke(app, ['graph', str(source_file), '-D', 'X', '-U', 'X'])
        assert result.exit_code == 0
        assert '"main"' in result.stdout

    def test_version(self):
        result = runner.invoke(app, ['version'])
        assert result.exit_code == 0
        assert __version__ in result.stdout
