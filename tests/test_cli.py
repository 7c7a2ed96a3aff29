"""Tests for the command-line interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from codeunveil import cli
from codeunveil.config import Config


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def source_tree(tmp_path: Path, lua_sample: str, js_sample: str) -> Path:
    """A small directory of mixed sources plus files that must be skipped."""
    root = tmp_path / "src"
    (root / "nested").mkdir(parents=True)
    (root / "node_modules").mkdir()
    (root / "main.lua").write_text(lua_sample, encoding="utf-8")
    (root / "nested" / "app.js").write_text(js_sample, encoding="utf-8")
    (root / "node_modules" / "dep.js").write_text("var a = 1;", encoding="utf-8")
    (root / "main.deobfuscated.lua").write_text("-- old output", encoding="utf-8")
    (root / "notes.txt").write_text("not code", encoding="utf-8")
    return root


class TestHelpers:
    """Tests for path and language helpers."""

    def test_resolve_language(self):
        """Explicit tag, then suffix, then the configured default."""
        config = Config()
        assert cli.resolve_language(Path("x.js"), "python", config) == "python"
        assert cli.resolve_language(Path("x.js"), None, config) == "javascript"
        assert cli.resolve_language(Path("x.unknown"), None, config) == config.default_language

    def test_output_path_for(self, tmp_path):
        """Outputs sit beside the input unless a path or directory is given."""
        config = Config()
        source = tmp_path / "code.lua"

        assert cli.output_path_for(source, None, config, "deobfuscated") == tmp_path / "code.deobfuscated.lua"
        assert cli.output_path_for(source, tmp_path / "o.lua", config, "deobfuscated") == tmp_path / "o.lua"
        assert cli.output_path_for(source, None, Config(output_dir=tmp_path / "out"), "obfuscated") == (
            tmp_path / "out" / "code.lua"
        )

    def test_find_source_files(self, source_tree):
        """Vendored trees, earlier outputs and unknown suffixes are skipped."""
        files = cli.find_source_files(source_tree)
        assert [f.relative_to(source_tree).as_posix() for f in files] == ["main.lua", "nested/app.js"]


@pytest.mark.asyncio
async def test_process_directory_mirrors_tree(source_tree, tmp_path):
    """Every file is handled and outputs mirror the input layout."""
    out_dir = tmp_path / "out"
    config = Config(concurrency=2)

    def handler(file_path, out_path):
        return cli.deobfuscate_file(file_path, config, out_path)

    results = await cli.process_directory(source_tree, config, handler, out_dir, announce=False)

    assert [Path(r["file"]).name for r in results] == ["main.lua", "app.js"]
    assert (out_dir / "main.lua").exists()
    assert (out_dir / "nested" / "app.js").exists()
    assert '"Hello"' in (out_dir / "main.lua").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_process_directory_records_failures(source_tree):
    """A failing file is reported without stopping the others."""
    config = Config()

    def handler(file_path, out_path):
        if file_path.suffix == ".js":
            raise OSError("disk full")
        return {"file": str(file_path)}

    results = await cli.process_directory(source_tree, config, handler, announce=False)

    assert results[0] == {"file": str(source_tree / "main.lua")}
    assert results[1] == {"file": str(source_tree / "nested" / "app.js"), "error": "disk full"}


class TestDeobfuscateCommand:
    """Tests for the deobfuscate command."""

    def test_file(self, runner, tmp_path, lua_sample):
        """A file is rewritten next to the input."""
        source = tmp_path / "sample.lua"
        source.write_text(lua_sample, encoding="utf-8")

        result = runner.invoke(cli.main, ["deobfuscate", str(source)])

        assert result.exit_code == 0, result.output
        output = (tmp_path / "sample.deobfuscated.lua").read_text(encoding="utf-8")
        assert output.startswith("-- Deobfuscated by codeunveil")
        assert '"Hello"' in output

    def test_json_report(self, runner, tmp_path, js_sample):
        """--json prints the report without code."""
        source = tmp_path / "sample.js"
        source.write_text(js_sample, encoding="utf-8")

        result = runner.invoke(cli.main, ["deobfuscate", str(source), "--json", "--policy", "fixed"])

        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["analysis"]["confidence"] == 99
        assert report["analysis"]["language"] == "javascript"
        assert "output_code" not in report

    def test_no_header(self, runner, tmp_path):
        """--no-header leaves the header off."""
        source = tmp_path / "plain.py"
        source.write_text("x = 1\n", encoding="utf-8")
        target = tmp_path / "out.py"

        result = runner.invoke(cli.main, ["deobfuscate", str(source), "-o", str(target), "--no-header"])

        assert result.exit_code == 0, result.output
        assert target.read_text(encoding="utf-8") == "x = 1\n"

    def test_directory(self, runner, source_tree, tmp_path):
        """A directory is processed into the output directory."""
        out_dir = tmp_path / "clean"
        result = runner.invoke(cli.main, ["deobfuscate", str(source_tree), "-o", str(out_dir), "--json"])

        assert result.exit_code == 0, result.output
        assert len(json.loads(result.output)) == 2
        assert (out_dir / "nested" / "app.js").exists()

    def test_invalid_language_exits_1(self, runner, tmp_path):
        """Fatal errors print a message and exit with status 1."""
        source = tmp_path / "sample.lua"
        source.write_text("print(1)", encoding="utf-8")

        result = runner.invoke(cli.main, ["deobfuscate", str(source), "-l", "   "])

        assert result.exit_code == 1
        assert "Language tag is empty" in result.output

    def test_input_too_large_exits_1(self, runner, tmp_path, monkeypatch):
        """The size limit comes from the environment like any setting."""
        monkeypatch.setenv("CODEUNVEIL_MAX_INPUT_BYTES", "4")
        source = tmp_path / "sample.lua"
        source.write_text("print(1)", encoding="utf-8")

        result = runner.invoke(cli.main, ["deobfuscate", str(source)])

        assert result.exit_code == 1
        assert "limit is 4 bytes" in result.output

    def test_debug_file(self, runner, tmp_path):
        """--debug writes the run to the given log file."""
        source = tmp_path / "sample.lua"
        source.write_text("print(string.char(72, 105))", encoding="utf-8")
        log_file = tmp_path / "debug.log"

        result = runner.invoke(cli.main, ["deobfuscate", str(source), "--debug", "--debug-file", str(log_file)])

        assert result.exit_code == 0, result.output
        assert "Processing file" in log_file.read_text(encoding="utf-8")


class TestObfuscateCommand:
    """Tests for the obfuscate command."""

    def test_file_with_seed(self, runner, tmp_path, simple_lua):
        """Same seed, same output."""
        source = tmp_path / "greet.lua"
        source.write_text(simple_lua, encoding="utf-8")
        first = tmp_path / "a.lua"
        second = tmp_path / "b.lua"

        for target in (first, second):
            result = runner.invoke(cli.main, ["obfuscate", str(source), "--level", "4", "--seed", "11", "-o", str(target)])
            assert result.exit_code == 0, result.output

        assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8")
        assert first.read_text(encoding="utf-8") != simple_lua

    def test_flags_disable_protections(self, runner, tmp_path, simple_js):
        """Turning every protection off copies the input."""
        source = tmp_path / "greet.js"
        source.write_text(simple_js, encoding="utf-8")
        flags = [
            "--no-string-encryption", "--no-variable-renaming", "--no-control-flow-obfuscation",
            "--no-dead-code-injection", "--no-anti-debug", "--no-vm-protection",
            "--no-bytecode-encryption", "--no-custom-encryption",
        ]

        result = runner.invoke(cli.main, ["obfuscate", str(source), "--level", "10", *flags])

        assert result.exit_code == 0, result.output
        assert (tmp_path / "greet.obfuscated.js").read_text(encoding="utf-8") == simple_js

    def test_json_report(self, runner, tmp_path, simple_lua):
        """--json prints the encoder report; out-of-range levels are clamped."""
        source = tmp_path / "greet.lua"
        source.write_text(simple_lua, encoding="utf-8")

        result = runner.invoke(cli.main, ["obfuscate", str(source), "--level", "42", "--json"])

        assert result.exit_code == 0, result.output
        analysis = json.loads(result.output)["analysis"]
        assert analysis["obfuscation_type"] == "Level 10 Obfuscation"
        assert analysis["confidence_policy"] == "fixed"


class TestAnalyzeCommand:
    """Tests for the analyze command."""

    def test_table_output(self, runner, fixtures_dir):
        """Patterns and threats are shown for a file."""
        result = runner.invoke(cli.main, ["analyze", str(fixtures_dir / "luraph_sample.lua")])

        assert result.exit_code == 0, result.output
        assert "Detected Patterns" in result.output
        assert "String Character Encoding" in result.output

    def test_json_output(self, runner, fixtures_dir):
        """--json prints the analysis and threats."""
        result = runner.invoke(cli.main, ["analyze", str(fixtures_dir / "clean_sample.py"), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["language"] == "python"
        assert data["security_threats"] == []

    def test_directory_rejected(self, runner, tmp_path):
        """analyze takes a single file."""
        result = runner.invoke(cli.main, ["analyze", str(tmp_path)])
        assert result.exit_code != 0
