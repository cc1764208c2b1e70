"""Unit tests for the panelmark command line interface."""

#  Copyright (c) 2025 Tom Villani, Ph.D.

import json
import logging

import pytest
from utils import PanelHtmlGenerator

from panelmark import __version__
from panelmark.cli import EXIT_ERROR, EXIT_SUCCESS, create_parser, main


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo the logging setup performed by each CLI run."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def panel_file(temp_dir):
    path = temp_dir / "panel.html"
    path.write_text(
        PanelHtmlGenerator.panel("<h2>Result</h2><p>hello <strong>world</strong> and $x^2$</p>"), encoding="utf-8"
    )
    return path


@pytest.mark.unit
@pytest.mark.cli
class TestCreateParser:
    """Test argument parsing."""

    def test_subcommands(self):
        """Each subcommand parses its options."""
        parser = create_parser()
        args = parser.parse_args(["--log-level", "DEBUG", "serialize", "in.html", "--selector", "main", "-o", "out.md"])
        assert args.command == "serialize"
        assert args.selector == "main"
        assert args.out == "out.md"
        assert args.log_level == "DEBUG"

        args = parser.parse_args(["render", "in.html", "-c", "config.json"])
        assert args.config == "config.json"

    def test_version(self, capsys):
        """--version prints the package version."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command(self, capsys):
        """Running without a command prints help and fails."""
        assert main([]) == EXIT_ERROR
        assert "usage" in capsys.readouterr().err


@pytest.mark.unit
@pytest.mark.cli
class TestSerializeCommand:
    """Test the serialize command."""

    def test_serialize_to_stdout(self, panel_file, capsys):
        """The document body is printed as Markdown."""
        assert main(["serialize", str(panel_file)]) == EXIT_SUCCESS
        assert capsys.readouterr().out == "## Result\n\nhello **world** and $x^2$\n"

    def test_serialize_selector_to_file(self, panel_file, temp_dir):
        """A selector narrows the output and -o writes a file."""
        out = temp_dir / "out.md"
        assert main(["serialize", str(panel_file), "--selector", "h2", "-o", str(out)]) == EXIT_SUCCESS
        assert out.read_text(encoding="utf-8") == "## Result"

    def test_selector_without_match(self, panel_file, capsys):
        """A selector that matches nothing fails."""
        assert main(["serialize", str(panel_file), "--selector", "table"]) == EXIT_ERROR
        assert "no element matches" in capsys.readouterr().err

    def test_missing_input(self, temp_dir, capsys):
        """An unreadable input file fails cleanly."""
        assert main(["serialize", str(temp_dir / "absent.html")]) == EXIT_ERROR
        assert "Error" in capsys.readouterr().err


@pytest.mark.unit
@pytest.mark.cli
class TestRenderCommand:
    """Test the render command."""

    def test_render_math(self, panel_file, temp_dir):
        """Math is typeset and copy controls are attached."""
        config = temp_dir / "config.json"
        config.write_text(json.dumps({"mermaid": False}))
        out = temp_dir / "rendered.html"

        assert main(["render", str(panel_file), "-c", str(config), "-o", str(out)]) == EXIT_SUCCESS
        html = out.read_text(encoding="utf-8")
        assert 'data-sidebar-math-rendered="1"' in html
        assert 'encoding="application/x-tex"' in html
        assert 'data-sidebar-copy-control="content"' in html
        assert "table-fix.css" in html

    def test_missing_config(self, panel_file, temp_dir, capsys):
        """A config path that does not exist fails."""
        assert main(["render", str(panel_file), "-c", str(temp_dir / "absent.json")]) == EXIT_ERROR
        assert "Config file not found" in capsys.readouterr().err


@pytest.mark.unit
@pytest.mark.cli
class TestConfigCommand:
    """Test the config command."""

    def test_defaults_as_json(self, capsys):
        """Without a file the defaults are printed as JSON."""
        assert main(["config"]) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["math"] is True
        assert data["selectors"]["content"] == ".leading-relaxed.select-text"

    def test_config_file(self, temp_dir, capsys):
        """Values from the file are reflected."""
        path = temp_dir / "config.json"
        path.write_text(json.dumps({"fontSize": 20, "mermaid": False}))
        assert main(["config", "-c", str(path)]) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["font_size"] == 20.0
        assert data["diagram"] is False

    def test_rich_falls_back_without_terminal(self, capsys):
        """--rich prints JSON when stdout is not a terminal."""
        assert main(["config", "--rich"]) == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["copy_button"] is True
