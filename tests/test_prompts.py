"""Tests for prompt loading and placeholder rendering."""

import pytest

from stepflow.orchestrator.errors import PromptFileError
from stepflow.prompts import load_prompt, render_prompt, resolve_prompt_path


class TestLoadPrompt:
    def test_load_absolute(self, tmp_path):
        path = tmp_path / "p.md"
        path.write_text("hello")
        assert load_prompt(str(path)) == "hello"

    def test_relative_to_base_dir(self, tmp_path):
        (tmp_path / "prompts").mkdir()
        (tmp_path / "prompts" / "p.md").write_text("relative")
        assert load_prompt("prompts/p.md", base_dir=tmp_path) == "relative"
        assert resolve_prompt_path("prompts/p.md", tmp_path) == tmp_path / "prompts" / "p.md"

    def test_missing(self, tmp_path):
        with pytest.raises(PromptFileError, match="Prompt file not found"):
            load_prompt(tmp_path / "missing.md")

    def test_directory_is_not_a_prompt(self, tmp_path):
        with pytest.raises(PromptFileError):
            load_prompt(tmp_path)


class TestRenderPrompt:
    def test_replaces_both_spellings(self):
        assert render_prompt("{{a}} and {{ a }}", {"a": "x"}) == "x and x"

    def test_unknown_placeholders_untouched(self):
        assert render_prompt("{{missing}}", {"a": "x"}) == "{{missing}}"

    def test_non_string_values(self):
        assert render_prompt("n={{n}}", {"n": 3}) == "n=3"
