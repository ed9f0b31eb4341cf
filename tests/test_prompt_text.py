"""Tests for prompt materialization and response cleanup."""

from __future__ import annotations

from langchain_core.messages import AIMessage

from prompt_evaluator.utils.prompt_text import (
    materialize_prompt,
    message_text,
    preview,
    strip_code_fences,
)


class TestMaterializePrompt:
    def test_replaces_marker(self):
        assert materialize_prompt("Echo: {{user_prompt}}", "hello") == "Echo: hello"

    def test_replaces_every_occurrence(self):
        template = "{{user_prompt}} and again {{user_prompt}}"
        assert materialize_prompt(template, "x") == "x and again x"

    def test_no_marker_returns_template(self):
        assert materialize_prompt("Summarize the input.", "ignored") == "Summarize the input."

    def test_empty_fragment(self):
        assert materialize_prompt("A{{user_prompt}}B", "") == "AB"

    def test_none_fragment(self):
        assert materialize_prompt("A{{user_prompt}}B", None) == "AB"

    def test_fragment_containing_marker_not_reexpanded(self):
        result = materialize_prompt("<{{user_prompt}}>", "{{user_prompt}}")
        assert result == "<{{user_prompt}}>"

    def test_similar_markers_untouched(self):
        template = "{user_prompt} {{ user_prompt }} {{user_prompt}}"
        assert materialize_prompt(template, "x") == "{user_prompt} {{ user_prompt }} x"


class TestStripCodeFences:
    def test_plain_text_trimmed(self):
        assert strip_code_fences("  plain answer \n") == "plain answer"

    def test_unwraps_fenced_block(self):
        assert strip_code_fences("```\nhello\n```") == "hello"

    def test_unwraps_fenced_block_with_language(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_partial_fence_left_alone(self):
        text = "Here is code:\n```python\nx = 1\n```"
        assert strip_code_fences(text) == text

    def test_several_fenced_blocks_left_alone(self):
        text = "```python\nx = 1\n```\nThen run:\n```bash\npython x.py\n```"
        assert strip_code_fences(text) == text

    def test_inline_backticks_inside_block_kept(self):
        assert strip_code_fences("```\nuse ``` to fence code\n```") == "use ``` to fence code"

    def test_empty(self):
        assert strip_code_fences("") == ""


class TestPreview:
    def test_short_text_unchanged(self):
        assert preview("abc", limit=5) == "abc"

    def test_long_text_clipped(self):
        assert preview("abcdefgh", limit=3) == "abc..."


class TestMessageText:
    def test_string_content(self):
        assert message_text(AIMessage(content="plain")) == "plain"

    def test_list_content_keeps_text_parts(self):
        message = AIMessage(content=[{"type": "text", "text": "a"}, "b"])
        assert message_text(message) == "ab"

    def test_empty_content(self):
        assert message_text(AIMessage(content="")) == ""
