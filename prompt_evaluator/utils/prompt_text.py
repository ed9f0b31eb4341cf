"""Text helpers shared by the API, the generation client and the pipeline."""

from __future__ import annotations

import re

USER_PROMPT_MARKER = "{{user_prompt}}"

# A whole response wrapped in one fenced block, with an optional language tag.
_FENCED_RE = re.compile(r"^```(?:[\w+#.-]*[ \t]*\n)?(.*?)\n?```$", re.DOTALL)
_INNER_FENCE_RE = re.compile(r"^```", re.MULTILINE)


def materialize_prompt(template: str, user_prompt: str | None) -> str:
    """Substitute every ``{{user_prompt}}`` marker in the template.

    Substitution is a single pass, so a fragment that itself contains the
    marker is inserted literally and never expanded again. A template without
    the marker is returned unchanged.
    """
    return template.replace(USER_PROMPT_MARKER, user_prompt or "")


def strip_code_fences(text: str) -> str:
    """Unwrap a model answer that was returned as one fenced code block.

    Answers with several fenced blocks are returned as they are.
    """
    stripped = text.strip()
    match = _FENCED_RE.match(stripped)
    if match is None or _INNER_FENCE_RE.search(match.group(1)):
        return stripped
    return match.group(1).strip()


def preview(text: str, limit: int = 100) -> str:
    """Shorten text for log lines and API previews."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def message_text(message) -> str:  # noqa: ANN001
    """Text of a chat model message; list content keeps only its text parts."""
    content = message.content or ""
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return content
