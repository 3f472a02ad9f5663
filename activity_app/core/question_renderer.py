"""Markdown rendering of question prompts and choices for API clients.

Prompts and choices may contain Markdown and ``$...$`` LaTeX. Only the
Markdown is converted here; math is left in place for the client to typeset.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

from activity_app.core.models import Question


@dataclass(slots=True)
class QuestionRenderer:
    """Converts question text into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render a single choice without the surrounding paragraph."""
        return self._markdown.renderInline((markdown_text or "").strip())

    def render_question(self, question: Question) -> dict[str, object]:
        return {
            "prompt_html": self.render_fragment(question.prompt),
            "choices_html": [self.render_inline(choice) for choice in question.choices],
        }


renderer = QuestionRenderer()
# MarkdownIt is safe for concurrent read-only renders, so the API shares this instance.
