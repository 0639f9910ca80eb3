"""Markdown rendering for prompts, instructions and reading passages."""

from dataclasses import dataclass, field

from markdown_it import MarkdownIt
from markupsafe import Markup


@dataclass
class MarkdownRenderer:
    """Converts test-pack markdown into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self):
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text):
        """Render markdown into an HTML fragment; empty input renders nothing."""
        if not markdown_text or not markdown_text.strip():
            return Markup("")
        return Markup(self._markdown.render(markdown_text.strip()))


renderer = MarkdownRenderer()
