"""Markdown + LaTeX rendering for question titles.

Question titles are authored as Markdown that may contain ``$...$`` math.
The server renders them once at launch time and ships the HTML fragment in the
public question payload as ``titleHtml``; math is left in place for MathJax on
the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

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
            return ""
        return self._markdown.render(sanitized)


renderer = MarkdownMathRenderer()
