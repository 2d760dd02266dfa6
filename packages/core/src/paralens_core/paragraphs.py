"""Splitting raw document text into paragraphs."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paragraph:
    """A transient paragraph of the document currently being edited."""

    position: int
    text: str
    start_line: int = 0


def split_paragraphs(text: str) -> list[Paragraph]:
    """Split text into paragraphs delimited by blank lines.

    A blank line is empty or whitespace-only. Consecutive non-blank lines form
    one paragraph and are joined with a single newline; the lines themselves
    are kept verbatim so that re-joining the paragraphs with blank lines
    reproduces the author's text.
    """
    paragraphs: list[Paragraph] = []
    current: list[str] = []
    start = 0

    for index, line in enumerate(text.splitlines()):
        if line.strip():
            if not current:
                start = index
            current.append(line)
            continue
        if current:
            paragraphs.append(Paragraph(position=len(paragraphs), text="\n".join(current), start_line=start))
            current = []

    if current:
        paragraphs.append(Paragraph(position=len(paragraphs), text="\n".join(current), start_line=start))

    return paragraphs


def join_paragraphs(texts: list[str]) -> str:
    """Inverse of split_paragraphs for already-split paragraph texts."""
    return "\n\n".join(texts)
