"""Converts plain text into Atlassian Document Format (ADF).

Jira Cloud's v3 API only accepts rich text fields, such as an issue
description, as ADF documents.
"""

from typing import Any


def _paragraph(lines: list[str]) -> dict[str, Any]:
    content: list[dict[str, Any]] = []
    for index, line in enumerate(lines):
        if index > 0:
            content.append({"type": "hardBreak"})
        if line:
            content.append({"type": "text", "text": line})
    return {"type": "paragraph", "content": content}


def text_to_adf(text: str) -> dict[str, Any]:
    """Convert plain text into an ADF document.

    Blank lines separate paragraphs; single line breaks inside a paragraph
    become hard breaks.
    """
    paragraphs: list[dict[str, Any]] = []
    current: list[str] = []
    for line in text.replace("\r\n", "\n").split("\n"):
        if not line.strip():
            if current:
                paragraphs.append(_paragraph(current))
                current = []
            continue
        current.append(line.rstrip())
    if current:
        paragraphs.append(_paragraph(current))
    return {"type": "doc", "version": 1, "content": paragraphs}
