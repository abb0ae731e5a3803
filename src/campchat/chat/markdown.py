"""Incremental markdown rendering for streamed assistant replies.

Only a small, line-oriented subset is understood:

* ``### `` headings,
* ``* `` / ``- `` bullet items (consecutive items share one list),
* paragraphs separated by blank lines,
* ``**strong**`` and ``*emphasis*`` spans inside any of the above.

The renderer always works on the *full* accumulated text and returns a frozen
tuple of blocks, so calling it after every streamed delta is deterministic and
a growing text yields trees that only change at their tail. Text is carried as
plain data; turning blocks into markup is the presentation layer's job.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal, Union

__all__ = [
    "InlineRun",
    "Heading",
    "Paragraph",
    "BulletList",
    "Block",
    "render_markdown",
    "parse_inline",
    "iter_plain_text",
]

InlineStyle = Literal["text", "strong", "emphasis"]

_INLINE_PATTERN = re.compile(r"(\*\*.*?\*\*|\*.*?\*)")
_HEADING_PREFIX = "### "
_BULLET_PREFIXES = ("* ", "- ")


@dataclass(slots=True, frozen=True)
class InlineRun:
    style: InlineStyle
    text: str


@dataclass(slots=True, frozen=True)
class Heading:
    runs: tuple[InlineRun, ...]
    level: int = 3


@dataclass(slots=True, frozen=True)
class Paragraph:
    runs: tuple[InlineRun, ...]


@dataclass(slots=True, frozen=True)
class BulletList:
    items: tuple[tuple[InlineRun, ...], ...]


Block = Union[Heading, Paragraph, BulletList]


def parse_inline(text: str) -> tuple[InlineRun, ...]:
    """Split ``text`` into plain, strong and emphasis runs.

    The first matching marker pair wins and its contents are kept verbatim;
    markers with nothing between them stay literal.
    """

    runs: list[InlineRun] = []
    for part in _INLINE_PATTERN.split(text):
        if not part:
            continue
        if len(part) > 4 and part.startswith("**") and part.endswith("**"):
            runs.append(InlineRun("strong", part[2:-2]))
        elif len(part) > 2 and part.startswith("*") and part.endswith("*") and not part.startswith("**"):
            runs.append(InlineRun("emphasis", part[1:-1]))
        else:
            _append_text(runs, part)
    return tuple(runs)


def render_markdown(text: str) -> tuple[Block, ...]:
    """Build the block tree for the accumulated ``text``."""

    builder = _BlockBuilder()
    for raw_line in (text or "").split("\n"):
        line = raw_line.strip()
        if line.startswith(_HEADING_PREFIX):
            builder.heading(line[len(_HEADING_PREFIX):])
        elif line.startswith(_BULLET_PREFIXES):
            builder.bullet(line[2:])
        elif not line:
            builder.blank()
        else:
            builder.text(line)
    return builder.finish()


def _append_text(runs: list[InlineRun], text: str) -> None:
    if runs and runs[-1].style == "text":
        runs[-1] = InlineRun("text", runs[-1].text + text)
    else:
        runs.append(InlineRun("text", text))


class _BlockBuilder:
    """Accumulates blocks while walking the input line by line."""

    def __init__(self) -> None:
        self._blocks: list[Block] = []
        self._paragraph: list[str] = []
        self._list_items: list[tuple[InlineRun, ...]] | None = None

    def heading(self, content: str) -> None:
        self._flush_paragraph()
        self._close_list()
        self._blocks.append(Heading(parse_inline(content)))

    def bullet(self, content: str) -> None:
        self._flush_paragraph()
        if self._list_items is None:
            self._list_items = []
        self._list_items.append(parse_inline(content))

    def blank(self) -> None:
        self._flush_paragraph()
        self._close_list()

    def text(self, line: str) -> None:
        self._close_list()
        self._paragraph.append(line)

    def finish(self) -> tuple[Block, ...]:
        self._flush_paragraph()
        self._close_list()
        return tuple(self._blocks)

    def _flush_paragraph(self) -> None:
        if not self._paragraph:
            return
        joined = " ".join(self._paragraph).strip()
        self._paragraph = []
        if joined:
            self._blocks.append(Paragraph(parse_inline(joined)))

    def _close_list(self) -> None:
        if self._list_items is None:
            return
        self._blocks.append(BulletList(tuple(self._list_items)))
        self._list_items = None


def iter_plain_text(blocks: Iterable[Block]) -> Iterable[str]:
    """Yield the plain text of each block, one string per line."""

    for block in blocks:
        if isinstance(block, BulletList):
            for item in block.items:
                yield "".join(run.text for run in item)
        else:
            yield "".join(run.text for run in block.runs)
