from __future__ import annotations

import logging
import re
from typing import List, Optional

from markdown_it import MarkdownIt
from markdown_it.token import Token

from .errors import ParseError
from .models import BlockType, ParsedBlock, StructuralTree
from .paths import decode_text

logger = logging.getLogger(__name__)

_LANGUAGE = re.compile(r"^([^\s{]+)")
# the same line breaks markdown-it normalizes before computing token maps
_NEWLINES = re.compile(r"\r\n?")

# container blocks kept as opaque "other" nodes
_OTHER_OPENERS = {
    "bullet_list_open",
    "ordered_list_open",
    "blockquote_open",
    "table_open",
}
_OTHER_LEAVES = {"hr", "html_block"}


class MarkdownParser:
    """
    Abstract markdown parser. Implementations should be stateless and reusable
    and must never execute, fetch, or render anything.
    """

    engine_version = "abstract"

    def parse(self, raw_text: str) -> StructuralTree:
        raise NotImplementedError

    def parse_bytes(self, raw: bytes) -> StructuralTree:
        return self.parse(decode_text(raw))


class MarkdownItParser(MarkdownParser):
    """
    markdown-it-py based parser (CommonMark preset plus tables).

    Only top-level blocks become nodes: headings, paragraphs, code blocks and
    opaque "other" blocks for lists, quotes, tables, rules and raw HTML.
    An unterminated fence runs to the end of the document and is recorded
    with `is_closed=False`.
    """

    engine_version = "markdown-it-py"

    def __init__(self, max_chars: int = 50 * 1024 * 1024, max_nesting: int = 64):
        self.max_chars = max_chars
        self.max_nesting = max_nesting
        # let the tokenizer nest deeper than our guard so the guard can see it
        self.md = MarkdownIt("commonmark", {"maxNesting": max_nesting * 2}).enable("table")

    def parse(self, raw_text: str) -> StructuralTree:
        if not isinstance(raw_text, str):
            raise ParseError(f"Expected text, got {type(raw_text).__name__}")
        if len(raw_text) > self.max_chars:
            raise ParseError(f"Document has {len(raw_text)} characters, limit is {self.max_chars}")

        tokens = self.md.parse(raw_text)
        deepest = max((t.level for t in tokens), default=0)
        if deepest >= self.max_nesting:
            raise ParseError(f"Document nesting depth {deepest} exceeds limit {self.max_nesting}")

        lines = _split_lines(_NEWLINES.sub("\n", raw_text))
        blocks = self._map_tokens(tokens, lines)
        return StructuralTree(
            blocks=blocks,
            line_count=len(lines),
            word_count=len(raw_text.split()),
            engine_version=self.engine_version,
        )

    def _map_tokens(self, tokens: List[Token], lines: List[str]) -> List[ParsedBlock]:
        blocks: List[ParsedBlock] = []
        for i, token in enumerate(tokens):
            if token.level != 0 or token.map is None:
                continue
            start, end = token.map[0] + 1, token.map[1]

            if token.type == "heading_open":
                blocks.append(
                    ParsedBlock(
                        block_type=BlockType.HEADING,
                        text=_inline_text(tokens, i),
                        level=int(token.tag[1:]),
                        line_start=start,
                        line_end=end,
                    )
                )
            elif token.type == "paragraph_open":
                blocks.append(
                    ParsedBlock(
                        block_type=BlockType.PARAGRAPH,
                        text=_inline_text(tokens, i),
                        line_start=start,
                        line_end=end,
                    )
                )
            elif token.type == "fence":
                blocks.append(self._fence_block(token, lines))
            elif token.type == "code_block":
                body_lines = len(_split_lines(token.content))
                blocks.append(
                    ParsedBlock(
                        block_type=BlockType.CODE,
                        text=token.content,
                        line_start=start,
                        line_end=end,
                        code_line_start=start,
                        code_line_end=start + body_lines - 1,
                    )
                )
            elif token.type in _OTHER_OPENERS or token.type in _OTHER_LEAVES:
                blocks.append(
                    ParsedBlock(
                        block_type=BlockType.OTHER,
                        text="\n".join(lines[token.map[0]:token.map[1]]),
                        info=token.type.replace("_open", ""),
                        line_start=start,
                        line_end=end,
                    )
                )
        return blocks

    def _fence_block(self, token: Token, lines: List[str]) -> ParsedBlock:
        info = token.info.strip()
        match = _LANGUAGE.match(info)
        language: Optional[str] = match.group(1) if match else None
        opening, stop = token.map
        closed = _fence_is_closed(token, lines)
        body_lines = len(_split_lines(token.content))
        code_start = opening + 2
        if not closed:
            logger.debug("Unterminated fence opened on line %d", opening + 1)
        return ParsedBlock(
            block_type=BlockType.CODE,
            text=token.content,
            language=language,
            info=info,
            line_start=opening + 1,
            line_end=stop,
            code_line_start=code_start,
            code_line_end=code_start + body_lines - 1,
            is_fenced=True,
            is_closed=closed,
        )


def _inline_text(tokens: List[Token], index: int) -> str:
    if index + 1 < len(tokens) and tokens[index + 1].type == "inline":
        return tokens[index + 1].content
    return ""


def _fence_is_closed(token: Token, lines: List[str]) -> bool:
    opening, stop = token.map
    if stop - 1 <= opening or stop - 1 >= len(lines):
        return False
    last = lines[stop - 1].strip()
    marker = token.markup[0]
    return len(last) >= len(token.markup) and set(last) == {marker}


def _split_lines(text: str) -> List[str]:
    # only "\n" ends a line, matching token.map
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines
