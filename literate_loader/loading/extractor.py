from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .models import BlockType, Document, IdentityMode, ParsedBlock, StructuralTree, Task

logger = logging.getLogger(__name__)

PLAIN_TEXT_MARKERS = frozenset({"text", "txt", "plain", "plaintext", "output", "console-output"})

LANGUAGE_ALIASES: Dict[str, str] = {
    "py": "python",
    "python3": "python",
    "js": "javascript",
    "node": "javascript",
    "ts": "typescript",
    "rb": "ruby",
    "rs": "rust",
    "cxx": "cpp",
    "c++": "cpp",
    "golang": "go",
    "ps1": "powershell",
    "pwsh": "powershell",
    "shell": "sh",
    "kt": "kotlin",
}

EXECUTABLE_LANGUAGES = frozenset(
    {
        "python",
        "javascript",
        "typescript",
        "ruby",
        "go",
        "rust",
        "java",
        "c",
        "cpp",
        "bash",
        "sh",
        "zsh",
        "fish",
        "powershell",
        "sql",
        "r",
        "scala",
        "kotlin",
        "swift",
        "php",
    }
)

DEFAULT_TIMEOUTS: Dict[str, int] = {
    "python": 60,
    "javascript": 30,
    "typescript": 30,
    "ruby": 30,
    "php": 30,
    "bash": 30,
    "sh": 30,
    "zsh": 30,
    "fish": 30,
    "powershell": 30,
    "sql": 120,
    "r": 90,
    "java": 120,
    "scala": 120,
    "kotlin": 120,
    "swift": 90,
    "go": 60,
    "rust": 60,
    "c": 60,
    "cpp": 60,
}

# name=foo, name="foo bar", {name=foo id=bar}, {"name": "foo"}
_ATTR = re.compile(r"""([A-Za-z_][\w-]*)\s*[=:]\s*("([^"]*)"|'([^']*)'|[^\s,}]+)""")
_NAME_DIRECTIVE = re.compile(r"^\s*(?:#|//|--)\s*name:\s*(\S+)\s*$")


def normalize_language(tag: Optional[str]) -> Optional[str]:
    if not tag:
        return None
    lowered = tag.strip().lower()
    return LANGUAGE_ALIASES.get(lowered, lowered)


def parse_fence_attributes(info: str) -> Dict[str, str]:
    """
    Read key/value attributes after the language word of a fence info string.
    Both `bash name=setup` and `bash {"name": "setup"}` forms are accepted.
    """
    parts = info.split(None, 1)
    rest = parts[1] if len(parts) > 1 else ""
    if not rest and "{" in info:
        rest = info[info.index("{"):]
    rest = rest.strip()
    if rest.startswith("{"):
        try:
            loaded = json.loads(rest)
        except ValueError:
            loaded = None
        if isinstance(loaded, dict):
            return {str(k): str(v) for k, v in loaded.items()}
    attrs: Dict[str, str] = {}
    for match in _ATTR.finditer(rest):
        key, raw, dq, sq = match.groups()
        attrs[key] = dq if dq is not None else sq if sq is not None else raw
    return attrs


def content_hash(*parts: str, length: int = 16) -> str:
    digest = hashlib.sha256("\x00".join(parts).encode("utf-8")).hexdigest()
    return digest[:length]


class TaskExtractor:
    """
    Turns the fenced code blocks of a parsed document into Task records.

    Blocks without a language tag, or tagged as plain text, are only counted
    in the document metadata. Identifiers are content-derived so an
    unchanged tree yields the same ids on every load.
    """

    def __init__(
        self,
        executable_languages: Iterable[str] = EXECUTABLE_LANGUAGES,
        timeouts: Optional[Mapping[str, int]] = None,
        default_timeout: int = 30,
        plain_text_markers: Iterable[str] = PLAIN_TEXT_MARKERS,
    ):
        self.executable_languages = frozenset(l.lower() for l in executable_languages)
        self.timeouts = dict(DEFAULT_TIMEOUTS if timeouts is None else timeouts)
        self.default_timeout = default_timeout
        self.plain_text_markers = frozenset(m.lower() for m in plain_text_markers)

    def qualifying_blocks(self, tree: StructuralTree) -> Tuple[List[ParsedBlock], int]:
        qualifying: List[ParsedBlock] = []
        skipped = 0
        for block in tree.blocks:
            if block.block_type != BlockType.CODE:
                continue
            language = normalize_language(block.language)
            if not block.is_fenced or not language or language in self.plain_text_markers:
                skipped += 1
                continue
            if not block.text.strip():
                # empty fences have nothing to run
                skipped += 1
                continue
            qualifying.append(block)
        return qualifying, skipped

    def resolve_mode(self, identity_mode: IdentityMode, qualifying_count: int) -> IdentityMode:
        mode = IdentityMode(identity_mode)
        if mode == IdentityMode.AUTO:
            return IdentityMode.CELL if qualifying_count > 1 else IdentityMode.DOCUMENT
        return mode

    def extract(self, document: Document, tree: StructuralTree, identity_mode: IdentityMode) -> List[Task]:
        blocks, skipped = self.qualifying_blocks(tree)
        mode = self.resolve_mode(identity_mode, len(blocks))

        if mode == IdentityMode.DOCUMENT:
            document.identity = content_hash("document", document.path)

        tasks: List[Task] = []
        for order_index, block in enumerate(blocks):
            language = normalize_language(block.language)
            attrs = parse_fence_attributes(block.info)
            name, generated = self._task_name(language, order_index, attrs, block.text)
            tasks.append(
                Task(
                    id=self._task_id(mode, document, block, order_index, attrs),
                    document_id=document.id,
                    name=name,
                    is_name_generated=generated,
                    language=language,
                    code=block.text,
                    line_start=block.code_line_start,
                    line_end=block.code_line_end,
                    order_index=order_index,
                    is_executable=self.is_executable(language),
                    timeout_seconds=self.timeout_for(language),
                    metadata={
                        "info": block.info,
                        "attributes": attrs,
                        "identity_mode": mode.value,
                        "fence_closed": block.is_closed,
                    },
                )
            )

        document.metadata["code_blocks"] = len(blocks) + skipped
        document.metadata["untagged_blocks"] = skipped
        document.metadata["languages"] = sorted({t.language for t in tasks})
        document.metadata["identity_mode"] = mode.value
        logger.debug("Extracted %d tasks from %s (%d untagged blocks)", len(tasks), document.path, skipped)
        return tasks

    def is_executable(self, language: Optional[str]) -> bool:
        return normalize_language(language) in self.executable_languages

    def timeout_for(self, language: Optional[str]) -> int:
        return self.timeouts.get(normalize_language(language) or "", self.default_timeout)

    def _task_name(
        self, language: str, order_index: int, attrs: Mapping[str, str], code: str
    ) -> Tuple[str, bool]:
        explicit = attrs.get("name")
        if not explicit:
            first_line = code.splitlines()[0] if code else ""
            directive = _NAME_DIRECTIVE.match(first_line)
            explicit = directive.group(1) if directive else None
        if explicit:
            return explicit, False
        return f"{language}-{order_index}", True

    def _task_id(
        self,
        mode: IdentityMode,
        document: Document,
        block: ParsedBlock,
        order_index: int,
        attrs: Mapping[str, str],
    ) -> str:
        if mode == IdentityMode.DOCUMENT:
            return f"{document.identity}:{order_index}"
        explicit = attrs.get("id")
        if explicit:
            return explicit
        return content_hash("cell", document.path, block.text, str(order_index))
