"""Markdown structure for skill bodies and reference documents.

Only the parts the linter and catalog need are recognised: ATX headings,
fenced and indented code blocks, inline links/images and reference-style link
definitions (footnote definitions are not links). Code blocks are opaque;
nothing inside them is treated as a link or heading.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")
_INDENTED_RE = re.compile(r"^(?: {4}|\t)")
_LIST_ITEM_RE = re.compile(r"^ {0,3}(?:[-*+]|\d{1,9}[.)])(?:\s|$)")
_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:\s+(.*?))?\s*$")
_HEADING_CLOSE_RE = re.compile(r"\s+#+\s*$")
_CODE_SPAN_RE = re.compile(r"(`+)(.+?)\1")
_INLINE_LINK_RE = re.compile(
    r"(!?)\[([^\]]*)\]\(\s*(<[^>]*>|(?:[^\s()]|\([^\s()]*\))+)(?:\s+(?:\"[^\"]*\"|'[^']*'|\([^)]*\)))?\s*\)"
)
_REF_DEF_RE = re.compile(r"^ {0,3}\[(?!\^)([^\]]+)\]:\s*(<[^>]*>|\S+)")
_HEADING_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_SLUG_DROP_RE = re.compile(r"[^\w\- ]", flags=re.UNICODE)


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    slug: str
    line: int


@dataclass(frozen=True)
class CodeBlock:
    language: str | None
    text: str
    line: int
    fenced: bool = True


@dataclass(frozen=True)
class Link:
    target: str
    text: str
    line: int
    is_image: bool = False


@dataclass(frozen=True)
class MarkdownDocument:
    title: str | None
    headings: tuple[Heading, ...] = ()
    code_blocks: tuple[CodeBlock, ...] = ()
    links: tuple[Link, ...] = ()

    def anchors(self) -> set[str]:
        return {h.slug for h in self.headings}


def _heading_plain_text(text: str) -> str:
    out = _HEADING_LINK_RE.sub(lambda m: m.group(1), text)
    return _CODE_SPAN_RE.sub(lambda m: m.group(2), out)


class _Slugger:
    """GitHub-style anchor slugs, with ``-N`` suffixes for repeats."""

    def __init__(self) -> None:
        self._seen: dict[str, int] = {}

    def slug(self, text: str) -> str:
        base = _SLUG_DROP_RE.sub("", _heading_plain_text(text).strip().lower()).replace(" ", "-")
        count = self._seen.get(base)
        if count is None:
            self._seen[base] = 0
            return base
        count += 1
        self._seen[base] = count
        candidate = f"{base}-{count}"
        self._seen.setdefault(candidate, 0)
        return candidate


def slugify_heading(text: str) -> str:
    return _Slugger().slug(text)


def _strip_target(raw: str) -> str:
    target = raw.strip()
    if target.startswith("<") and target.endswith(">"):
        target = target[1:-1].strip()
    return target


def _fence_opener(line: str) -> tuple[str, str | None] | None:
    opened = _FENCE_OPEN_RE.match(line)
    if not opened:
        return None
    fence, info = opened.group(1), opened.group(2).strip()
    # A backtick info string may not contain backticks (```js``` is inline code).
    if fence[0] == "`" and "`" in info:
        return None
    return fence, (info.split()[0] if info else None)


def _closes_fence(line: str, fence: str) -> bool:
    stripped = line.strip()
    if len(line) - len(line.lstrip(" ")) > 3:
        return False
    run = len(stripped) - len(stripped.lstrip(fence[0]))
    return run >= len(fence) and not stripped[run:].strip()


def _indented_block(lines: list[str], line: int) -> CodeBlock:
    while lines and not lines[-1].strip():
        lines.pop()
    text = "\n".join(_INDENTED_RE.sub("", ln, count=1) for ln in lines)
    return CodeBlock(language=None, text=text, line=line, fenced=False)


def parse_markdown(text: str, *, first_line: int = 1) -> MarkdownDocument:
    slugger = _Slugger()
    title: str | None = None
    headings: list[Heading] = []
    blocks: list[CodeBlock] = []
    links: list[Link] = []

    fence: str | None = None
    fence_lang: str | None = None
    fence_line = 0
    fence_lines: list[str] = []
    indented: list[str] | None = None
    indented_line = 0
    prev_blank = True
    in_list = False

    for lineno, line in enumerate(str(text or "").splitlines(), start=int(first_line)):
        blank = not line.strip()
        after_blank, prev_blank = prev_blank, blank

        if fence is not None:
            if _closes_fence(line, fence):
                blocks.append(CodeBlock(language=fence_lang, text="\n".join(fence_lines), line=fence_line))
                fence = None
                fence_lines = []
                continue
            fence_lines.append(line)
            continue

        if indented is not None:
            if blank or _INDENTED_RE.match(line):
                indented.append(line)
                continue
            blocks.append(_indented_block(indented, indented_line))
            indented = None
        elif not blank and after_blank and not in_list and _INDENTED_RE.match(line):
            # Indented code cannot interrupt a paragraph or continue a list item.
            indented = [line]
            indented_line = lineno
            continue

        if not blank and not _INDENTED_RE.match(line):
            if _LIST_ITEM_RE.match(line):
                in_list = True
            elif after_blank and not line.startswith(" "):
                in_list = False

        opened = _fence_opener(line)
        if opened:
            fence, fence_lang = opened
            fence_line = lineno
            fence_lines = []
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            in_list = False
            raw_text = _HEADING_CLOSE_RE.sub("", heading.group(2) or "").strip()
            if raw_text:
                level = len(heading.group(1))
                plain = _heading_plain_text(raw_text)
                headings.append(Heading(level=level, text=plain, slug=slugger.slug(raw_text), line=lineno))
                if level == 1 and title is None:
                    title = plain

        ref_def = _REF_DEF_RE.match(line)
        if ref_def:
            links.append(Link(target=_strip_target(ref_def.group(2)), text=ref_def.group(1), line=lineno))
            continue

        visible = _CODE_SPAN_RE.sub("", line)
        for match in _INLINE_LINK_RE.finditer(visible):
            links.append(
                Link(
                    target=_strip_target(match.group(3)),
                    text=match.group(2),
                    line=lineno,
                    is_image=bool(match.group(1)),
                )
            )

    if fence is not None:
        # Unterminated fence runs to end of document.
        blocks.append(CodeBlock(language=fence_lang, text="\n".join(fence_lines), line=fence_line))
    if indented is not None:
        blocks.append(_indented_block(indented, indented_line))

    return MarkdownDocument(title=title, headings=tuple(headings), code_blocks=tuple(blocks), links=tuple(links))


@dataclass(frozen=True)
class ReferenceDocument:
    path: Path
    title: str
    toc: tuple[Heading, ...] = ()
    code_blocks: tuple[CodeBlock, ...] = ()
    document: MarkdownDocument = field(default_factory=lambda: MarkdownDocument(title=None))

    @property
    def has_title(self) -> bool:
        return self.document.title is not None

    def languages(self) -> list[str]:
        return sorted({b.language for b in self.code_blocks if b.language})

    def to_public_dict(self, *, base: Path | None = None) -> dict[str, Any]:
        path = self.path
        if base is not None:
            try:
                path = self.path.relative_to(base)
            except ValueError:
                pass
        return {
            "path": path.as_posix(),
            "title": self.title,
            "toc": [{"level": h.level, "text": h.text, "anchor": h.slug} for h in self.toc],
            "code_blocks": len(self.code_blocks),
            "languages": self.languages(),
        }


def build_reference(path: Path, text: str) -> ReferenceDocument:
    doc = parse_markdown(text)
    toc = tuple(h for h in doc.headings if not (h.level == 1 and h.text == doc.title))
    return ReferenceDocument(
        path=Path(path),
        title=doc.title or Path(path).stem,
        toc=toc,
        code_blocks=doc.code_blocks,
        document=doc,
    )


def load_reference(path: Path) -> ReferenceDocument:
    path = Path(path)
    return build_reference(path, path.read_text(encoding="utf-8"))
