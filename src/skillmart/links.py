from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote

from .documents import MarkdownDocument, parse_markdown
from .findings import Finding, error, warning

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")

MARKDOWN_SUFFIXES = {".md", ".markdown"}
REFERENCES_DIRNAME = "references"


def classify_target(target: str) -> str:
    raw = str(target or "").strip()
    if not raw:
        return "empty"
    if raw.startswith("#"):
        return "anchor"
    if raw.startswith("//") or _SCHEME_RE.match(raw):
        return "external"
    return "relative"


def _split_target(target: str) -> tuple[str, str | None]:
    raw = str(target or "").strip()
    fragment = None
    if "#" in raw:
        raw, fragment = raw.split("#", 1)
        fragment = unquote(fragment)
    if "?" in raw:
        raw = raw.split("?", 1)[0]
    return unquote(raw), fragment


def resolve_link(source_file: Path, target: str) -> tuple[Path, str | None]:
    path_part, fragment = _split_target(target)
    source_file = Path(source_file)
    if not path_part:
        return source_file, fragment
    joined = os.path.normpath(os.path.join(str(source_file.parent), path_part))
    return Path(joined), fragment


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


@dataclass
class LinkCheck:
    findings: list[Finding] = field(default_factory=list)
    targets: set[Path] = field(default_factory=set)


def _anchors_for(path: Path, cache: dict[Path, set[str]]) -> set[str] | None:
    key = path.resolve()
    if key in cache:
        return cache[key]
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    anchors = parse_markdown(text).anchors()
    cache[key] = anchors
    return anchors


def check_links(
    skill_dir: Path,
    source_file: Path,
    document: MarkdownDocument,
    *,
    ref: str,
    references_only: bool = True,
    anchor_cache: dict[Path, set[str]] | None = None,
) -> LinkCheck:
    """Check every link in ``document`` (the parsed content of ``source_file``).

    Links from the skill's ``SKILL.md`` must land under ``references/``;
    links from other markdown only need to stay inside the skill directory.
    With ``references_only=False`` a SKILL.md link elsewhere in the skill is
    only a warning.
    """
    skill_dir = Path(skill_dir)
    source_file = Path(source_file)
    cache = anchor_cache if anchor_cache is not None else {}
    result = LinkCheck()
    references_root = skill_dir / REFERENCES_DIRNAME
    from_skill_md = source_file.name == "SKILL.md" and source_file.parent == skill_dir

    try:
        rel_source = source_file.relative_to(skill_dir).as_posix()
    except ValueError:
        rel_source = source_file.as_posix()

    for link in document.links:
        detail = f"{rel_source}:{link.line}:{link.target}"
        kind = classify_target(link.target)
        if kind == "external":
            continue
        if kind == "empty":
            result.findings.append(warning("link_empty", ref, detail))
            continue
        if kind == "anchor":
            fragment = unquote(link.target[1:]).lower()
            if fragment and fragment not in document.anchors():
                result.findings.append(warning("anchor_missing", ref, detail))
            continue

        if link.target.startswith("/"):
            result.findings.append(error("link_absolute", ref, detail))
            continue

        path, fragment = resolve_link(source_file, link.target)
        if not _is_within(path, skill_dir):
            result.findings.append(error("link_outside_skill", ref, detail))
            continue
        if not path.exists():
            result.findings.append(error("link_broken", ref, detail))
            continue
        if path.is_dir():
            result.findings.append(error("link_not_file", ref, detail))
            continue

        result.targets.add(path.resolve())

        if from_skill_md and path.resolve() != source_file.resolve() and not _is_within(path, references_root):
            if references_only:
                result.findings.append(error("link_outside_references", ref, detail))
            else:
                result.findings.append(warning("link_outside_references", ref, detail))

        if fragment and path.suffix.lower() in MARKDOWN_SUFFIXES:
            anchors = _anchors_for(path, cache)
            if anchors is not None and fragment.lower() not in anchors:
                result.findings.append(warning("anchor_missing", ref, detail))

    return result
