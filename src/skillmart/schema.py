from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

_SKILL_NAME_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

_MAX_NAME_LEN = 64
_MAX_DESCRIPTION_LEN = 1024
_MAX_KEYWORDS = 32
_MAX_VERSION_LEN = 32

FRONTMATTER_DELIMITER = "---"

_KNOWN_SKILL_KEYS = {"name", "description", "license", "allowed-tools", "allowed_tools", "version", "metadata"}


def estimate_tokens(text: str) -> int:
    """Cheap token estimate (chars/4 heuristic)."""
    if not text:
        return 0
    return (len(text) + 3) // 4


def build_skill_ref(plugin: str, skill: str) -> str:
    return f"{plugin}/{skill}"


def parse_skill_ref(value: str) -> tuple[str, str] | None:
    raw = str(value or "").strip()
    if not raw or "/" not in raw:
        return None
    plugin, skill = raw.split("/", 1)
    plugin = plugin.strip()
    skill = skill.strip()
    if not plugin or not skill or "/" in skill:
        return None
    return plugin, skill


@dataclass(frozen=True)
class SkillSpec:
    name: str
    description: str
    license: str | None = None
    allowed_tools: tuple[str, ...] = ()
    version: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PluginManifest:
    name: str
    version: str | None = None
    description: str | None = None
    author: str | None = None
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class MarketplaceEntry:
    name: str
    source: str | dict[str, Any]
    description: str | None = None

    @property
    def is_local(self) -> bool:
        if not isinstance(self.source, str):
            return False
        return "://" not in self.source and not self.source.startswith("//")


@dataclass(frozen=True)
class MarketplaceManifest:
    name: str
    owner: str
    plugins: tuple[MarketplaceEntry, ...] = ()
    plugin_root: str | None = None

    def entry(self, name: str) -> MarketplaceEntry | None:
        for item in self.plugins:
            if item.name == name:
                return item
        return None


def _safe_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def validate_name(name: str) -> list[str]:
    raw = str(name or "").strip()
    if not raw:
        return ["name_missing"]
    if len(raw) > _MAX_NAME_LEN:
        return ["name_too_long"]
    if not _SKILL_NAME_RE.match(raw):
        return ["name_invalid"]
    return []


def validate_description(description: str) -> list[str]:
    raw = str(description or "").strip()
    if not raw:
        return ["description_missing"]
    errors: list[str] = []
    if len(raw) > _MAX_DESCRIPTION_LEN:
        errors.append("description_too_long")
    if "<" in raw or ">" in raw:
        errors.append("description_angle_brackets")
    return errors


def split_frontmatter(text: str) -> tuple[dict[str, Any] | None, str, list[str]]:
    """Split a leading ``---`` YAML block from a markdown document.

    Returns ``(meta, body, errors)``. ``meta`` is None whenever the block is
    absent or unusable; ``body`` is then the whole document.
    """
    raw = str(text or "")
    if raw.startswith("\ufeff"):
        raw = raw[1:]
    lines = raw.splitlines(keepends=True)

    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    if start >= len(lines) or lines[start].strip() != FRONTMATTER_DELIMITER:
        return None, raw, ["frontmatter_missing"]

    end = None
    for idx in range(start + 1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_DELIMITER:
            end = idx
            break
    if end is None:
        return None, raw, ["frontmatter_unclosed"]

    block = "".join(lines[start + 1 : end])
    body = "".join(lines[end + 1 :])
    try:
        meta = yaml.safe_load(block)
    except yaml.YAMLError:
        return None, body, ["frontmatter_yaml_invalid"]
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        return None, body, ["frontmatter_not_mapping"]
    return meta, body, []


def _parse_allowed_tools(value: Any) -> tuple[tuple[str, ...], list[str]]:
    if value is None:
        return (), []
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip()), []
    if isinstance(value, list):
        tools: list[str] = []
        for item in value:
            val = _safe_str(item)
            if val is None:
                return (), ["allowed_tools_invalid"]
            tools.append(val)
        return tuple(tools), []
    return (), ["allowed_tools_invalid"]


def parse_skill_frontmatter(data: Any) -> tuple[SkillSpec | None, list[str]]:
    if not isinstance(data, dict):
        return None, ["frontmatter_not_mapping"]

    errors: list[str] = []

    name = _safe_str(data.get("name")) or ""
    errors.extend(validate_name(name))

    description = _safe_str(data.get("description")) or ""
    errors.extend(validate_description(description))

    tools_raw = data.get("allowed-tools", data.get("allowed_tools"))
    allowed_tools, tool_errors = _parse_allowed_tools(tools_raw)
    errors.extend(tool_errors)

    version = _safe_str(data.get("version"))
    if version is not None and len(version) > _MAX_VERSION_LEN:
        errors.append("version_too_long")

    metadata_raw = data.get("metadata")
    metadata: dict[str, Any] = {}
    if metadata_raw is not None:
        if isinstance(metadata_raw, dict):
            metadata.update({str(k): v for k, v in metadata_raw.items()})
        else:
            errors.append("metadata_invalid")
    for key, value in data.items():
        if str(key) not in _KNOWN_SKILL_KEYS:
            metadata.setdefault(str(key), value)

    if errors:
        return None, errors

    spec = SkillSpec(
        name=name,
        description=description,
        license=_safe_str(data.get("license")),
        allowed_tools=allowed_tools,
        version=version,
        metadata=metadata,
    )
    return spec, []


def parse_plugin_manifest(data: Any) -> tuple[PluginManifest | None, list[str]]:
    if not isinstance(data, dict):
        return None, ["manifest_not_mapping"]

    errors: list[str] = []
    name = _safe_str(data.get("name")) or ""
    errors.extend(validate_name(name))

    author_raw = data.get("author")
    author = None
    if isinstance(author_raw, dict):
        author = _safe_str(author_raw.get("name"))
    elif author_raw is not None:
        author = _safe_str(author_raw)

    keywords_raw = data.get("keywords") or []
    keywords: list[str] = []
    if not isinstance(keywords_raw, list):
        errors.append("keywords_invalid")
        keywords_raw = []
    for item in keywords_raw[: _MAX_KEYWORDS + 1]:
        if len(keywords) >= _MAX_KEYWORDS:
            errors.append("keywords_too_many")
            break
        val = _safe_str(item)
        if val:
            keywords.append(val)

    if errors:
        return None, errors

    manifest = PluginManifest(
        name=name,
        version=_safe_str(data.get("version")),
        description=_safe_str(data.get("description")),
        author=author,
        keywords=tuple(keywords),
    )
    return manifest, []


def parse_marketplace_manifest(data: Any) -> tuple[MarketplaceManifest | None, list[str]]:
    if not isinstance(data, dict):
        return None, ["marketplace_not_mapping"]

    errors: list[str] = []
    name = _safe_str(data.get("name")) or ""
    if not name:
        errors.append("marketplace_name_missing")

    owner_raw = data.get("owner")
    owner = ""
    if isinstance(owner_raw, dict):
        owner = _safe_str(owner_raw.get("name")) or ""
        if not owner:
            errors.append("owner_name_missing")
    elif owner_raw is None:
        errors.append("owner_missing")
    else:
        errors.append("owner_invalid")

    plugin_root = None
    meta_raw = data.get("metadata")
    if isinstance(meta_raw, dict):
        plugin_root = _safe_str(meta_raw.get("pluginRoot"))

    plugins_raw = data.get("plugins")
    entries: list[MarketplaceEntry] = []
    if plugins_raw is None:
        plugins_raw = []
    if not isinstance(plugins_raw, list):
        errors.append("plugins_invalid")
        plugins_raw = []
    for idx, item in enumerate(plugins_raw):
        if not isinstance(item, dict):
            errors.append(f"plugins[{idx}]:entry_not_mapping")
            continue
        entry_name = _safe_str(item.get("name")) or ""
        name_errors = validate_name(entry_name)
        if name_errors:
            errors.extend(f"plugins[{idx}]:{err}" for err in name_errors)
            continue
        source = item.get("source")
        if isinstance(source, str) and source.strip():
            source_val: str | dict[str, Any] = source.strip()
        elif isinstance(source, dict) and source:
            source_val = dict(source)
        else:
            errors.append(f"plugins[{idx}]:source_missing")
            continue
        entries.append(
            MarketplaceEntry(name=entry_name, source=source_val, description=_safe_str(item.get("description")))
        )

    if errors:
        return None, errors

    return MarketplaceManifest(name=name, owner=owner, plugins=tuple(entries), plugin_root=plugin_root), []
