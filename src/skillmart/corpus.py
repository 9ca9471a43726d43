from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .documents import MarkdownDocument, ReferenceDocument, build_reference, parse_markdown
from .findings import Finding, error, warning
from .schema import (
    MarketplaceManifest,
    PluginManifest,
    SkillSpec,
    build_skill_ref,
    estimate_tokens,
    parse_marketplace_manifest,
    parse_plugin_manifest,
    parse_skill_frontmatter,
    split_frontmatter,
)

logger = logging.getLogger(__name__)

PLUGINS_DIRNAME = "plugins"
SKILLS_DIRNAME = "skills"
SKILL_FILENAME = "SKILL.md"
REFERENCES_DIRNAME = "references"
MANIFEST_DIRNAME = ".claude-plugin"
PLUGIN_MANIFEST_NAME = "plugin.json"
MARKETPLACE_MANIFEST_NAME = "marketplace.json"


def _skip_dir(path: Path) -> bool:
    return path.name.startswith("_") or path.name.startswith(".")


@dataclass(frozen=True)
class SkillRecord:
    plugin: str
    spec: SkillSpec
    path: Path
    skill_md_path: Path
    body: str
    body_tokens_est: int
    references: tuple[ReferenceDocument, ...]
    document: MarkdownDocument

    @property
    def ref(self) -> str:
        return build_skill_ref(self.plugin, self.path.name)

    @property
    def references_dir(self) -> Path:
        return self.path / REFERENCES_DIRNAME

    def to_public_dict(self, *, include_body: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.ref,
            "object": "skill",
            "plugin": self.plugin,
            "name": self.spec.name,
            "description": self.spec.description,
            "body_tokens_est": int(self.body_tokens_est),
            "references": [r.path.relative_to(self.path).as_posix() for r in self.references],
        }
        if self.spec.license:
            data["license"] = self.spec.license
        if self.spec.allowed_tools:
            data["allowed_tools"] = list(self.spec.allowed_tools)
        if self.spec.version:
            data["version"] = self.spec.version
        if include_body:
            data["body"] = self.body
        return data


@dataclass(frozen=True)
class PluginRecord:
    name: str
    path: Path
    manifest: PluginManifest | None
    skills: tuple[str, ...]

    def to_public_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.name, "object": "plugin", "skills": list(self.skills)}
        if self.manifest is not None:
            data["version"] = self.manifest.version
            data["description"] = self.manifest.description
        return data


def _read_json(path: Path) -> tuple[Any, str | None]:
    try:
        return json.loads(path.read_text(encoding="utf-8")), None
    except (OSError, UnicodeDecodeError) as exc:
        return None, f"read_failed:{exc}"
    except json.JSONDecodeError as exc:
        return None, f"json_invalid:{exc.msg}@{exc.lineno}"


def _load_references(skill_dir: Path, ref: str) -> tuple[list[ReferenceDocument], list[Finding]]:
    refs_dir = skill_dir / REFERENCES_DIRNAME
    docs: list[ReferenceDocument] = []
    findings: list[Finding] = []
    if not refs_dir.is_dir():
        return docs, findings
    for path in sorted(refs_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in {".md", ".markdown"}:
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            findings.append(error("reference_read_failed", ref, f"{path.relative_to(skill_dir).as_posix()}:{exc}"))
            continue
        docs.append(build_reference(path, text))
    return docs, findings


class Corpus:
    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()
        self._skills: dict[str, SkillRecord] = {}
        self._plugins: dict[str, PluginRecord] = {}
        self._marketplace: MarketplaceManifest | None = None
        self._last_refresh_ts: float = 0.0

    @property
    def plugins_root(self) -> Path:
        return self.root / PLUGINS_DIRNAME

    @property
    def marketplace_path(self) -> Path:
        return self.root / MANIFEST_DIRNAME / MARKETPLACE_MANIFEST_NAME

    @property
    def marketplace(self) -> MarketplaceManifest | None:
        with self._lock:
            return self._marketplace

    def _load_marketplace(self, findings: list[Finding]) -> MarketplaceManifest | None:
        path = self.marketplace_path
        if not path.exists():
            return None
        data, read_err = _read_json(path)
        if read_err:
            findings.append(error("marketplace_invalid", MARKETPLACE_MANIFEST_NAME, read_err))
            return None
        manifest, errors = parse_marketplace_manifest(data)
        if errors:
            findings.append(error("marketplace_invalid", MARKETPLACE_MANIFEST_NAME, ",".join(errors)))
            return None
        return manifest

    def _load_plugin_manifest(self, plugin_dir: Path, findings: list[Finding]) -> PluginManifest | None:
        path = plugin_dir / MANIFEST_DIRNAME / PLUGIN_MANIFEST_NAME
        if not path.exists():
            return None
        data, read_err = _read_json(path)
        if read_err:
            findings.append(error("plugin_manifest_invalid", plugin_dir.name, read_err))
            return None
        manifest, errors = parse_plugin_manifest(data)
        if errors:
            findings.append(error("plugin_manifest_invalid", plugin_dir.name, ",".join(errors)))
            return None
        return manifest

    def _load_skill(self, plugin: str, skill_dir: Path, findings: list[Finding]) -> SkillRecord | None:
        ref = build_skill_ref(plugin, skill_dir.name)
        skill_md = skill_dir / SKILL_FILENAME
        if not skill_md.exists():
            findings.append(warning("skill_md_missing", ref))
            return None
        try:
            text = skill_md.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            findings.append(error("skill_md_read_failed", ref, str(exc)))
            return None

        meta, body, fm_errors = split_frontmatter(text)
        if fm_errors:
            findings.extend(error(code, ref) for code in fm_errors)
            return None
        spec, spec_errors = parse_skill_frontmatter(meta)
        if spec_errors or spec is None:
            findings.extend(error(code, ref) for code in (spec_errors or ["frontmatter_invalid"]))
            return None

        references, ref_findings = _load_references(skill_dir, ref)
        findings.extend(ref_findings)
        body_first_line = text.count("\n") - body.count("\n") + 1
        return SkillRecord(
            plugin=plugin,
            spec=spec,
            path=skill_dir,
            skill_md_path=skill_md,
            body=body,
            body_tokens_est=int(estimate_tokens(body.strip())),
            references=tuple(references),
            document=parse_markdown(body, first_line=body_first_line),
        )

    def refresh(self) -> tuple[list[SkillRecord], list[Finding]]:
        findings: list[Finding] = []
        skills: dict[str, SkillRecord] = {}
        plugins: dict[str, PluginRecord] = {}

        marketplace = self._load_marketplace(findings)

        if not self.plugins_root.is_dir():
            logger.warning("No plugins directory under %s", self.root)
        else:
            for plugin_dir in sorted(self.plugins_root.iterdir(), key=lambda p: p.name):
                if not plugin_dir.is_dir() or _skip_dir(plugin_dir):
                    continue
                plugin = plugin_dir.name
                manifest = self._load_plugin_manifest(plugin_dir, findings)
                skill_refs: list[str] = []
                skills_dir = plugin_dir / SKILLS_DIRNAME
                if skills_dir.is_dir():
                    for skill_dir in sorted(skills_dir.iterdir(), key=lambda p: p.name):
                        if not skill_dir.is_dir() or _skip_dir(skill_dir):
                            continue
                        record = self._load_skill(plugin, skill_dir, findings)
                        if record is None:
                            continue
                        skills[record.ref] = record
                        skill_refs.append(record.ref)
                plugins[plugin] = PluginRecord(name=plugin, path=plugin_dir, manifest=manifest, skills=tuple(skill_refs))

        with self._lock:
            self._skills = skills
            self._plugins = plugins
            self._marketplace = marketplace
            self._last_refresh_ts = time.time()

        logger.info("Loaded %d skills from %d plugins under %s", len(skills), len(plugins), self.root)
        return list(skills.values()), findings

    def list(self) -> list[SkillRecord]:
        with self._lock:
            return list(self._skills.values())

    def plugins(self) -> list[PluginRecord]:
        with self._lock:
            return list(self._plugins.values())

    def get(self, ref: str) -> SkillRecord | None:
        with self._lock:
            return self._skills.get(str(ref))

    def get_plugin(self, name: str) -> PluginRecord | None:
        with self._lock:
            return self._plugins.get(str(name))

    def write_index(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "ts": time.time(),
            "marketplace": self.marketplace.name if self.marketplace else None,
            "plugins": [p.to_public_dict() for p in self.plugins()],
            "skills": [rec.to_public_dict(include_body=False) for rec in self.list()],
        }
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=True, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
        return path
