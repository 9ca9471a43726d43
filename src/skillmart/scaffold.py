from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .corpus import (
    MANIFEST_DIRNAME,
    MARKETPLACE_MANIFEST_NAME,
    PLUGIN_MANIFEST_NAME,
    PLUGINS_DIRNAME,
    REFERENCES_DIRNAME,
    SKILL_FILENAME,
    SKILLS_DIRNAME,
)
from .schema import validate_description, validate_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScaffoldResult:
    ok: bool
    path: Path | None
    error: str | None


def _title_for(name: str) -> str:
    return " ".join(part.capitalize() for part in name.split("-"))


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def render_skill_md(name: str, description: str, *, with_references: bool = True) -> str:
    front = yaml.safe_dump({"name": name, "description": description}, sort_keys=False, allow_unicode=True, width=1000)
    lines = ["---", front.rstrip("\n"), "---", "", f"# {_title_for(name)}", "", "## When to use", "", description, ""]
    if with_references:
        lines.extend(["## References", "", "- [Overview](references/overview.md)", ""])
    return "\n".join(lines)


def create_skill(
    root: Path,
    plugin: str,
    name: str,
    description: str,
    *,
    with_references: bool = True,
) -> ScaffoldResult:
    root = Path(root)
    plugin = str(plugin or "").strip()
    name = str(name or "").strip()
    description = " ".join(str(description or "").split())

    if validate_name(plugin):
        return ScaffoldResult(ok=False, path=None, error="plugin_invalid")
    name_errors = validate_name(name)
    if name_errors:
        return ScaffoldResult(ok=False, path=None, error=name_errors[0])
    desc_errors = validate_description(description)
    if desc_errors:
        return ScaffoldResult(ok=False, path=None, error=desc_errors[0])

    skill_dir = root / PLUGINS_DIRNAME / plugin / SKILLS_DIRNAME / name
    if skill_dir.exists():
        return ScaffoldResult(ok=False, path=skill_dir, error="skill_exists")

    skill_dir.mkdir(parents=True)
    (skill_dir / SKILL_FILENAME).write_text(
        render_skill_md(name, description, with_references=with_references), encoding="utf-8"
    )
    if with_references:
        refs_dir = skill_dir / REFERENCES_DIRNAME
        refs_dir.mkdir()
        (refs_dir / "overview.md").write_text(
            f"# {_title_for(name)} Overview\n\n## Contents\n\n- [Patterns](#patterns)\n\n## Patterns\n",
            encoding="utf-8",
        )
    logger.info("Created skill %s/%s at %s", plugin, name, skill_dir)
    return ScaffoldResult(ok=True, path=skill_dir, error=None)


def create_plugin(
    root: Path,
    plugin: str,
    description: str | None = None,
    *,
    version: str = "0.1.0",
    owner: str | None = None,
) -> ScaffoldResult:
    root = Path(root)
    plugin = str(plugin or "").strip()
    if validate_name(plugin):
        return ScaffoldResult(ok=False, path=None, error="plugin_invalid")

    plugin_dir = root / PLUGINS_DIRNAME / plugin
    manifest_path = plugin_dir / MANIFEST_DIRNAME / PLUGIN_MANIFEST_NAME
    if manifest_path.exists():
        return ScaffoldResult(ok=False, path=plugin_dir, error="plugin_exists")

    marketplace_path = root / MANIFEST_DIRNAME / MARKETPLACE_MANIFEST_NAME
    if marketplace_path.exists():
        try:
            marketplace = json.loads(marketplace_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return ScaffoldResult(ok=False, path=marketplace_path, error="marketplace_invalid")
        if not isinstance(marketplace, dict) or not isinstance(marketplace.get("plugins", []), list):
            return ScaffoldResult(ok=False, path=marketplace_path, error="marketplace_invalid")
    else:
        marketplace = {"name": root.resolve().name, "owner": {"name": owner or "maintainers"}, "plugins": []}

    manifest: dict[str, Any] = {"name": plugin, "version": version}
    if description:
        manifest["description"] = description
    manifest_path.parent.mkdir(parents=True, exist_ok=True)
    (plugin_dir / SKILLS_DIRNAME).mkdir(parents=True, exist_ok=True)
    _write_json(manifest_path, manifest)

    entries = marketplace.setdefault("plugins", [])
    if not any(isinstance(e, dict) and e.get("name") == plugin for e in entries):
        entry: dict[str, Any] = {"name": plugin, "source": f"./{PLUGINS_DIRNAME}/{plugin}"}
        if description:
            entry["description"] = description
        entries.append(entry)
        marketplace_path.parent.mkdir(parents=True, exist_ok=True)
        _write_json(marketplace_path, marketplace)

    logger.info("Created plugin %s at %s", plugin, plugin_dir)
    return ScaffoldResult(ok=True, path=plugin_dir, error=None)
