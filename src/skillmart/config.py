from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parent / "settings.yaml"
CORPUS_SETTINGS_NAME = ".skillmart.yaml"


def resolve_profile(profile: str | None = None) -> str:
    env_profile = os.getenv("SKILLMART_PROFILE")
    return profile or env_profile or "default"


def resolve_settings_path(root: Path | None = None, settings_path: str | Path | None = None) -> Path:
    if settings_path:
        return Path(settings_path)
    if root is not None:
        local = Path(root) / CORPUS_SETTINGS_NAME
        if local.exists():
            return local
    return DEFAULT_SETTINGS_PATH


def load_settings(
    profile: str | None = None,
    settings_path: str | Path | None = None,
    *,
    root: Path | None = None,
) -> dict[str, Any]:
    path = resolve_settings_path(root, settings_path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    profiles = data.get("profiles", {}) or {}
    resolved = resolve_profile(profile)
    if resolved not in profiles:
        raise KeyError(f"Profile '{resolved}' not found in {path}")
    settings = dict(profiles[resolved] or {})
    settings["_profile"] = resolved
    settings["_path"] = str(path)
    return settings


def _read_env_bool(*keys: str, default: bool) -> bool:
    for key in keys:
        raw = os.getenv(key)
        if raw is None:
            continue
        val = str(raw).strip().lower()
        if val in {"1", "true", "yes", "y", "on"}:
            return True
        if val in {"0", "false", "no", "n", "off"}:
            return False
    return bool(default)


def _read_env_int(*keys: str, default: int, min_value: int, max_value: int) -> int:
    for key in keys:
        raw = os.getenv(key)
        if raw is None:
            continue
        try:
            val = int(str(raw).strip())
        except ValueError:
            continue
        val = max(int(min_value), min(int(max_value), int(val)))
        return int(val)
    return int(default)


@dataclass(frozen=True)
class LintConfig:
    strict: bool = False
    scan: bool = False
    references_only: bool = True
    require_code_language: bool = False
    body_token_budget: int = 5000
    ignore: tuple[str, ...] = ()
    scan_max_files: int = 500
    scan_max_total_bytes: int = 20 * 1024 * 1024

    @staticmethod
    def from_settings(settings: dict[str, Any] | None) -> "LintConfig":
        lint_cfg = dict((settings or {}).get("lint", {}) or {})
        scan_cfg = dict((settings or {}).get("scan", {}) or {})
        strict = _read_env_bool("SKILLMART_STRICT", default=bool(lint_cfg.get("strict", False)))
        budget = _read_env_int(
            "SKILLMART_BODY_TOKEN_BUDGET",
            default=int(lint_cfg.get("body_token_budget", 5000) or 5000),
            min_value=64,
            max_value=200_000,
        )
        ignore_raw = lint_cfg.get("ignore") or []
        if isinstance(ignore_raw, str):
            ignore_raw = [item for item in ignore_raw.split(",")]
        ignore = tuple(str(item).strip() for item in ignore_raw if str(item).strip())
        return LintConfig(
            strict=bool(strict),
            scan=bool(lint_cfg.get("scan", False)),
            references_only=bool(lint_cfg.get("references_only", True)),
            require_code_language=bool(lint_cfg.get("require_code_language", False)),
            body_token_budget=int(budget),
            ignore=ignore,
            scan_max_files=int(scan_cfg.get("max_files", 500) or 500),
            scan_max_total_bytes=int(scan_cfg.get("max_total_bytes", 20 * 1024 * 1024) or 20 * 1024 * 1024),
        )
