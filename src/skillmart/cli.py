from __future__ import annotations

import argparse
import json
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

from rich.console import Console

from .config import LintConfig, load_settings
from .corpus import Corpus
from .fetch import discard as discard_stage
from .fetch import stage as stage_source
from .lint import lint_corpus
from .logging import get_logger, setup_logging
from .render import CorpusMetrics, render_json, render_text
from .scaffold import create_plugin, create_skill

logger = get_logger(__name__)


def _root_from_args(args: argparse.Namespace) -> Path:
    raw = getattr(args, "root", None) or "."
    return Path(str(raw))


def _settings_from_args(args: argparse.Namespace, root: Path) -> dict:
    return load_settings(getattr(args, "profile", None), getattr(args, "settings", None), root=root)


def _lint_config_from_args(args: argparse.Namespace, root: Path) -> LintConfig:
    cfg = LintConfig.from_settings(_settings_from_args(args, root))
    overrides: dict = {}
    strict = getattr(args, "strict", None)
    if strict is not None:
        overrides["strict"] = bool(strict)
    if getattr(args, "scan", False):
        overrides["scan"] = True
    ignore = getattr(args, "ignore", None) or []
    if ignore:
        overrides["ignore"] = tuple(cfg.ignore) + tuple(str(code).strip() for code in ignore if str(code).strip())
    if not overrides:
        return cfg
    return replace(cfg, **overrides)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=True))


def _text_output(args: argparse.Namespace) -> bool:
    return str(getattr(args, "format", "json") or "json") == "text"


def _load_corpus(args: argparse.Namespace) -> tuple[Corpus, list]:
    corpus = Corpus(_root_from_args(args))
    _records, findings = corpus.refresh()
    return corpus, findings


def cmd_list(args: argparse.Namespace) -> None:
    corpus, findings = _load_corpus(args)
    errors = [str(f) for f in findings if f.is_error]
    payload = {
        "ok": not bool(errors),
        "errors": errors or None,
        "object": "list",
        "data": [r.to_public_dict(include_body=False) for r in corpus.list()],
    }
    _print_json(payload)


def cmd_show(args: argparse.Namespace) -> None:
    corpus, _findings = _load_corpus(args)
    ref = str(getattr(args, "skill_ref") or "").strip()
    rec = corpus.get(ref)
    if rec is None:
        _print_json({"ok": False, "error": "skill_not_found"})
        sys.exit(1)
    _print_json({"ok": True, "skill": rec.to_public_dict(include_body=True)})


def cmd_refs(args: argparse.Namespace) -> None:
    corpus, _findings = _load_corpus(args)
    ref = str(getattr(args, "skill_ref") or "").strip()
    rec = corpus.get(ref)
    if rec is None:
        _print_json({"ok": False, "error": "skill_not_found"})
        sys.exit(1)
    payload = {
        "ok": True,
        "skill": rec.ref,
        "object": "list",
        "data": [doc.to_public_dict(base=rec.path) for doc in rec.references],
    }
    _print_json(payload)


def _run_lint(
    args: argparse.Namespace,
    root: Path,
    config: LintConfig | None = None,
    extra: dict | None = None,
) -> bool:
    config = config or _lint_config_from_args(args, root)
    report = lint_corpus(Corpus(root), config)
    if _text_output(args):
        render_text(report, Console())
    elif extra:
        _print_json({**report.to_dict(), **extra})
    else:
        print(render_json(report))
    return bool(report.ok)


def cmd_lint(args: argparse.Namespace) -> None:
    if not _run_lint(args, _root_from_args(args)):
        sys.exit(1)


def cmd_index(args: argparse.Namespace) -> None:
    corpus, findings = _load_corpus(args)
    out = Path(str(getattr(args, "out") or "skills-index.json"))
    path = corpus.write_index(out)
    errors = [str(f) for f in findings if f.is_error]
    _print_json({"ok": True, "path": str(path), "skills": len(corpus.list()), "errors": errors or None})


def cmd_stats(args: argparse.Namespace) -> None:
    root = _root_from_args(args)
    corpus = Corpus(root)
    report = lint_corpus(corpus, _lint_config_from_args(args, root))
    sys.stdout.write(CorpusMetrics.from_corpus(corpus, report).render_prometheus())


def cmd_new_plugin(args: argparse.Namespace) -> None:
    root = _root_from_args(args)
    res = create_plugin(
        root,
        str(getattr(args, "plugin") or ""),
        getattr(args, "description", None),
        owner=getattr(args, "owner", None),
    )
    _print_json({"ok": bool(res.ok), "path": str(res.path) if res.path else None, "error": res.error})
    if not res.ok:
        sys.exit(1)


def cmd_new_skill(args: argparse.Namespace) -> None:
    root = _root_from_args(args)
    res = create_skill(
        root,
        str(getattr(args, "plugin") or ""),
        str(getattr(args, "name") or ""),
        str(getattr(args, "description") or ""),
        with_references=not bool(getattr(args, "no_references", False)),
    )
    _print_json({"ok": bool(res.ok), "path": str(res.path) if res.path else None, "error": res.error})
    if not res.ok:
        sys.exit(1)


def cmd_audit(args: argparse.Namespace) -> None:
    # Lint settings come from the local side; a staged tree's own .skillmart.yaml is untrusted.
    config = _lint_config_from_args(args, _root_from_args(args))
    staging_root = Path(str(getattr(args, "staging_dir", None) or tempfile.gettempdir())) / "skillmart-staging"
    source = str(getattr(args, "source") or "").strip()
    ref = getattr(args, "ref", None)
    subdir = getattr(args, "subdir", None)
    strict = getattr(args, "strict", None)
    result = stage_source(
        staging_root,
        source,
        ref=str(ref).strip() if ref else None,
        subdir=str(subdir).strip() if subdir else None,
        strict=True if strict is None else bool(strict),
    )
    if not result.ok or result.root is None or not result.staged_id:
        _print_json({"ok": False, "error": "stage_failed", "details": result.errors})
        sys.exit(1)
    try:
        ok = _run_lint(
            args,
            result.root,
            config,
            {"source": source, "skipped": list(result.skipped) or None},
        )
    finally:
        if not bool(getattr(args, "keep", False)):
            discard_stage(staging_root, result.staged_id)
        else:
            logger.warning("Staged tree kept at %s", result.root)
    if not ok:
        sys.exit(1)


def _add_lint_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--strict", dest="strict", action="store_true", default=None)
    parser.add_argument("--no-strict", dest="strict", action="store_false")
    parser.add_argument("--scan", action="store_true")
    parser.add_argument("--ignore", action="append", default=[], metavar="CODE")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="skillmart")
    parser.add_argument("--root", default=".")
    parser.add_argument("--profile", default=None)
    parser.add_argument("--settings", default=None)
    parser.add_argument("--log-level", dest="log_level", default=None)
    parser.add_argument("--format", choices=["json", "text"], default="json")

    sub = parser.add_subparsers(dest="command")

    ls = sub.add_parser("list")
    ls.set_defaults(func=cmd_list)

    show = sub.add_parser("show")
    show.add_argument("skill_ref")
    show.set_defaults(func=cmd_show)

    refs = sub.add_parser("refs")
    refs.add_argument("skill_ref")
    refs.set_defaults(func=cmd_refs)

    lint = sub.add_parser("lint")
    _add_lint_options(lint)
    lint.set_defaults(func=cmd_lint)

    index = sub.add_parser("index")
    index.add_argument("--out", default="skills-index.json")
    index.set_defaults(func=cmd_index)

    stats = sub.add_parser("stats")
    stats.set_defaults(func=cmd_stats)

    new_plugin = sub.add_parser("new-plugin")
    new_plugin.add_argument("plugin")
    new_plugin.add_argument("--description", default=None)
    new_plugin.add_argument("--owner", default=None)
    new_plugin.set_defaults(func=cmd_new_plugin)

    new_skill = sub.add_parser("new-skill")
    new_skill.add_argument("plugin")
    new_skill.add_argument("name")
    new_skill.add_argument("--description", required=True)
    new_skill.add_argument("--no-references", dest="no_references", action="store_true")
    new_skill.set_defaults(func=cmd_new_skill)

    audit = sub.add_parser("audit")
    audit.add_argument("source")
    audit.add_argument("--ref", default=None)
    audit.add_argument("--subdir", default=None)
    audit.add_argument("--staging-dir", dest="staging_dir", default=None)
    audit.add_argument("--keep", action="store_true")
    _add_lint_options(audit)
    audit.set_defaults(func=cmd_audit)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(getattr(args, "log_level", None))
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        sys.exit(2)
    func(args)
