"""Integrity checks for a skills marketplace corpus.

The load step (``Corpus.refresh``) already rejects unusable front-matter; this
module adds cross-file checks: relative links, duplicate names, orphaned
references, marketplace registration and the optional content scan.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import LintConfig
from .corpus import Corpus, SkillRecord
from .documents import MarkdownDocument
from .findings import Finding, error, warning
from .links import check_links
from .scanner import scan_tree

logger = logging.getLogger(__name__)


@dataclass
class LintReport:
    ok: bool
    errors: list[Finding] = field(default_factory=list)
    warnings: list[Finding] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)
    strict: bool = False

    def findings(self) -> list[Finding]:
        return list(self.errors) + list(self.warnings)

    def codes(self) -> set[str]:
        return {f.code for f in self.findings()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": bool(self.ok),
            "strict": bool(self.strict),
            "errors": [str(f) for f in self.errors] or None,
            "warnings": [str(f) for f in self.warnings] or None,
            "stats": dict(self.stats),
        }


def _unlabeled_blocks(document: MarkdownDocument, ref: str, rel: str) -> list[Finding]:
    return [
        warning("code_block_unlabeled", ref, f"{rel}:{b.line}")
        for b in document.code_blocks
        if b.fenced and not b.language
    ]


def lint_skill(
    record: SkillRecord,
    config: LintConfig,
    *,
    anchor_cache: dict[Path, set[str]] | None = None,
) -> list[Finding]:
    ref = record.ref
    findings: list[Finding] = []
    cache = anchor_cache if anchor_cache is not None else {}

    if not record.body.strip():
        findings.append(error("body_empty", ref))
    elif record.body_tokens_est > int(config.body_token_budget):
        findings.append(
            warning("body_over_budget", ref, f"{record.body_tokens_est}>{int(config.body_token_budget)}")
        )

    if record.spec.name != record.path.name:
        findings.append(warning("name_dir_mismatch", ref, f"{record.spec.name}!={record.path.name}"))

    body_check = check_links(
        record.path,
        record.skill_md_path,
        record.document,
        ref=ref,
        references_only=bool(config.references_only),
        anchor_cache=cache,
    )
    findings.extend(body_check.findings)
    linked = set(body_check.targets)

    if config.require_code_language:
        findings.extend(_unlabeled_blocks(record.document, ref, record.skill_md_path.name))

    for doc in record.references:
        rel = doc.path.relative_to(record.path).as_posix()
        ref_check = check_links(record.path, doc.path, doc.document, ref=ref, anchor_cache=cache)
        findings.extend(ref_check.findings)
        linked.update(p for p in ref_check.targets if p != doc.path.resolve())
        if not doc.has_title:
            findings.append(warning("reference_untitled", ref, rel))
        if config.require_code_language:
            findings.extend(_unlabeled_blocks(doc.document, ref, rel))

    for doc in record.references:
        if doc.path.resolve() not in linked:
            findings.append(warning("reference_orphan", ref, doc.path.relative_to(record.path).as_posix()))

    return findings


def _duplicate_findings(records: list[SkillRecord]) -> list[Finding]:
    findings: list[Finding] = []
    by_plugin: dict[str, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
    by_name: dict[str, set[str]] = defaultdict(set)
    for rec in records:
        by_plugin[rec.plugin][rec.spec.name].append(rec.ref)
        by_name[rec.spec.name].add(rec.plugin)

    for plugin in sorted(by_plugin):
        for name, refs in sorted(by_plugin[plugin].items()):
            if len(refs) > 1:
                findings.append(error("duplicate_skill_name", plugin, f"{name}:{','.join(sorted(refs))}"))
    for name, plugins in sorted(by_name.items()):
        if len(plugins) > 1:
            findings.append(warning("duplicate_skill_name_cross_plugin", name, ",".join(sorted(plugins))))
    return findings


def _entry_path(corpus: Corpus, source: str, plugin_root: str | None) -> Path:
    if plugin_root and not (source.startswith("./") or source.startswith("../")):
        return corpus.root / plugin_root / source
    return corpus.root / source


def _marketplace_findings(corpus: Corpus, load_findings: list[Finding]) -> list[Finding]:
    findings: list[Finding] = []
    manifest = corpus.marketplace
    if manifest is None:
        if not any(f.code == "marketplace_invalid" for f in load_findings):
            findings.append(warning("marketplace_missing", ".claude-plugin/marketplace.json"))
        return findings

    root = corpus.root.resolve()
    seen: set[str] = set()
    registered_dirs: set[Path] = set()
    for entry in manifest.plugins:
        if entry.name in seen:
            findings.append(error("marketplace_duplicate_plugin", manifest.name, entry.name))
            continue
        seen.add(entry.name)
        if not entry.is_local or not isinstance(entry.source, str):
            continue
        path = _entry_path(corpus, entry.source, manifest.plugin_root).resolve()
        try:
            path.relative_to(root)
        except ValueError:
            findings.append(error("marketplace_plugin_outside", entry.name, entry.source))
            continue
        if not path.is_dir():
            findings.append(error("marketplace_plugin_missing", entry.name, entry.source))
            continue
        registered_dirs.add(path)

    for plugin in corpus.plugins():
        if plugin.path.resolve() not in registered_dirs and plugin.name not in seen:
            findings.append(warning("plugin_not_in_marketplace", plugin.name))
    return findings


def _plugin_findings(corpus: Corpus, config: LintConfig) -> list[Finding]:
    findings: list[Finding] = []
    for plugin in corpus.plugins():
        if not plugin.skills:
            findings.append(warning("plugin_empty", plugin.name))
        if plugin.manifest is not None and plugin.manifest.name != plugin.name:
            findings.append(
                warning("plugin_manifest_name_mismatch", plugin.name, f"{plugin.manifest.name}!={plugin.name}")
            )
        if config.scan:
            scan = scan_tree(
                plugin.path,
                strict=bool(config.strict),
                max_files=int(config.scan_max_files),
                max_total_bytes=int(config.scan_max_total_bytes),
            )
            if not scan.ok:
                findings.append(error("scan_failed", plugin.name, ",".join(scan.errors[:5])))
    return findings


def _finalize(findings: list[Finding], config: LintConfig, stats: dict[str, int]) -> LintReport:
    ignored = set(config.ignore)
    kept = [f for f in findings if f.code not in ignored]
    if config.strict:
        kept = [f.promoted() for f in kept]
    errors = [f for f in kept if f.is_error]
    warnings = [f for f in kept if not f.is_error]
    return LintReport(ok=not errors, errors=errors, warnings=warnings, stats=stats, strict=bool(config.strict))


def lint_corpus(corpus: Corpus, config: LintConfig | None = None, *, refresh: bool = True) -> LintReport:
    config = config or LintConfig()
    if refresh:
        records, findings = corpus.refresh()
    else:
        records, findings = corpus.list(), []
    findings = list(findings)

    anchor_cache: dict[Path, set[str]] = {}
    for rec in records:
        findings.extend(lint_skill(rec, config, anchor_cache=anchor_cache))

    findings.extend(_duplicate_findings(records))
    findings.extend(_marketplace_findings(corpus, findings))
    findings.extend(_plugin_findings(corpus, config))

    stats = {
        "plugins": len(corpus.plugins()),
        "skills": len(records),
        "references": sum(len(r.references) for r in records),
        "code_blocks": sum(len(r.document.code_blocks) + sum(len(d.code_blocks) for d in r.references) for r in records),
        "links": sum(len(r.document.links) + sum(len(d.document.links) for d in r.references) for r in records),
    }
    report = _finalize(findings, config, stats)
    logger.info("Lint finished: %d errors, %d warnings", len(report.errors), len(report.warnings))
    return report
