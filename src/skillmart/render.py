from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .corpus import Corpus
from .lint import LintReport


def _escape_label_value(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def render_json(report: LintReport) -> str:
    return json.dumps(report.to_dict(), ensure_ascii=True)


def render_text(report: LintReport, console: Console | None = None) -> None:
    console = console or Console()

    summary = Table(title="skillmart lint", show_header=False)
    for key, value in sorted(report.stats.items()):
        summary.add_row(key, str(value))
    summary.add_row("errors", str(len(report.errors)))
    summary.add_row("warnings", str(len(report.warnings)))
    console.print(summary)

    if not report.errors and not report.warnings:
        console.print("[green]ok[/green]")
        return

    table = Table(show_lines=False)
    table.add_column("severity")
    table.add_column("code")
    table.add_column("ref")
    table.add_column("detail", overflow="fold")
    for finding in report.findings():
        style = "red" if finding.is_error else "yellow"
        table.add_row(
            f"[{style}]{finding.severity}[/{style}]",
            escape(finding.code),
            escape(finding.ref),
            escape(finding.detail or ""),
        )
    console.print(table)


@dataclass
class CorpusMetrics:
    plugins_total: int = 0
    skills_total: int = 0
    references_total: int = 0
    code_blocks_total: dict[str, int] = field(default_factory=dict)
    findings_total: dict[str, int] = field(default_factory=dict)

    @staticmethod
    def from_corpus(corpus: Corpus, report: LintReport | None = None) -> "CorpusMetrics":
        records = corpus.list()
        languages: Counter[str] = Counter()
        for rec in records:
            blocks = list(rec.document.code_blocks)
            for doc in rec.references:
                blocks.extend(doc.code_blocks)
            for block in blocks:
                languages[block.language or "none"] += 1
        findings: dict[str, int] = {"error": 0, "warning": 0}
        if report is not None:
            findings["error"] = len(report.errors)
            findings["warning"] = len(report.warnings)
        return CorpusMetrics(
            plugins_total=len(corpus.plugins()),
            skills_total=len(records),
            references_total=sum(len(r.references) for r in records),
            code_blocks_total=dict(languages),
            findings_total=findings,
        )

    def render_prometheus(self) -> str:
        lines: list[str] = [
            "# HELP skillmart_plugins_total Plugins in the corpus.",
            "# TYPE skillmart_plugins_total gauge",
            f"skillmart_plugins_total {int(self.plugins_total)}",
            "# HELP skillmart_skills_total Loadable skills in the corpus.",
            "# TYPE skillmart_skills_total gauge",
            f"skillmart_skills_total {int(self.skills_total)}",
            "# HELP skillmart_references_total Reference documents across all skills.",
            "# TYPE skillmart_references_total gauge",
            f"skillmart_references_total {int(self.references_total)}",
            "# HELP skillmart_code_blocks_total Fenced code blocks by language.",
            "# TYPE skillmart_code_blocks_total gauge",
        ]
        for language, count in sorted(self.code_blocks_total.items(), key=lambda kv: kv[0]):
            lines.append(f'skillmart_code_blocks_total{{language="{_escape_label_value(language)}"}} {int(count)}')
        lines.extend(
            [
                "# HELP skillmart_lint_findings_total Lint findings by severity.",
                "# TYPE skillmart_lint_findings_total gauge",
            ]
        )
        for severity, count in sorted(self.findings_total.items(), key=lambda kv: kv[0]):
            lines.append(f'skillmart_lint_findings_total{{severity="{_escape_label_value(severity)}"}} {int(count)}')
        return "\n".join(lines) + "\n"
