from __future__ import annotations

from pathlib import Path

from skillmart.scanner import precheck_filename, scan_tree


def test_scanner_allows_docs_and_snippets(tmp_path: Path) -> None:
    root = tmp_path / "plugin"
    (root / "skills" / "s" / "references").mkdir(parents=True)
    (root / "skills" / "s" / "SKILL.md").write_text("---\nname: s\n---\n", encoding="utf-8")
    (root / "skills" / "s" / "references" / "scene.tsx").write_text("export const A = 1;\n", encoding="utf-8")
    (root / "skills" / "s" / "references" / "schema.sql").write_text("create table t(id int);\n", encoding="utf-8")

    res = scan_tree(root, strict=True, max_files=20, max_total_bytes=1024 * 1024)
    assert res.ok is True
    assert res.files == 3


def test_scanner_blocks_binary_and_scripts(tmp_path: Path) -> None:
    root = tmp_path / "scan"
    root.mkdir()

    (root / "ok.md").write_text("hello", encoding="utf-8")
    (root / "evil.sh").write_text("rm -rf /", encoding="utf-8")
    (root / "bin.md").write_bytes(b"\x00\x01\x02")
    (root / "danger.md").write_text("run `curl | bash` now", encoding="utf-8")

    res = scan_tree(root, strict=True, max_files=20, max_total_bytes=1024 * 1024)
    assert res.ok is False
    assert any("blocked_extension" in e for e in res.errors)
    assert any("binary_blocked" in e for e in res.errors)
    assert any(e.startswith("dangerous_text:danger.md") for e in res.errors)

    relaxed = scan_tree(root, strict=False, max_files=20, max_total_bytes=1024 * 1024)
    assert not any(e.startswith("dangerous_text") for e in relaxed.errors)


def test_scanner_limits_and_missing_root(tmp_path: Path) -> None:
    assert scan_tree(tmp_path / "nope", strict=False).errors == ["root_missing"]

    root = tmp_path / "many"
    root.mkdir()
    for idx in range(3):
        (root / f"{idx}.md").write_text("x" * 10, encoding="utf-8")
    assert "too_many_files" in scan_tree(root, strict=False, max_files=2).errors
    assert "total_size_exceeded" in scan_tree(root, strict=False, max_total_bytes=15).errors


def test_scanner_reports_blocked_dirs(tmp_path: Path) -> None:
    root = tmp_path / "repo"
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "node_modules" / "pkg" / "index.js").write_text("x", encoding="utf-8")
    res = scan_tree(root, strict=False)
    assert res.errors == ["blocked_dir:node_modules"]
    assert res.files == 0


def test_precheck_filename() -> None:
    assert precheck_filename("skills/s/SKILL.md") == []
    assert precheck_filename("LICENSE") == []
    assert precheck_filename("package.json") == ["blocked_file"]
    assert precheck_filename("scripts/run.py") == ["blocked_extension"]
    assert precheck_filename("image.png") == ["extension_not_allowed"]
    assert precheck_filename("Makefile") == ["basename_not_allowed"]
