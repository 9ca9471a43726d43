from __future__ import annotations

from pathlib import Path

from skillmart.documents import parse_markdown
from skillmart.links import check_links, classify_target, resolve_link


def _skill(tmp_path: Path) -> Path:
    skill_dir = tmp_path / "plugins" / "p" / "skills" / "s"
    (skill_dir / "references").mkdir(parents=True)
    (skill_dir / "assets").mkdir()
    (skill_dir / "references" / "patterns.md").write_text("# Patterns\n\n## Blur\n", encoding="utf-8")
    (skill_dir / "references" / "with space.md").write_text("# Spaced\n", encoding="utf-8")
    (skill_dir / "assets" / "logo.svg").write_text("<svg/>", encoding="utf-8")
    (tmp_path / "plugins" / "p" / "README.md").write_text("outside", encoding="utf-8")
    return skill_dir


def _check(skill_dir: Path, body: str, *, references_only: bool = True):
    source = skill_dir / "SKILL.md"
    source.write_text(body, encoding="utf-8")
    return check_links(skill_dir, source, parse_markdown(body), ref="p/s", references_only=references_only)


def test_classify_target() -> None:
    assert classify_target("https://threejs.org/docs") == "external"
    assert classify_target("mailto:a@b.c") == "external"
    assert classify_target("//cdn.example.com/x.js") == "external"
    assert classify_target("#setup") == "anchor"
    assert classify_target("references/a.md") == "relative"
    assert classify_target("  ") == "empty"


def test_resolve_link_strips_query_fragment_and_decodes(tmp_path: Path) -> None:
    source = tmp_path / "skill" / "SKILL.md"
    path, fragment = resolve_link(source, "references/with%20space.md?plain=1#Blur")
    assert path == tmp_path / "skill" / "references" / "with space.md"
    assert fragment == "Blur"
    same, frag = resolve_link(source, "#top")
    assert same == source
    assert frag == "top"


def test_valid_reference_links_pass(tmp_path: Path) -> None:
    skill_dir = _skill(tmp_path)
    res = _check(
        skill_dir,
        "# S\n\n- [Patterns](references/patterns.md#blur)\n- [Spaced](<references/with space.md>)\n"
        "- [Docs](https://example.com)\n- [Top](#s)\n",
    )
    assert res.findings == []
    assert (skill_dir / "references" / "patterns.md").resolve() in res.targets


def test_broken_link_is_error(tmp_path: Path) -> None:
    skill_dir = _skill(tmp_path)
    res = _check(skill_dir, "# S\n\nSee [missing](references/missing.md).\n")
    assert [f.code for f in res.findings] == ["link_broken"]
    assert res.findings[0].is_error
    assert res.findings[0].detail == "SKILL.md:3:references/missing.md"


def test_link_escaping_skill_dir_is_error(tmp_path: Path) -> None:
    skill_dir = _skill(tmp_path)
    res = _check(skill_dir, "[readme](../../README.md)\n[abs](/etc/passwd)\n")
    assert [f.code for f in res.findings] == ["link_outside_skill", "link_absolute"]


def test_link_outside_references_is_error_unless_relaxed(tmp_path: Path) -> None:
    skill_dir = _skill(tmp_path)
    res = check_links(skill_dir, skill_dir / "SKILL.md", parse_markdown("![logo](assets/logo.svg)\n"), ref="p/s")
    assert [(f.code, f.severity) for f in res.findings] == [("link_outside_references", "error")]
    res = _check(skill_dir, "![logo](assets/logo.svg)\n", references_only=False)
    assert [(f.code, f.severity) for f in res.findings] == [("link_outside_references", "warning")]


def test_directory_link_and_missing_anchors(tmp_path: Path) -> None:
    skill_dir = _skill(tmp_path)
    res = _check(skill_dir, "# S\n[dir](references)\n[a](references/patterns.md#nope)\n[b](#nowhere)\n[]()\n")
    codes = [f.code for f in res.findings]
    assert codes == ["link_not_file", "anchor_missing", "anchor_missing"]


def test_link_target_with_parentheses(tmp_path: Path) -> None:
    skill_dir = _skill(tmp_path)
    (skill_dir / "references" / "hooks(react).md").write_text("# Hooks\n", encoding="utf-8")
    res = _check(skill_dir, "# S\n\n[hooks](references/hooks(react).md)\n")
    assert res.findings == []
    assert (skill_dir / "references" / "hooks(react).md").resolve() in res.targets
