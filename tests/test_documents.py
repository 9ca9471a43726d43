from __future__ import annotations

from pathlib import Path

from skillmart.documents import build_reference, load_reference, parse_markdown, slugify_heading

REFERENCE = """# Glassmorphism Patterns

## Table of Contents

- [Frosted panel](#frosted-panel)
- [Grain overlay](#grain-overlay)

## Frosted panel

```css
.panel { backdrop-filter: blur(12px); }
```

## Grain overlay

~~~jsx
// [not a link](nowhere.md)
export function Grain() { return <div className="grain" />; }
~~~

See [the skill](../SKILL.md) and `[inline](skip.md)`.
"""


def test_slugify_heading_matches_github_anchors() -> None:
    assert slugify_heading("Frosted panel") == "frosted-panel"
    assert slugify_heading("Next.js + tRPC: setup") == "nextjs--trpc-setup"
    assert slugify_heading("`useFrame` hook") == "useframe-hook"
    assert slugify_heading("snake_case stays") == "snake_case-stays"


def test_parse_markdown_headings_and_duplicate_slugs() -> None:
    doc = parse_markdown("# Title\n## Setup\n## Setup\n### Setup ##\n")
    assert doc.title == "Title"
    assert [h.slug for h in doc.headings] == ["title", "setup", "setup-1", "setup-2"]
    assert doc.headings[3].level == 3


def test_parse_markdown_code_blocks_are_opaque() -> None:
    doc = parse_markdown(REFERENCE)
    assert [b.language for b in doc.code_blocks] == ["css", "jsx"]
    assert "backdrop-filter" in doc.code_blocks[0].text
    targets = [link.target for link in doc.links]
    assert "nowhere.md" not in targets
    assert "skip.md" not in targets
    assert targets == ["#frosted-panel", "#grain-overlay", "../SKILL.md"]


def test_parse_markdown_link_forms() -> None:
    text = "\n".join(
        [
            "![diagram](<assets/flow chart.svg> \"Flow\")",
            "[ref-style]: references/api.md",
            "[inline](references/a.md#part 'title')",
        ]
    )
    doc = parse_markdown(text, first_line=10)
    by_target = {link.target: link for link in doc.links}
    assert by_target["assets/flow chart.svg"].is_image is True
    assert by_target["references/api.md"].line == 11
    assert by_target["references/a.md#part"].line == 12


def test_parse_markdown_unterminated_fence_runs_to_end() -> None:
    doc = parse_markdown("```sql\nselect 1;\n[x](y.md)\n")
    assert len(doc.code_blocks) == 1
    assert doc.code_blocks[0].language == "sql"
    assert doc.links == ()


def test_build_reference_title_toc_and_languages(tmp_path: Path) -> None:
    path = tmp_path / "glass.md"
    path.write_text(REFERENCE, encoding="utf-8")
    ref = load_reference(path)
    assert ref.title == "Glassmorphism Patterns"
    assert ref.has_title is True
    assert [h.text for h in ref.toc] == ["Table of Contents", "Frosted panel", "Grain overlay"]
    assert ref.languages() == ["css", "jsx"]
    public = ref.to_public_dict(base=tmp_path)
    assert public["path"] == "glass.md"
    assert public["code_blocks"] == 2


def test_build_reference_falls_back_to_file_stem() -> None:
    ref = build_reference(Path("references/drizzle-schema.md"), "## Tables\n\ntext\n")
    assert ref.title == "drizzle-schema"
    assert ref.has_title is False
    assert [h.text for h in ref.toc] == ["Tables"]


def test_footnotes_are_not_links() -> None:
    doc = parse_markdown("Uses r3f[^1] and drei[^note].\n\n[^1]: Based on the three.js docs.\n[^note]: See below.\n")
    assert doc.links == ()


def test_backtick_info_string_with_backticks_is_not_a_fence() -> None:
    doc = parse_markdown("```js```\n\n[a](references/a.md)\n")
    assert doc.code_blocks == ()
    assert [link.target for link in doc.links] == ["references/a.md"]


def test_fence_closes_only_on_matching_run() -> None:
    doc = parse_markdown("````md\n```\n[x](y.md)\n````\n[a](references/a.md)\n")
    assert len(doc.code_blocks) == 1
    assert doc.code_blocks[0].text == "```\n[x](y.md)"
    assert [link.target for link in doc.links] == ["references/a.md"]


def test_indented_code_is_opaque() -> None:
    text = "\n".join(
        [
            "# Setup",
            "",
            "    [not a link](nowhere.md)",
            "    # not a heading",
            "",
            "- item",
            "",
            "    continued item with [a](references/a.md)",
        ]
    )
    doc = parse_markdown(text)
    assert [h.text for h in doc.headings] == ["Setup"]
    assert len(doc.code_blocks) == 1
    block = doc.code_blocks[0]
    assert block.fenced is False
    assert block.language is None
    assert block.line == 3
    assert block.text == "[not a link](nowhere.md)\n# not a heading"
    assert [link.target for link in doc.links] == ["references/a.md"]
