from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path

import pytest

from skillmart import fetch as fetch_mod
from skillmart.cli import main


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("SKILLMART_PROFILE", "SKILLMART_STRICT", "SKILLMART_BODY_TOKEN_BUDGET"):
        monkeypatch.delenv(key, raising=False)


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> str:
    main(list(argv))
    return capsys.readouterr().out


def _scaffold(capsys: pytest.CaptureFixture[str], root: Path) -> None:
    out = _run(capsys, "--root", str(root), "new-plugin", "fullstack-develop", "--description", "Web skills.")
    assert json.loads(out)["ok"] is True
    out = _run(
        capsys, "--root", str(root), "new-skill", "fullstack-develop", "web-3d", "--description", "Use for 3D scenes."
    )
    assert json.loads(out)["ok"] is True


def test_scaffold_list_show_refs(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _scaffold(capsys, tmp_path)

    listed = json.loads(_run(capsys, "--root", str(tmp_path), "list"))
    assert listed["ok"] is True
    assert [s["id"] for s in listed["data"]] == ["fullstack-develop/web-3d"]
    assert "body" not in listed["data"][0]

    shown = json.loads(_run(capsys, "--root", str(tmp_path), "show", "fullstack-develop/web-3d"))
    assert shown["skill"]["name"] == "web-3d"
    assert "## When to use" in shown["skill"]["body"]

    refs = json.loads(_run(capsys, "--root", str(tmp_path), "refs", "fullstack-develop/web-3d"))
    assert [doc["path"] for doc in refs["data"]] == ["references/overview.md"]

    with pytest.raises(SystemExit) as exc:
        main(["--root", str(tmp_path), "show", "fullstack-develop/nope"])
    assert exc.value.code == 1
    assert json.loads(capsys.readouterr().out) == {"ok": False, "error": "skill_not_found"}


def test_lint_exit_codes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _scaffold(capsys, tmp_path)
    report = json.loads(_run(capsys, "--root", str(tmp_path), "lint"))
    assert report["ok"] is True

    refs = tmp_path / "plugins" / "fullstack-develop" / "skills" / "web-3d" / "references"
    (refs / "overview.md").unlink()
    with pytest.raises(SystemExit) as exc:
        main(["--root", str(tmp_path), "lint"])
    assert exc.value.code == 1
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is False
    assert any(e.startswith("link_broken:fullstack-develop/web-3d") for e in report["errors"])

    report = json.loads(_run(capsys, "--root", str(tmp_path), "lint", "--ignore", "link_broken"))
    assert report["ok"] is True


def test_lint_strict_flag_promotes_warnings(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    skill = tmp_path / "plugins" / "p" / "skills" / "s"
    skill.mkdir(parents=True)
    (skill / "SKILL.md").write_text("---\nname: s\ndescription: Demo.\n---\n# S\n", encoding="utf-8")

    report = json.loads(_run(capsys, "--root", str(tmp_path), "lint"))
    assert report["ok"] is True
    assert report["warnings"] == ["marketplace_missing:.claude-plugin/marketplace.json"]

    with pytest.raises(SystemExit):
        main(["--root", str(tmp_path), "lint", "--strict"])
    assert json.loads(capsys.readouterr().out)["errors"] == ["marketplace_missing:.claude-plugin/marketplace.json"]


def test_lint_text_format(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _scaffold(capsys, tmp_path)
    out = _run(capsys, "--root", str(tmp_path), "--format", "text", "lint")
    assert "skillmart lint" in out
    assert "ok" in out


def test_index_and_stats(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _scaffold(capsys, tmp_path)
    out_path = tmp_path / "build" / "index.json"
    payload = json.loads(_run(capsys, "--root", str(tmp_path), "index", "--out", str(out_path)))
    assert payload["ok"] is True
    assert payload["skills"] == 1
    assert json.loads(out_path.read_text(encoding="utf-8"))["skills"][0]["id"] == "fullstack-develop/web-3d"

    metrics = _run(capsys, "--root", str(tmp_path), "stats")
    assert "skillmart_plugins_total 1" in metrics
    assert "skillmart_skills_total 1" in metrics
    assert "skillmart_references_total 1" in metrics
    assert 'skillmart_lint_findings_total{severity="error"} 0' in metrics


def test_new_skill_rejects_duplicates(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _scaffold(capsys, tmp_path)
    with pytest.raises(SystemExit) as exc:
        main(["--root", str(tmp_path), "new-skill", "fullstack-develop", "web-3d", "--description", "Again."])
    assert exc.value.code == 1
    assert json.loads(capsys.readouterr().out)["error"] == "skill_exists"


def test_audit_reports_stage_failure(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["audit", "http://example.com/x.zip", "--staging-dir", str(tmp_path)])
    assert exc.value.code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"ok": False, "error": "stage_failed", "details": ["url_not_allowed"]}


def test_no_command_prints_help() -> None:
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 2


class _ArchiveResponse:
    def __init__(self, url: str, body: bytes) -> None:
        self.url = url
        self.status_code = 200
        self._body = body

    def __enter__(self) -> "_ArchiveResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def iter_content(self, chunk_size: int = 65536):
        yield self._body


def _archive_with_own_settings() -> bytes:
    files = {
        "r-main/.skillmart.yaml": "profiles:\n  default:\n    lint:\n      ignore: [link_broken]\n",
        "r-main/.claude-plugin/marketplace.json": json.dumps(
            {"name": "m", "owner": {"name": "o"}, "plugins": [{"name": "p", "source": "./plugins/p"}]}
        ),
        "r-main/plugins/p/skills/s/SKILL.md": "---\nname: s\ndescription: Demo.\n---\n[gone](references/gone.md)\n",
    }
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in files.items():
            zf.writestr(name, text)
    return buf.getvalue()


def test_audit_ignores_settings_shipped_in_the_archive(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    body = _archive_with_own_settings()
    monkeypatch.setattr(fetch_mod.requests, "get", lambda url, **_kw: _ArchiveResponse(url, body))
    local = tmp_path / "local"
    local.mkdir()
    staging = tmp_path / "staging"

    with pytest.raises(SystemExit) as exc:
        main(["--root", str(local), "audit", "o/r", "--staging-dir", str(staging)])
    assert exc.value.code == 1
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is False
    assert report["source"] == "o/r"
    assert "link_broken:p/s:SKILL.md:5:references/gone.md" in report["errors"]
    assert list((staging / "skillmart-staging").iterdir()) == []

    (local / ".skillmart.yaml").write_text(
        "profiles:\n  default:\n    lint:\n      ignore: [link_broken]\n", encoding="utf-8"
    )
    report = json.loads(_run(capsys, "--root", str(local), "audit", "o/r", "--staging-dir", str(staging)))
    assert report["ok"] is True
