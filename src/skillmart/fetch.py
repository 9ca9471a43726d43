"""Stage a published marketplace locally so it can be linted before use.

Nothing staged here is ever installed. A stage directory holds the downloaded
archive, the filtered extraction and ``meta.json``; ``discard`` removes it.
Archive members are filtered with the same rules as ``scanner.scan_tree``, and
every member left out is recorded with its reason.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import stat
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import requests

from .scanner import precheck_filename, scan_tree

logger = logging.getLogger(__name__)

# GitHub archive downloads redirect from github.com to codeload.github.com.
DEFAULT_ALLOW_DOMAINS: tuple[str, ...] = ("github.com", "raw.githubusercontent.com", "codeload.github.com")

_OWNER_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class StageResult:
    ok: bool
    staged_id: str | None
    root: Path | None
    errors: list[str] | None
    skipped: tuple[str, ...] = ()


def _failed(*errors: str) -> StageResult:
    return StageResult(ok=False, staged_id=None, root=None, errors=list(errors))


def _host_allowed(url: str, allow_domains: tuple[str, ...]) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() == "https" and (parsed.hostname or "").lower() in {d.lower() for d in allow_domains}


def _archive_urls(
    src: str, ref: str | None, allow_domains: tuple[str, ...]
) -> tuple[list[tuple[str | None, str]], str | None]:
    """Candidate ``(ref, url)`` pairs for ``src``, or an error code."""
    if "://" in src:
        if not _host_allowed(src, allow_domains):
            return [], "url_not_allowed"
        return [(None, src)], None
    if not _OWNER_REPO_RE.match(src):
        return [], "source_invalid"
    refs = [ref] if ref else ["main", "master"]
    urls = [(r, f"https://github.com/{src}/archive/refs/heads/{r}.zip") for r in refs]
    urls = [(r, u) for r, u in urls if _host_allowed(u, allow_domains)]
    if not urls:
        return [], "no_download_url"
    return urls, None


def _fetch_archive(
    url: str,
    dest: Path,
    *,
    max_bytes: int,
    allow_domains: tuple[str, ...],
    timeout_s: float = 15.0,
) -> str | None:
    try:
        with requests.get(url, stream=True, timeout=timeout_s, allow_redirects=True) as resp:
            # The final URL after redirects must still be on the allowlist.
            if not _host_allowed(str(resp.url), allow_domains):
                return "redirect_not_allowed"
            if resp.status_code != 200:
                return f"http_{resp.status_code}"
            size = 0
            with dest.open("wb") as handle:
                for chunk in resp.iter_content(chunk_size=65536):
                    size += len(chunk)
                    if size > max_bytes:
                        return "download_too_large"
                    handle.write(chunk)
    except requests.RequestException as exc:
        return f"download_failed:{exc}"
    except OSError as exc:
        return f"write_failed:{exc}"
    return None


def _member_problem(info: zipfile.ZipInfo) -> str | None:
    if stat.S_ISLNK(info.external_attr >> 16):
        return "symlink_blocked"
    name = info.filename
    parts = PurePosixPath(name).parts
    if not parts or name.startswith(("/", "\\")) or ".." in parts or ":" in parts[0]:
        return "path_invalid"
    return None


def _extract(
    zip_path: Path,
    out_dir: Path,
    *,
    strict: bool,
    max_files: int,
    max_total_bytes: int,
) -> tuple[list[str], list[str]]:
    """Extract the members that pass the scanner's filename rules.

    Returns ``(errors, skipped)``; both hold ``code:member`` strings. Script
    files are an error in strict mode and skipped otherwise.
    """
    errors: list[str] = []
    skipped: list[str] = []
    files = 0
    total = 0
    out_dir.mkdir(parents=True, exist_ok=True)
    out_root = out_dir.resolve()

    try:
        zf = zipfile.ZipFile(zip_path)
    except (OSError, zipfile.BadZipFile) as exc:
        return [f"zip_open_failed:{exc}"], skipped

    with zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            name = info.filename
            problem = _member_problem(info)
            if problem:
                errors.append(f"{problem}:{name}")
                continue
            pre = precheck_filename(name)
            if pre:
                if strict and "blocked_extension" in pre:
                    errors.append(f"blocked_extension:{name}")
                else:
                    skipped.append(f"{pre[0]}:{name}")
                continue

            files += 1
            total += max(0, int(info.file_size or 0))
            if files > max_files:
                errors.append("too_many_files")
                break
            if total > max_total_bytes:
                errors.append("total_size_exceeded")
                break

            dest = (out_dir / name).resolve()
            try:
                dest.relative_to(out_root)
            except ValueError:
                errors.append(f"path_invalid:{name}")
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zf.open(info) as src, dest.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
            except (OSError, zipfile.BadZipFile) as exc:
                errors.append(f"extract_failed:{name}:{exc}")

    return errors, skipped


def _archive_root(extracted: Path) -> Path:
    # GitHub archives wrap the tree in a single "<repo>-<ref>/" directory.
    entries = [p for p in extracted.iterdir() if p.name != "__MACOSX"]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return extracted


def discard(staging_root: Path, staged_id: str) -> bool:
    stage_dir = Path(staging_root) / str(staged_id)
    if not stage_dir.exists():
        return False
    shutil.rmtree(stage_dir, ignore_errors=True)
    return True


def _populate(
    stage_dir: Path,
    src: str,
    candidates: list[tuple[str | None, str]],
    *,
    ref: str | None,
    subdir: str | None,
    strict: bool,
    allow_domains: tuple[str, ...],
    max_files: int,
    max_total_bytes: int,
) -> StageResult:
    zip_path = stage_dir / "source.zip"
    attempts: list[str] = []
    used: tuple[str | None, str] | None = None
    for cand_ref, url in candidates:
        err = _fetch_archive(url, zip_path, max_bytes=max_total_bytes, allow_domains=allow_domains)
        if err is None:
            used = (cand_ref or ref, url)
            break
        attempts.append(err if cand_ref is None else f"{cand_ref}:{err}")
    if used is None:
        logger.warning("Download failed for %s: %s", src, ";".join(attempts))
        return _failed(*attempts)

    extracted = stage_dir / "extracted"
    errors, skipped = _extract(
        zip_path, extracted, strict=strict, max_files=max_files, max_total_bytes=max_total_bytes
    )
    if errors:
        return _failed(*errors)
    zip_path.unlink()

    root = _archive_root(extracted)
    if subdir:
        root = (root / subdir).resolve()
        try:
            root.relative_to(extracted.resolve())
        except ValueError:
            return _failed("subdir_invalid")
        if not root.is_dir():
            return _failed("subdir_missing")

    scan = scan_tree(root, strict=strict, max_files=max_files, max_total_bytes=max_total_bytes)
    if not scan.ok:
        return _failed(*scan.errors)

    meta = {
        "staged_id": stage_dir.name,
        "source": src,
        "url": used[1],
        "ref": used[0],
        "subdir": subdir,
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "root": root.resolve().relative_to(stage_dir.resolve()).as_posix(),
        "strict": strict,
        "skipped": skipped,
        "scan": {"files": int(scan.files), "bytes": int(scan.bytes)},
    }
    (stage_dir / "meta.json").write_text(json.dumps(meta, ensure_ascii=True, indent=2) + "\n", encoding="utf-8")
    for entry in skipped:
        logger.info("Skipped %s", entry)
    logger.info("Staged %s as %s (%d files, %d skipped)", src, stage_dir.name, scan.files, len(skipped))
    return StageResult(ok=True, staged_id=stage_dir.name, root=root, errors=None, skipped=tuple(skipped))


def stage(
    staging_root: Path,
    source: str,
    *,
    ref: str | None = None,
    subdir: str | None = None,
    strict: bool = True,
    allow_domains: tuple[str, ...] = DEFAULT_ALLOW_DOMAINS,
    max_files: int = 2000,
    max_total_bytes: int = 20 * 1024 * 1024,
) -> StageResult:
    """Download ``source`` (``owner/repo`` or an https archive URL) into a fresh stage dir.

    Without ``ref`` an ``owner/repo`` source tries ``main`` and then ``master``.
    A failed stage leaves nothing behind.
    """
    src = str(source or "").strip()
    if not src:
        return _failed("source_missing")
    candidates, err = _archive_urls(src, ref, allow_domains)
    if err:
        return _failed(err)

    staging_root = Path(staging_root)
    staging_root.mkdir(parents=True, exist_ok=True)
    stage_dir = Path(tempfile.mkdtemp(prefix="stage-", dir=staging_root))
    try:
        result = _populate(
            stage_dir,
            src,
            candidates,
            ref=ref,
            subdir=subdir,
            strict=bool(strict),
            allow_domains=allow_domains,
            max_files=int(max_files),
            max_total_bytes=int(max_total_bytes),
        )
    except BaseException:
        shutil.rmtree(stage_dir, ignore_errors=True)
        raise
    if not result.ok:
        shutil.rmtree(stage_dir, ignore_errors=True)
    return result
