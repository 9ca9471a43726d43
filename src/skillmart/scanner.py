from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# Skills are prose plus inert example snippets; anything executable is out.
ALLOWED_EXTENSIONS: set[str] = {
    ".md",
    ".markdown",
    ".txt",
    ".json",
    ".yaml",
    ".yml",
    ".css",
    ".scss",
    ".js",
    ".jsx",
    ".ts",
    ".tsx",
    ".sql",
    ".html",
    ".svg",
}
ALLOWED_BASENAMES: set[str] = {".gitkeep", "LICENSE"}

BLOCKED_DIRS: set[str] = {".git", "__pycache__", "node_modules"}

BLOCKED_BASENAMES: set[str] = {
    "package.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "poetry.lock",
    "pyproject.toml",
    "requirements.txt",
    "setup.py",
    "pipfile",
    "pipfile.lock",
}

BLOCKED_EXTENSIONS: set[str] = {
    ".sh",
    ".ps1",
    ".bat",
    ".cmd",
    ".exe",
    ".dll",
    ".so",
    ".dylib",
    ".py",
    ".pyc",
}

DANGEROUS_TEXT_SNIPPETS: tuple[str, ...] = (
    "rm -rf /",
    "rmdir /s",
    "del /f",
    "format c:",
    "invoke-webrequest",
    "iex(",
    "curl | bash",
    "curl | sh",
    "wget | sh",
    "powershell -enc",
    "set-executionpolicy",
    "add-mppreference",
)


def _is_probably_binary(data: bytes) -> bool:
    if b"\x00" in data:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


def _scan_text_for_danger(text: str) -> list[str]:
    lowered = text.lower()
    hits: list[str] = []
    for needle in DANGEROUS_TEXT_SNIPPETS:
        if needle in lowered:
            hits.append(needle)
    return hits


def precheck_filename(rel_posix: str) -> list[str]:
    p = Path(rel_posix)
    base = p.name.lower()
    ext = p.suffix.lower()
    errors: list[str] = []
    if base in BLOCKED_BASENAMES:
        errors.append("blocked_file")
    if ext in BLOCKED_EXTENSIONS:
        errors.append("blocked_extension")
    elif ext and ext not in ALLOWED_EXTENSIONS:
        errors.append("extension_not_allowed")
    if not ext and p.name not in ALLOWED_BASENAMES:
        errors.append("basename_not_allowed")
    return errors


@dataclass(frozen=True)
class ScanResult:
    ok: bool
    errors: list[str]
    files: int
    bytes: int


def scan_tree(
    root: Path,
    *,
    strict: bool,
    max_files: int = 500,
    max_total_bytes: int = 20 * 1024 * 1024,
) -> ScanResult:
    root = Path(root)
    errors: list[str] = []
    files = 0
    total_bytes = 0

    if not root.exists():
        return ScanResult(ok=False, errors=["root_missing"], files=0, bytes=0)
    if not root.is_dir():
        return ScanResult(ok=False, errors=["root_not_dir"], files=0, bytes=0)

    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)

        if any(part in BLOCKED_DIRS for part in rel.parts):
            if path.is_dir() and path.name in BLOCKED_DIRS:
                errors.append(f"blocked_dir:{rel.as_posix()}")
            continue

        if path.is_symlink():
            errors.append(f"symlink_blocked:{rel.as_posix()}")
            continue

        if path.is_dir():
            continue

        files += 1
        if files > int(max_files):
            errors.append("too_many_files")
            break

        pre = precheck_filename(rel.as_posix())
        if pre:
            errors.append(f"{pre[0]}:{rel.as_posix()}")
            continue

        try:
            size = int(path.stat().st_size)
        except OSError:
            errors.append(f"stat_failed:{rel.as_posix()}")
            continue

        total_bytes += max(0, size)
        if total_bytes > int(max_total_bytes):
            errors.append("total_size_exceeded")
            break

        try:
            data = path.read_bytes()
        except OSError:
            errors.append(f"read_failed:{rel.as_posix()}")
            continue

        if _is_probably_binary(data):
            errors.append(f"binary_blocked:{rel.as_posix()}")
            continue

        if strict:
            hits = _scan_text_for_danger(data.decode("utf-8"))
            if hits:
                errors.append(f"dangerous_text:{rel.as_posix()}:{','.join(hits[:3])}")

    return ScanResult(ok=(not errors), errors=errors, files=int(files), bytes=int(total_bytes))
