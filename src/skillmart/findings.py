from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class Finding:
    code: str
    ref: str
    detail: str | None = None
    severity: str = ERROR

    def __str__(self) -> str:
        if self.detail:
            return f"{self.code}:{self.ref}:{self.detail}"
        return f"{self.code}:{self.ref}"

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    def promoted(self) -> "Finding":
        if self.severity == ERROR:
            return self
        return replace(self, severity=ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "ref": self.ref, "detail": self.detail, "severity": self.severity}


def error(code: str, ref: str, detail: str | None = None) -> Finding:
    return Finding(code=code, ref=ref, detail=detail, severity=ERROR)


def warning(code: str, ref: str, detail: str | None = None) -> Finding:
    return Finding(code=code, ref=ref, detail=detail, severity=WARNING)
