"""Результаты операций ядра вместо исключений на публичной границе."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Классы отказов, по которым оболочки выбирают ответ."""

    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    VERIFICATION = "verification"
    CADENCE = "cadence"
    INSUFFICIENT = "insufficient"
    TRANSFER = "transfer"
    TRANSIENT = "transient"
    CONFLICT = "conflict"
    INVALID = "invalid"


@dataclass(slots=True)
class ServiceResult:
    """Итог операции: стабильный код причины плюс безопасные детали."""

    ok: bool
    reason: str | None = None
    kind: ErrorKind | None = None
    details: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> "ServiceResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, reason: str, kind: ErrorKind, **details: Any) -> "ServiceResult":
        return cls(ok=False, reason=reason, kind=kind, details=details)

    def as_dict(self) -> dict[str, Any]:
        if self.ok:
            return dict(self.data)
        payload: dict[str, Any] = {"reason": self.reason}
        if self.details:
            payload["details"] = self.details
        return payload


__all__ = ["ErrorKind", "ServiceResult"]
