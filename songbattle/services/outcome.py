"""Result values returned by every caller-facing operation.

Business-rule failures are returned as a failed ``Outcome`` tagged with an
``ErrorKind``; only infrastructure failures raise.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    PHASE = "phase"
    QUOTA = "quota"
    CONFLICT = "conflict"
    INVARIANT = "invariant"
    VALIDATION = "validation"


@dataclass
class Outcome:
    success: bool
    message: str
    kind: Optional[ErrorKind] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "Outcome":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "Outcome":
        return cls(success=False, message=message, kind=kind)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.kind is not None:
            body["kind"] = self.kind.value
        body.update(self.data)
        return body


def not_found(what: str) -> Outcome:
    return Outcome.fail(ErrorKind.NOT_FOUND, f"{what} not found")
