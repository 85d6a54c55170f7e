from dataclasses import dataclass
from enum import Enum


class PrincipalType(str, Enum):
    TRIGGER = "trigger"
    OPERATOR = "operator"


@dataclass(slots=True)
class Principal:
    principal_type: PrincipalType
    subject: str
    scopes: set[str]

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


TRIGGER_SCOPES = {"sync:write"}
OPERATOR_SCOPES = {"sync:write", "admin:write"}
