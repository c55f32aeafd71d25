from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ANONYMOUS = "anonymous"
    JOURNALIST = "journalist"
    CURATOR = "curator"


@dataclass(frozen=True, slots=True)
class Caller:
    role: Role
    username: str | None = None

    def __post_init__(self) -> None:
        if self.role is Role.ANONYMOUS:
            if self.username is not None:
                raise ValueError("anonymous callers carry no username")
        elif not self.username:
            raise ValueError(f"{self.role.value} callers require a username")

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls(role=Role.ANONYMOUS)

    @classmethod
    def journalist(cls, username: str) -> "Caller":
        return cls(role=Role.JOURNALIST, username=username)

    @classmethod
    def curator(cls, username: str) -> "Caller":
        return cls(role=Role.CURATOR, username=username)

    def owns(self, owner: str | None) -> bool:
        return self.role is not Role.ANONYMOUS and owner is not None and self.username == owner


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None
