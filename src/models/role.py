"""
Ruoli utente e attore della sessione
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, NoReturn


class Role(str, Enum):
    """Closed set of session roles"""
    ADMIN = "admin"
    DRIVER = "driver"
    ACCOUNTANT = "accountant"
    CLIENT_VIEWER = "client_viewer"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown role: {value!r}")
        key = value.strip().lower()
        try:
            return cls(key)
        except ValueError:
            pass
        if key in _ROLE_ALIASES:
            return _ROLE_ALIASES[key]
        raise ValueError(f"Unknown role: {value!r}")


# Chiavi ruolo del backend originale
_ROLE_ALIASES: Dict[str, Role] = {
    "transportista": Role.DRIVER,
    "contable": Role.ACCOUNTANT,
    "cliente": Role.CLIENT_VIEWER,
    "client": Role.CLIENT_VIEWER,
}


def unhandled_role(role: Role) -> NoReturn:
    """Fail loudly when a role reaches a branch that does not know it."""
    raise ValueError(f"Unhandled role: {role!r}")


@dataclass(frozen=True, slots=True)
class Actor:
    """The user performing an action, passed explicitly to guards and transitions."""

    id: int
    role: Role

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role.parse(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_driver(self) -> bool:
        return self.role is Role.DRIVER
