from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from src.models.role import Actor, Role


class UserSchema(BaseModel):
    """
        Utente restituito dal servizio remoto (es. GET /users?role=driver).

        Attributes:
            id (int): ID dell'utente.
            firstname (str): Nome.
            lastname (str): Cognome.
            email (Optional[str]): Email, se presente.
            role (Role): Ruolo; le chiavi legacy (transportista, contable, cliente) sono accettate.
    """
    id: int
    firstname: str = ""
    lastname: str = ""
    email: Optional[str] = None
    role: Role

    model_config = ConfigDict(extra='ignore')

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> Role:
        return Role.parse(value)

    @field_validator("firstname", "lastname", mode="before")
    @classmethod
    def _names_not_null(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def display_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()

    def as_actor(self) -> Actor:
        return Actor(id=self.id, role=self.role)
