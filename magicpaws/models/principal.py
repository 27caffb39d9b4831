from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


class Principal(BaseModel):
    """The authenticated actor behind a request."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str] = None
    role: Role = Role.CLIENT

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        return (email or "").strip().lower()
