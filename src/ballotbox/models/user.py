"""User account models."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ballotbox.models._base import BallotBaseModel


class User(BallotBaseModel):
    """A record of the ``users`` collection.

    Only the fields the library reads are typed; everything else stays
    available through ``raw``.
    """

    id: str = Field(default="", validation_alias=AliasChoices("id", "objectId", "_id"))
    email: str = ""
    username: str = ""
    first_name: str = Field(default="", validation_alias=AliasChoices("firstName", "first_name"))
    last_name: str = Field(default="", validation_alias=AliasChoices("lastName", "last_name"))
    status: str = "active"
    password: str = Field(default="", repr=False)
    roles: list[dict] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def primary_role_id(self) -> str | None:
        if not self.roles:
            return None
        role_id = self.roles[0].get("id")
        return str(role_id) if role_id else None


class SignInResult(BaseModel):
    """Outcome of a successful sign-in."""

    model_config = ConfigDict(frozen=True)

    user: User
    role: str = "user"
    token: str = Field(repr=False)
    expires_at: datetime
