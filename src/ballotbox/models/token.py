"""Persisted session token model."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class StoredToken(BaseModel):
    """A session token as kept by a credential store.

    Parameters
    ----------
    value : str
        Opaque bearer token.
    origin : str
        ``scheme://host`` the token was issued for. Never sent elsewhere.
    expires_at : datetime
        Absolute UTC expiry.
    secure : bool
        Only transmitted over ``https`` (unless the client opts out).
    same_site : str
        Always ``"strict"``: the token is bound to its own origin.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    value: str = Field(repr=False)
    origin: str
    expires_at: datetime
    secure: bool = True
    same_site: Literal["strict"] = "strict"

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
