"""Pydantic models for test tokens."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TestAuthContext(BaseModel):
    """A minted token together with the identity it was minted for."""

    __test__ = False

    token: str
    subject: str
    issuer: str
    audience: List[str] = Field(default_factory=list)

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"


class TokenClaims(BaseModel):
    """Registered claims of a validated token, plus scope."""

    model_config = ConfigDict(extra="allow")

    sub: str = ""
    iss: str = ""
    aud: List[str] = Field(default_factory=list)
    iat: Optional[int] = None
    exp: Optional[int] = None
    scope: str = ""

    @field_validator("aud", mode="before")
    @classmethod
    def aud_to_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @classmethod
    def from_claims(cls, claims: dict) -> "TokenClaims":
        return cls.model_validate(claims)
