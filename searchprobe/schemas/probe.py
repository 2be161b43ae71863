"""Schemas describing what is probed and on whose behalf."""

from __future__ import annotations

import re
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ITEM_KEY_FIELD = "WorkId"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def credential_key_for(name: str) -> str:
    """Default token file name for a principal display name."""
    return f".token-{_NON_ALNUM.sub('_', name)}.dat"


class Principal(BaseModel):
    """A delegated identity the probes run as."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    enabled: bool = True
    flagged: bool = Field(
        False,
        alias="affected",
        description="Marks an identity the operator is investigating.",
    )
    credential_key: str = Field("", alias="tokenCacheFile")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Principal name must not be blank")
        return value

    @model_validator(mode="after")
    def _default_credential_key(self) -> "Principal":
        if not self.credential_key:
            self.credential_key = credential_key_for(self.name)
        return self


class ProbeQuery(BaseModel):
    """One search request shape, immutable for the life of a probe session."""

    model_config = ConfigDict(frozen=True)

    site_url: str = Field(..., min_length=1)
    query_text: str = "contentclass:STS_ListItem"
    select_properties: Tuple[str, ...] = ("Title", "Path", "LastModifiedTime", ITEM_KEY_FIELD)
    row_limit: int = Field(10, ge=1, le=500)
    sort_list: Optional[str] = None

    @field_validator("site_url")
    @classmethod
    def _trim_site(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("Site URL must be an absolute http(s) URL")
        return value

    @field_validator("select_properties", mode="before")
    @classmethod
    def _split_properties(cls, value):
        """Support providing properties as a comma-separated string."""
        if isinstance(value, str):
            value = value.split(",")
        return tuple(item.strip() for item in value if item and item.strip())

    @field_validator("sort_list")
    @classmethod
    def _blank_sort_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    def with_property(self, name: str) -> "ProbeQuery":
        """Copy of this query guaranteed to select ``name`` (case-insensitive)."""
        if any(prop.lower() == name.lower() for prop in self.select_properties):
            return self
        return self.model_copy(update={"select_properties": self.select_properties + (name,)})


__all__ = ["ITEM_KEY_FIELD", "Principal", "ProbeQuery", "credential_key_for"]
