"""JSON probe configuration document (query, principals, schedule)."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from searchprobe.schemas.probe import ITEM_KEY_FIELD, Principal, ProbeQuery

_UNIT_SECONDS = {"seconds": 1, "minutes": 60, "hours": 3600}


class ProbeConfigDocument(BaseModel):
    """On-disk probe setup, field names matching the saved JSON."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    site_url: str = Field("", alias="siteUrl")
    tenant_id: str = Field("", alias="tenantId")
    client_id: str = Field("", alias="clientId")
    query_text: str = Field("contentclass:STS_ListItem", alias="queryText")
    select_properties: List[str] = Field(
        default_factory=lambda: ["Title", "Path", "LastModifiedTime", ITEM_KEY_FIELD],
        alias="selectProperties",
    )
    row_limit: int = Field(10, ge=1, le=500, alias="rowLimit")
    sort_list: str = Field("", alias="sortList")
    page_url: str = Field("", alias="pageUrl")
    interval_value: int = Field(10, ge=1, alias="intervalValue")
    interval_unit: Literal["seconds", "minutes", "hours"] = Field("seconds", alias="intervalUnit")
    users: List[Principal] = Field(default_factory=list)

    @field_validator("interval_unit", mode="before")
    @classmethod
    def _lower_unit(cls, value):
        return value.lower() if isinstance(value, str) else value

    def interval_seconds(self) -> float:
        return float(self.interval_value * _UNIT_SECONDS[self.interval_unit])

    def to_probe_query(self) -> ProbeQuery:
        return ProbeQuery(
            site_url=self.site_url,
            query_text=self.query_text,
            select_properties=self.select_properties,
            row_limit=self.row_limit,
            sort_list=self.sort_list,
        )


def load_probe_config(path: Path) -> ProbeConfigDocument:
    """Read a probe config; a missing file yields the defaults."""
    path = Path(path)
    if not path.exists():
        return ProbeConfigDocument()
    return ProbeConfigDocument.model_validate_json(path.read_text(encoding="utf-8"))


def save_probe_config(path: Path, document: ProbeConfigDocument) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = document.model_dump_json(by_alias=True, indent=2)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(payload)
    os.replace(tmp_name, path)


__all__ = ["ProbeConfigDocument", "load_probe_config", "save_probe_config"]
