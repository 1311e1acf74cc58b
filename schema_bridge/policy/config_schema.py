from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ExistingEntry(BaseModel):
    type: Literal["schema", "table", "role"]
    name: str
    schema_name: Optional[str] = Field(default=None, alias="schema")

    class Config:
        populate_by_name = True


class CLIConfig(BaseModel):
    adapter: str = Field(default="sqlalchemy")
    dialect: str = Field(default="postgresql")
    casing: Optional[str] = None

    repo_dir: Optional[str] = None
    module: Optional[str] = None

    schemas: Union[None, str, List[str]] = None
    tables: Union[None, str, List[str]] = None
    entities: Dict[str, Any] = Field(default_factory=dict)
    extensions: List[str] = Field(default_factory=list)
    existing: List[ExistingEntry] = Field(default_factory=list)

    driver: Optional[Literal["postgres", "duckdb"]] = None
    database_url: Optional[str] = None
    database: Optional[str] = None

    out: Optional[str] = None
    strict: bool = Field(default=False)

    class Config:
        extra = "allow"
