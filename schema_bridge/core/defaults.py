from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

INT2_RANGE = ("-32768", "32767")
INT4_RANGE = ("-2147483648", "2147483647")
INT8_RANGE = ("-9223372036854775808", "9223372036854775807")


def _identity_ranges() -> Dict[str, Tuple[str, str]]:
    return {
        "int2": INT2_RANGE,
        "smallint": INT2_RANGE,
        "int4": INT4_RANGE,
        "integer": INT4_RANGE,
        "int": INT4_RANGE,
        "int8": INT8_RANGE,
        "bigint": INT8_RANGE,
    }


class Defaults(BaseModel):
    default_schema: Optional[str] = "public"
    index_method: str = "btree"
    max_identifier_length: int = 63
    identity_increment: str = "1"
    identity_cache: str = "1"
    identity_ranges: Dict[str, Tuple[str, str]] = Field(default_factory=_identity_ranges)
    sequence_range: Tuple[str, str] = INT8_RANGE
    default_tablespace: str = "pg_default"
    default_access_method: str = "heap"
    policy_roles: List[str] = Field(default_factory=lambda: ["public"])
    # Stand-in schema for dialects without namespaces
    placeholder_schema: str = "main"

    def identity_range(self, sql_type: str) -> Tuple[str, str]:
        # unknown integer types get the int2 bounds
        return self.identity_ranges.get(sql_type.lower().strip(), INT2_RANGE)

    @classmethod
    def for_dialect(cls, dialect: str) -> "Defaults":
        if dialect == "mssql":
            return cls(default_schema="dbo")
        if dialect in ("mysql", "singlestore", "sqlite", "turso"):
            return cls(default_schema=None, max_identifier_length=64)
        return cls()
