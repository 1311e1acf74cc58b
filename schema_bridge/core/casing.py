from __future__ import annotations

import re
from typing import Literal, Optional

Casing = Literal["none", "camelCase", "snake_case"]

_WORDS = re.compile(r"[\da-z]+|[A-Z]+(?![a-z])|[A-Z][\da-z]+")
_APOSTROPHES = re.compile("['’]")


def _words(value: str) -> list[str]:
    return _WORDS.findall(_APOSTROPHES.sub("", value))


def to_snake_case(value: str) -> str:
    return "_".join(word.lower() for word in _words(value))


def to_camel_case(value: str) -> str:
    out = ""
    for i, word in enumerate(_words(value)):
        out += word.lower() if i == 0 else word[0].upper() + word[1:]
    return out


def normalize_casing(casing: Optional[str]) -> Casing:
    if casing in (None, "", "none"):
        return "none"
    if casing in ("camelCase", "camel"):
        return "camelCase"
    if casing in ("snake_case", "snake"):
        return "snake_case"
    raise ValueError(f"Unknown casing '{casing}'. Expected one of: none, camelCase, snake_case")


def apply_casing(key: str, casing: Optional[str]) -> str:
    mode = normalize_casing(casing)
    if mode == "camelCase":
        return to_camel_case(key)
    if mode == "snake_case":
        return to_snake_case(key)
    return key


def get_column_casing(key: str, explicit_name: Optional[str], casing: Optional[str]) -> str:
    """Physical column name: an explicit name wins, otherwise the key with casing applied."""
    if explicit_name:
        return explicit_name
    return apply_casing(key, casing)
