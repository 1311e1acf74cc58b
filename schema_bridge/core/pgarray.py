"""
Parser for Postgres array literals such as ``{1,2,{3,4}}`` or ``{"a,b",NULL,c}``.

Elements come back as strings (or ``None`` for an unquoted ``NULL``); nested arrays become nested
lists. Quoted and unquoted elements both honour backslash escapes.
"""

from __future__ import annotations

import re
from typing import Any, List, Optional, Union

from lark import Lark, Token, Transformer, UnexpectedInput

from schema_bridge.errors import ArrayLiteralParseError

ArrayItem = Union[Optional[str], List[Any]]

_GRAMMAR = r"""
?start: array

array: "{" "}"
     | "{" item ("," item)* "}"

?item: array
     | QUOTED -> quoted
     | NULL -> null
     | ATOM -> atom

QUOTED: /"(?:[^"\\]|\\.)*"/
NULL.2: /NULL(?![^,{}"\s])/i
ATOM: /(?:[^,{}"\s\\]|\\.)+(?:[ \t]+(?:[^,{}"\s\\]|\\.)+)*/

%import common.WS
%ignore WS
"""

_UNESCAPE = re.compile(r"\\(.)", re.DOTALL)

_parser = Lark(_GRAMMAR, parser="lalr", start="start")


def _unescape(raw: str) -> str:
    return _UNESCAPE.sub(r"\1", raw)


class _ToList(Transformer):
    def array(self, items: list[Any]) -> List[ArrayItem]:
        return list(items)

    def quoted(self, items: list[Token]) -> str:
        return _unescape(str(items[0])[1:-1])

    def atom(self, items: list[Token]) -> str:
        return _unescape(str(items[0]))

    def null(self, _items: list[Token]) -> None:
        return None


def parse_array_literal(text: str) -> List[ArrayItem]:
    try:
        tree = _parser.parse(text.strip())
    except UnexpectedInput as e:
        line = getattr(e, "line", None)
        column = getattr(e, "column", None)
        if line is not None and line < 0:
            line, column = None, None
        raise ArrayLiteralParseError(text, line, column) from e
    return _ToList().transform(tree)
