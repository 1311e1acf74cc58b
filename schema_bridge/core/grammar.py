from __future__ import annotations

import datetime as dt
import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from schema_bridge.core.defaults import Defaults
from schema_bridge.core.ir import ColumnDefault, FkAction
from schema_bridge.core.pgarray import parse_array_literal
from schema_bridge.errors import assert_unreachable

MAX_SAFE_INTEGER = 2**53 - 1
NUMERIC_TYPES = (
    "smallint",
    "integer",
    "bigint",
    "int2",
    "int4",
    "int8",
    "real",
    "double precision",
    "float4",
    "float8",
    "numeric",
    "decimal",
)

_TYPE_WITH_OPTIONS = re.compile(r"^(\w+(?:\s+\w+)*)\(([^)]*)\)(\s+with(?:out)? time zone)?$", re.IGNORECASE)
_CAST_SUFFIX = re.compile(
    r'(::(?:"[^"]+"|[a-zA-Z_][\w\s]*?)(?:\.(?:"[^"]+"|[a-zA-Z_]\w*))?(?:\([^()]*\))?(?:\[\])*)+$'
)
_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_QUOTED = re.compile(r"^[eE]?'(?:[^'\\]|\\.|'')*'$", re.DOTALL)
_PLAIN_QUOTED = re.compile(r"^'(?:[^']|'')*'$", re.DOTALL)
_ARRAY_DIMS = re.compile(r"(\[\d*\])+$")
_PLAIN_ARRAY_ITEM = re.compile(r"^[a-zA-Z0-9./_':-]+$")
_FUNCTION_CALL = re.compile(r"^[\w.\"]+\s*\(.*\)$", re.DOTALL)

_HASH_DICTIONARY = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

_ON_TYPES: Dict[str, FkAction] = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "n": "SET NULL",
    "c": "CASCADE",
    "d": "SET DEFAULT",
}


def trim_char(value: str, char: str) -> str:
    start, end = 0, len(value)
    while start < end and value[start] == char:
        start += 1
    while end > start and value[end - 1] == char:
        end -= 1
    return value[start:end]


# --- types ---------------------------------------------------------------


def split_sql_type(sql_type: str) -> Tuple[str, Optional[str]]:
    """Split ``timestamp(6) with time zone`` into ``("timestamp with time zone", "6")``."""
    sql_type = sql_type.replace("[]", "")
    match = _TYPE_WITH_OPTIONS.match(sql_type)
    if not match:
        return sql_type, None
    base = match.group(1) + (match.group(3) or "")
    options = match.group(2).replace(", ", ",")
    if options and base.lower() == "numeric":
        # numeric(4,0) is stored as numeric(4)
        options = options.replace(",0", "")
    return base, options


def unwrap_array_type(sql_type: str) -> Tuple[str, int]:
    """Strip trailing ``[]`` groups and count them."""
    match = _ARRAY_DIMS.search(sql_type)
    if not match:
        return sql_type, 0
    return sql_type[: match.start()], match.group(0).count("[")


def canonicalize_declared_type(sql_type: str) -> str:
    value = sql_type.replace("timestamp (", "timestamp(")
    if value.startswith("numeric("):
        value = value.replace(", ", ",")
    return value


def canonicalize_catalog_type(sql_type: str) -> Tuple[str, int]:
    base, dims = unwrap_array_type(sql_type)
    if base.startswith("numeric("):
        # same spelling as canonicalize_declared_type
        base = re.sub(r",\s*", ",", base)
    base = base.replace("character varying", "varchar")
    base = base.replace(" without time zone", "")
    if base.startswith("character"):
        base = "char" + base[len("character"):]
    return base.replace('"', ""), dims


def numeric_scale(options: Optional[str]) -> Optional[int]:
    if not options:
        return None
    if "," in options:
        return int(options.split(",", 1)[1])
    return 0


# --- defaults ------------------------------------------------------------


def trim_default_value_suffix(value: str) -> str:
    """Drop trailing ``[]`` and ``::type`` casts, e.g. ``'a'::text::varchar(8)`` -> ``'a'``."""
    res = value[:-2] if value.endswith("[]") else value
    return _CAST_SUFFIX.sub("", res, count=1)


def escape_single_quotes(value: str) -> str:
    return value.replace("'", "''")


def _unescape_literal(value: str) -> str:
    # e'text\'text' -> 'text''text'
    if value.startswith(("e'", "E'")):
        value = "'" + value[2:]
        value = value.replace("\\'", "''").replace('\\"', '"')
    return value


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _json_array_string(items: List[Any]) -> str:
    parts = []
    for item in items:
        if item is None:
            parts.append("NULL")
        elif isinstance(item, list):
            parts.append(_json_array_string(item))
        else:
            text = _compact_json(json.loads(item)).replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'"{text}"')
    return "{" + ",".join(parts) + "}"


def _number_default(text: str) -> ColumnDefault:
    number = float(text)
    big = number > MAX_SAFE_INTEGER or number < -MAX_SAFE_INTEGER
    return ColumnDefault(kind="bigint" if big else "number", value=text)


def default_for_column(sql_type: str, raw: Any, dimensions: int = 0) -> Optional[ColumnDefault]:
    """Classify a catalog-supplied default expression."""
    if raw is None:
        return None
    type_lowered = sql_type.lower()

    if type_lowered.startswith("bit"):
        raw = str(raw).replace("B'", "'")
    if isinstance(raw, bool):
        return ColumnDefault(kind="boolean", value="true" if raw else "false")
    if isinstance(raw, (int, float)):
        return ColumnDefault(kind="number", value=format_number(raw))

    value = trim_default_value_suffix(str(raw))
    if type_lowered == "numeric" or type_lowered.startswith("numeric("):
        value = trim_char(value, "'")
    if dimensions > 0:
        value = trim_char(value, "'")

    if type_lowered in ("json", "jsonb"):
        if dimensions > 0 and value.startswith("{"):
            return ColumnDefault(kind="json", value=_json_array_string(parse_array_literal(value)))
        unescaped = _unescape_literal(value)
        if _QUOTED.match(unescaped):
            body = unescaped[1:-1].replace("''", "'")
            return ColumnDefault(kind="json", value=_compact_json(json.loads(body)))

    if dimensions > 0 and value.startswith("{") and value.endswith("}"):
        return ColumnDefault(kind="string", value=value)

    unescaped = _unescape_literal(value)
    if _QUOTED.match(unescaped):
        body = unescaped[1:-1]
        # catalogs quote negative and out-of-range numbers: '-1'::integer, '9007199254740993'::bigint
        if type_lowered.split("(")[0] in NUMERIC_TYPES and _NUMBER.match(body):
            return _number_default(body)
        return ColumnDefault(kind="string", value=body)

    if value in ("true", "false"):
        return ColumnDefault(kind="boolean", value=value)
    if value.upper() == "NULL":
        return ColumnDefault(kind="null", value="NULL")
    if _NUMBER.match(value) and not type_lowered.startswith("bit"):
        return _number_default(value)

    if _FUNCTION_CALL.match(value):
        return ColumnDefault(kind="function", value=value)
    return ColumnDefault(kind="unknown", value=value)


def classify_expression_default(sql: str) -> ColumnDefault:
    """Classify a rendered SQL default: quoted text, a function call, or anything else."""
    value = trim_default_value_suffix(sql)
    if _PLAIN_QUOTED.match(value):
        return ColumnDefault(kind="string", value=value[1:-1])
    if _FUNCTION_CALL.match(value):
        return ColumnDefault(kind="function", value=value)
    return ColumnDefault(kind="unknown", value=value)


def default_to_sql(
    default: Optional[ColumnDefault],
    sql_type: str,
    dimensions: int = 0,
    type_schema: Optional[str] = None,
    default_schema: str = "public",
) -> str:
    """Render a classified default back to SQL text."""
    if default is None:
        return ""
    kind, value = default.kind, default.value
    array_suffix = "[]" if dimensions > 0 else ""

    if type_schema:
        prefix = f'"{type_schema}".' if type_schema != default_schema else ""
        return f"'{value}'::{prefix}\"{sql_type}\"{array_suffix}"

    suffix = f"::{sql_type}{array_suffix}" if array_suffix else ""
    if kind == "string":
        return f"'{value}'{suffix}"
    if kind == "json":
        return f"'{escape_single_quotes(value)}'{suffix}"
    if kind == "bigint":
        return f"'{value}'"
    if kind in ("boolean", "null", "number", "function", "unknown"):
        return value
    assert_unreachable(kind, "default kind")


def format_number(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def fix_numeric(value: str, scale: Optional[int]) -> str:
    """Pad or cut the fractional part to the column scale."""
    integer_part, _, decimal_part = value.partition(".")
    if scale is None or not decimal_part:
        return value
    if scale == 0:
        return integer_part
    if scale == len(decimal_part):
        return value
    fixed = decimal_part.ljust(scale, "0") if scale > len(decimal_part) else decimal_part[:scale]
    return f"{integer_part}.{fixed}"


def _flatten(items: Iterable[Any]) -> List[Any]:
    out: List[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)) and not _is_geometric_value(item):
            out.extend(_flatten(item))
        else:
            out.append(item)
    return out


def _is_geometric_value(item: Any) -> bool:
    return isinstance(item, tuple) and all(isinstance(x, (int, float)) for x in item)


def _format_temporal(value: dt.date, sql_type: str) -> str:
    if isinstance(value, dt.datetime):
        if sql_type == "date":
            return value.date().isoformat()
        if sql_type.startswith("timestamp") and "with time zone" not in sql_type:
            return value.replace(tzinfo=None).isoformat(sep=" ", timespec="milliseconds")
        return value.isoformat(sep=" ", timespec="milliseconds")
    return value.isoformat()


def _array_item(value: Any, sql_type: str, scale: Optional[int], srid: Optional[int]) -> str:
    if value is None:
        return "NULL"
    if sql_type.startswith("numeric"):
        return fix_numeric(format_number(value), scale)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return format_number(value)
    if isinstance(value, list):
        return build_array_string(value, sql_type, scale, srid)
    if sql_type.startswith("point"):
        return f'"{format_point(value)}"'
    if sql_type.startswith("line"):
        return f'"{format_line(value)}"'
    if sql_type.startswith("geometry"):
        return f'"{format_geometry_point(value, srid)}"'
    if isinstance(value, (dt.date, dt.datetime)):
        return f'"{_format_temporal(value, sql_type)}"'
    if isinstance(value, dict):
        return '"' + _compact_json(value).replace('"', '\\"') + '"'
    if isinstance(value, str):
        if _PLAIN_ARRAY_ITEM.match(value):
            return value.replace("'", "''")
        return '"' + value.replace("'", "''").replace('"', '\\"') + '"'
    return f'"{value}"'


def build_array_string(
    values: Sequence[Any], sql_type: str, scale: Optional[int] = None, srid: Optional[int] = None
) -> str:
    """Serialize a (nested) list default into a ``{...}`` array literal."""
    if not _flatten(values):
        return "{}"
    return "{" + ",".join(_array_item(v, sql_type, scale, srid) for v in values) + "}"


def _xy(value: Any) -> Tuple[Any, Any]:
    if isinstance(value, Mapping):
        return value["x"], value["y"]
    x, y = value
    return x, y


def format_point(value: Any) -> str:
    x, y = _xy(value)
    return f"({format_number(x)},{format_number(y)})"


def format_line(value: Any) -> str:
    if isinstance(value, Mapping):
        a, b, c = value["a"], value["b"], value["c"]
    else:
        a, b, c = value
    return "{" + ",".join(format_number(v) for v in (a, b, c)) + "}"


def format_geometry_point(value: Any, srid: Optional[int] = None) -> str:
    x, y = _xy(value)
    point = f"POINT({format_number(x)} {format_number(y)})"
    return f"SRID={srid};{point}" if srid else point


def serialize_literal_default(
    value: Any, sql_type: str, dimensions: int = 0, options: Optional[str] = None, srid: Optional[int] = None
) -> ColumnDefault:
    """Build the default for a literal (non-SQL) declared value."""
    base = sql_type.lower()
    scale = numeric_scale(options) if base.startswith("numeric") else None

    if dimensions > 0 and isinstance(value, (list, tuple)) and not _is_geometric_value(value):
        kind = "json" if base in ("json", "jsonb") else "string"
        return ColumnDefault(kind=kind, value=build_array_string(list(value), base, scale, srid))

    if base in ("json", "jsonb"):
        return ColumnDefault(kind="json", value=_compact_json(value))
    if base.startswith("numeric"):
        kind = "number" if isinstance(value, (int, float)) and not isinstance(value, bool) else "string"
        return ColumnDefault(kind=kind, value=fix_numeric(format_number(value), scale))
    if base.startswith("point"):
        return ColumnDefault(kind="string", value=format_point(value))
    if base.startswith("line"):
        return ColumnDefault(kind="string", value=format_line(value))
    if base.startswith("geometry"):
        return ColumnDefault(kind="string", value=format_geometry_point(value, srid))
    if isinstance(value, str):
        return ColumnDefault(kind="string", value=escape_single_quotes(value))
    if isinstance(value, bool):
        return ColumnDefault(kind="boolean", value="true" if value else "false")
    if isinstance(value, int):
        kind = "bigint" if abs(value) > MAX_SAFE_INTEGER else "number"
        return ColumnDefault(kind=kind, value=str(value))
    if isinstance(value, (float, Decimal)):
        return ColumnDefault(kind="number", value=format_number(value))
    if isinstance(value, (dt.date, dt.datetime)):
        return ColumnDefault(kind="string", value=_format_temporal(value, base))
    return ColumnDefault(kind="string", value=str(value))


# --- names ---------------------------------------------------------------


def hash_identifier(value: str, length: int = 12) -> str:
    """Deterministic alphanumeric hash used to shorten generated identifiers."""
    dict_len = len(_HASH_DICTIONARY)
    combinations = dict_len**length
    p = 53
    acc = 0
    for i, ch in enumerate(value):
        acc += (ord(ch) * p**i) % combinations
    out = []
    for _ in range(length):
        out.append(_HASH_DICTIONARY[acc % dict_len])
        acc //= dict_len
    return "".join(out)


def default_name_for_pk(table: str) -> str:
    return f"{table}_pkey"


def default_name_for_unique(table: str, *columns: str) -> str:
    return f"{table}_{'_'.join(columns)}_key"


def default_name_for_index(table: str, columns: Sequence[str]) -> str:
    return f"{table}_{'_'.join(columns)}_idx"


def index_name(table: str, columns: Sequence[str]) -> str:
    return f"{table}_{'_'.join(columns)}_index"


def default_name_for_identity_sequence(table: str, column: str) -> str:
    return f"{table}_{column}_seq"


def default_name_for_fk(
    table: str,
    columns: Sequence[str],
    table_to: str,
    columns_to: Sequence[str],
    max_length: int = 63,
) -> str:
    desired = f"{table}_{'_'.join(columns)}_{table_to}_{'_'.join(columns_to)}_fkey"
    # identifier limits are in bytes
    if len(desired.encode()) <= max_length:
        return desired
    # _{hash(12)}_fkey takes 18 bytes
    if len(table.encode()) < max_length - 18:
        return f"{table}_{hash_identifier(desired)}_fkey"
    return f"{hash_identifier(desired)}_fkey"


# --- expressions ---------------------------------------------------------


def split_expressions(text: Optional[str]) -> List[str]:
    """Split a comma separated expression list, honouring quotes and parentheses."""
    if not text:
        return []
    out: List[str] = []
    depth = 0
    in_single = False
    in_double = False
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""
        if ch in ("'", '"') and nxt == ch:
            i += 2
            continue
        if ch == "'":
            if not in_double:
                in_single = not in_single
        elif ch == '"':
            if not in_single:
                in_double = not in_double
        elif not in_single and not in_double:
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth = max(0, depth - 1)
            elif ch == "," and depth == 0:
                out.append(text[start:i].strip())
                start = i + 1
        i += 1
    if start < n:
        out.append(text[start:].strip())
    return [piece for piece in out if piece]


# --- identity / sequences ------------------------------------------------


def option_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return format_number(value)


def _is_negative(value: str) -> bool:
    try:
        return Decimal(value) < 0
    except InvalidOperation:
        return False


def identity_bounds(sql_type: str, defaults: Optional[Defaults] = None) -> Tuple[str, str]:
    return (defaults or Defaults()).identity_range(sql_type)


def resolve_sequence_options(
    options: Mapping[str, Any],
    bounds: Tuple[str, str],
    increment_default: str = "1",
    cache_default: str = "1",
) -> Dict[str, str]:
    """Fill increment/min/max/start/cache; the sign of increment picks the bounds."""
    lower, upper = bounds
    increment = option_text(options.get("increment")) or increment_default
    descending = _is_negative(increment)
    min_value = option_text(options.get("min_value")) or (lower if descending else "1")
    max_value = option_text(options.get("max_value")) or ("-1" if descending else upper)
    start_with = option_text(options.get("start_with")) or (max_value if descending else min_value)
    cache = option_text(options.get("cache")) or cache_default
    return {
        "increment": increment,
        "min_value": min_value,
        "max_value": max_value,
        "start_with": start_with,
        "cache": cache,
    }


# --- catalog helpers -----------------------------------------------------


def parse_on_type(code: str) -> FkAction:
    try:
        return _ON_TYPES[code]
    except KeyError:
        assert_unreachable(code, "foreign key action")


def parse_fk_action(action: Optional[str]) -> FkAction:
    if not action:
        return "NO ACTION"
    normalized = action.strip().upper()
    if normalized in _ON_TYPES.values():
        return normalized  # type: ignore[return-value]
    assert_unreachable(action, "foreign key action")


def is_system_namespace(name: str) -> bool:
    return (
        name.startswith("pg_toast")
        or name == "pg_default"
        or name == "pg_global"
        or name.startswith("pg_temp_")
        or name == "information_schema"
        or name.startswith("pg_catalog")
    )


def is_serial_expression(expr: Optional[str], schema: str, default_schema: str = "public") -> bool:
    """Loose check for ``nextval('<schema>.<anything>_seq'...)``.

    Only prefix and suffix are compared: the sequence keeps its original name when the table or
    column is renamed later.
    """
    if not expr:
        return False
    prefix = "" if schema == default_schema else f"{schema}."
    starts = (
        expr.startswith(f"nextval('{prefix}")
        or expr.startswith(f"nextval('\"{prefix}")
        or (bool(prefix) and expr.startswith(f"nextval('\"{schema}\"."))
    )
    ends = expr.endswith(("_seq'::regclass)", "_seq\"'::regclass)", "_seq')", "_seq\"')"))
    return starts and ends


def parse_check_definition(value: str) -> str:
    return re.sub(r"\)\)\s*$", "", re.sub(r"^CHECK\s*\(\(", "", value))


def wrap_option_value(value: str) -> Any:
    """Parse a storage option value: booleans, numbers, otherwise the raw text."""
    if value in ("true", "false"):
        return value == "true"
    if _NUMBER.match(value):
        number = float(value)
        return int(number) if number.is_integer() else number
    return value


def parse_view_definition(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return re.sub(r"\s+", " ", value).replace(";", "", 1).strip()


class OptionsRecord:
    """Typed accessors over a ``key=value`` storage-option bag."""

    def __init__(self, values: Mapping[str, str]):
        self.values = dict(values)

    @classmethod
    def from_reloptions(cls, options: Optional[Iterable[str]]) -> "OptionsRecord":
        values: Dict[str, str] = {}
        for item in options or []:
            key, _, value = item.partition("=")
            values[key] = value
        return cls(values)

    def bool(self, key: str) -> Optional[bool]:
        if key not in self.values:
            return None
        raw = self.values[key]
        if raw == "true":
            return True
        if raw == "false":
            return False
        raise ValueError(f"Invalid options boolean value for {key}: {raw}")

    def num(self, key: str) -> Optional[float]:
        if key not in self.values:
            return None
        try:
            value = float(self.values[key])
        except ValueError:
            raise ValueError(f"Invalid options number value for {key}: {self.values[key]}") from None
        return int(value) if value.is_integer() else value

    def text(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def literal(self, key: str, allowed: Sequence[str]) -> Optional[str]:
        if key not in self.values:
            return None
        raw = self.values[key]
        if raw in allowed:
            return raw
        raise ValueError(f"Invalid options literal value for {key}: {raw}")
