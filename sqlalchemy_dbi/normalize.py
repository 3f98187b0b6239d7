"""Convert driver-specific column values into portable scalars.

DBAPI drivers hand back whatever their native representation is; bytes
for binary or undecoded text columns, ``datetime`` objects for temporal
columns, ``Decimal`` for NUMERIC.   The host's metric encoders only
carry plain strings and numbers, so everything passes through
:func:`normalize` on its way out.

"""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import Any

_temporal_types = (datetime.datetime, datetime.date, datetime.time)


def normalize(value: Any) -> Any:
    """Return a str, int, float, bool or None for the given column value.

    Never raises; values of unknown type are returned unchanged.

    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    elif isinstance(value, _temporal_types):
        return value.isoformat()
    elif isinstance(value, datetime.timedelta):
        return str(value)
    elif isinstance(value, decimal.Decimal):
        try:
            return float(value)
        except ValueError:
            # signaling NaN
            return str(value)
    elif isinstance(value, uuid.UUID):
        return str(value)
    else:
        return value


def to_string(value: Any) -> str:
    """Render a column value as a namespace element."""

    value = normalize(value)
    if value is None:
        return ""
    return str(value)
