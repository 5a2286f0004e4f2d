"""Scalar property types.

Every property value crosses three boundaries, and each one has a function here:

* ``to_string`` renders a Python value into the canonical string bound to a statement;
* ``create`` turns a raw value coming back from the driver into a Python value;
* ``sanitize`` validates a raw string received from a client before it is assigned.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Final

from .config import Formats, get_formats
from .errors import ValidationError


BIND_INTEGER: Final[str] = "i"
BIND_DOUBLE: Final[str] = "d"
BIND_STRING: Final[str] = "s"

_EMAIL_RE: Final = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")
_COLOR_RE: Final = re.compile(r"^[0-9A-F]{6}$")
_INT_RE: Final = re.compile(r"^[+-]?\d+$")


class PropertyType(str, Enum):
    INT = "int"
    FLOAT = "float"
    TEXT = "text"
    BOOL = "bool"
    ENUM = "enum"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    EMAIL = "email"
    COLOR = "color"

    @property
    def bind_type(self) -> str:
        """One-character tag used in prepared statement parameters."""
        if self in (PropertyType.INT, PropertyType.BOOL, PropertyType.ENUM):
            return BIND_INTEGER
        if self is PropertyType.FLOAT:
            return BIND_DOUBLE
        return BIND_STRING

    @property
    def is_ordered(self) -> bool:
        return self in (
            PropertyType.INT,
            PropertyType.FLOAT,
            PropertyType.DATE,
            PropertyType.TIME,
            PropertyType.DATETIME,
        )

    @property
    def is_textual(self) -> bool:
        return self in (PropertyType.TEXT, PropertyType.EMAIL)


def to_string(value: Any, property_type: PropertyType, formats: Formats | None = None) -> str:
    """Render ``value`` in its canonical string form.

    Args:
        value: Non-null Python value of the property.
        property_type: Type of the property.
        formats: Date and time formats, the active ones by default.

    Returns:
        The string that is bound to the statement.

    Raises:
        ValidationError: If the value cannot represent ``property_type``.
    """
    formats = formats or get_formats()

    try:
        if property_type is PropertyType.INT:
            return str(int(value))
        if property_type is PropertyType.FLOAT:
            return repr(float(value))
        if property_type is PropertyType.BOOL:
            return "1" if value else "0"
        if property_type is PropertyType.ENUM:
            return str(int(value.value if isinstance(value, Enum) else value))
        if property_type is PropertyType.COLOR:
            return str(value).upper()
        if property_type is PropertyType.DATE:
            if isinstance(value, date):
                return value.strftime(formats.date)
            return str(value)
        if property_type is PropertyType.TIME:
            if isinstance(value, timedelta):
                value = (datetime.min + value).time()
            if isinstance(value, (time, datetime)):
                return value.strftime(formats.time)
            return str(value)
        if property_type is PropertyType.DATETIME:
            if isinstance(value, datetime):
                return value.strftime(formats.datetime)
            if isinstance(value, date):
                return datetime.combine(value, time()).strftime(formats.datetime)
            return str(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Value {value!r} is not a valid {property_type.value}") from exc

    return str(value)


def create(
    raw: Any,
    property_type: PropertyType,
    *,
    enum: type[Enum] | None = None,
    formats: Formats | None = None,
) -> Any:
    """Convert a raw driver value into the Python value of a property.

    Drivers differ in what they hand back (MySQL returns ``timedelta`` for TIME
    columns, SQLite returns strings for all temporal types), so every form is
    accepted.

    Args:
        raw: Value as returned by the driver, or ``None``.
        property_type: Type of the property.
        enum: Enum class to wrap ENUM values in. Plain ints are returned without it.
        formats: Date and time formats, the active ones by default.

    Returns:
        The converted value, or ``None`` for ``None``.
    """
    if raw is None:
        return None

    formats = formats or get_formats()

    if property_type is PropertyType.INT:
        return int(raw)
    if property_type is PropertyType.FLOAT:
        return float(raw)
    if property_type is PropertyType.BOOL:
        return bool(int(raw))
    if property_type is PropertyType.ENUM:
        if isinstance(raw, Enum):
            raw = raw.value
        return enum(int(raw)) if enum is not None else int(raw)
    if property_type is PropertyType.DATE:
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw
        return datetime.strptime(str(raw), formats.date).date()
    if property_type is PropertyType.TIME:
        if isinstance(raw, timedelta):
            return (datetime.min + raw).time()
        if isinstance(raw, datetime):
            return raw.time()
        if isinstance(raw, time):
            return raw
        return datetime.strptime(str(raw), formats.time).time()
    if property_type is PropertyType.DATETIME:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, date):
            return datetime.combine(raw, time())
        return datetime.strptime(str(raw), formats.datetime)

    return str(raw)


def sanitize(
    value: Any,
    property_type: PropertyType,
    *,
    enum: type[Enum] | None = None,
    formats: Formats | None = None,
) -> Any:
    """Validate a raw client value and convert it into the Python value of a property.

    Non-string values are only converted.

    Raises:
        ValidationError: If the value is not acceptable for ``property_type``.
    """
    if not isinstance(value, str):
        return create(value, property_type, enum=enum, formats=formats)

    if property_type is PropertyType.TEXT:
        return value
    if property_type in (PropertyType.INT, PropertyType.ENUM):
        if not _INT_RE.match(value.strip()):
            raise ValidationError(f"Int filter failed for {value!r}")
        return create(int(value), property_type, enum=enum)
    if property_type is PropertyType.FLOAT:
        try:
            return float(value.replace(",", "."))
        except ValueError as exc:
            raise ValidationError(f"Float filter failed for {value!r}") from exc
    if property_type is PropertyType.BOOL:
        if value.strip() not in ("0", "1"):
            raise ValidationError(f"Bool filter failed for {value!r}")
        return value.strip() == "1"
    if property_type is PropertyType.EMAIL:
        if value and not _EMAIL_RE.match(value):
            raise ValidationError(f"Email filter failed for {value!r}")
        return value
    if property_type is PropertyType.COLOR:
        upper = value.upper()
        if not _COLOR_RE.match(upper):
            raise ValidationError(f"Value {value!r} is not a valid color")
        return upper

    if property_type is PropertyType.DATE:
        value = value[:10]
    try:
        return create(value, property_type, enum=enum, formats=formats)
    except ValueError as exc:
        raise ValidationError(f"Value {value!r} is not a valid {property_type.value}") from exc
