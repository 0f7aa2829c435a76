"""Resolve the user attributes that are bound into a login link signature.

Properties are compiled into extractor callables once, when the signature
hasher is configured. A property is either a dotted path (``"email"``,
``"profile.last_login"``) or an explicit ``(name, callable)`` pair.
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

Extractor = Callable[[Any], Any]
PropertySpec = str | tuple[str, Extractor]


def compile_extractor(path: str) -> Extractor:
    """Compile a dotted property path into a function reading it from an object.

    Each segment is read as an attribute, or as a key when the current value is
    a mapping. A missing segment raises ``AttributeError``.
    """
    segments = tuple(path.split("."))
    if not path or any(not s for s in segments):
        raise ValueError(f"Invalid property path: {path!r}")

    def extract(obj: Any) -> Any:
        value = obj
        for segment in segments:
            if isinstance(value, Mapping):
                try:
                    value = value[segment]
                except KeyError:
                    raise AttributeError(
                        f"Property path {path!r} is not readable on {type(obj).__name__}"
                    ) from None
            else:
                try:
                    value = getattr(value, segment)
                except AttributeError:
                    raise AttributeError(
                        f"Property path {path!r} is not readable on {type(obj).__name__}"
                    ) from None
        return value

    extract.__name__ = f"extract_{path.replace('.', '_')}"
    return extract


def build_extractors(properties: Iterable[PropertySpec]) -> list[tuple[str, Extractor]]:
    """Build the ordered ``(name, extractor)`` list for the configured properties."""
    extractors: list[tuple[str, Extractor]] = []
    for spec in properties:
        if isinstance(spec, str):
            extractors.append((spec, compile_extractor(spec)))
        else:
            name, func = spec
            if not callable(func):
                raise TypeError(f"Extractor for property {name!r} is not callable")
            extractors.append((name, func))
    return extractors


def serialize_value(value: Any, name: str) -> str:
    """Serialize a property value to the string that is signed.

    Datetimes are normalised to UTC so the same instant always signs the same way.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat(timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str | int | float | Decimal):
        return str(value)
    raise TypeError(
        f"The property {name!r} must return a value that can be cast to a string, "
        f"but {type(value).__name__!r} was returned"
    )


def extract_fields(user: Any, extractors: Iterable[tuple[str, Extractor]]) -> list[str]:
    """Resolve and serialize every configured property of ``user``, in order."""
    return [serialize_value(func(user), name) for name, func in extractors]
