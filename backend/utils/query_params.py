"""Shared request parameter parsing utilities."""

from fastapi import HTTPException

from models.enums import PositionProtocol, is_source_key


def parse_enabled_sources(values: list[str] | None) -> list[str] | None:
    """Validate a requested list of source keys.

    Args:
        values: Source keys from the request body, or None for "all".

    Returns:
        De-duplicated list of source keys in request order, or None if
        input is None.

    Raises:
        HTTPException: 400 if any key is not a known source.
    """
    if values is None:
        return None
    invalid = [v for v in values if not is_source_key(str(v))]
    if invalid:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid sources: {', '.join(str(v) for v in invalid)}",
        )
    return list(dict.fromkeys(values))


def parse_protocol(value: str | None) -> str | None:
    """Validate an optional position protocol filter.

    Raises:
        HTTPException: 400 if the value is not a PositionProtocol.
    """
    if not value:
        return None
    try:
        return PositionProtocol(value).value
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid protocol: {value}")
