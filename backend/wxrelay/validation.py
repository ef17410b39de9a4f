"""
Shared input validation helpers.
"""

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def is_absolute_url(value: str) -> bool:
    """True for absolute http(s) URLs with a host, e.g. ``https://host/path``."""
    if not value:
        return False
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError:
        return False
    return True
