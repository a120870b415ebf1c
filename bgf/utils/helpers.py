"""Shared blueprint input helpers.

Blueprints reject malformed bodies with HTTP 400 before calling a service.
Each parser returns ``(value, None)`` on success or ``(None, error_response)``:

    officer_id, err = require_int(data, "officer_id")
    if err:
        return err
"""

from bgf.utils.errors import E, api_error


def require_int(data: dict, field: str):
    """Fetch a required positive integer id from a JSON body."""
    value = data.get(field)
    if value is None or value == "":
        return None, api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    if isinstance(value, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer")
    try:
        value = int(value)
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer")
    if value <= 0:
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be positive")
    return value, None


def require_bool(data: dict, field: str):
    """Fetch a required JSON boolean. Strings like "true" are rejected."""
    value = data.get(field)
    if value is None:
        return None, api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    if not isinstance(value, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be a boolean")
    return value, None


def optional_text(data: dict, field: str, max_len: int = 10_000):
    """Fetch an optional free-text field, stripped. Empty becomes None."""
    value = data.get(field)
    if value is None:
        return None, None
    if not isinstance(value, str):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be a string")
    value = value.strip()
    if len(value) > max_len:
        return None, api_error(E.VALIDATION_INVALID, f"{field} exceeds {max_len} characters")
    return (value or None), None
