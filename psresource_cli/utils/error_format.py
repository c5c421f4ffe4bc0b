"""Safe error message formatting utilities.

Ensures exceptions always have useful display messages, even when
their str() representation is empty (e.g., TimeoutError).
"""

from __future__ import annotations

from rich.markup import escape as _escape_markup

from ..errors import PSResourceError

# Friendly messages for exception types known to have an empty str()
FRIENDLY_MESSAGES: dict[type, str] = {
    TimeoutError: "Request timed out. The repository may be slow or unreachable.",
    ConnectionResetError: "Connection was reset by the server.",
    BrokenPipeError: "Connection was closed unexpectedly.",
    KeyboardInterrupt: "Operation interrupted by user.",
}


def format_error_message(e: BaseException, *, include_type: bool = True) -> str:
    """Format an exception into a useful display message.

    Package-management errors carry complete messages and are shown
    without their type name.

    Args:
        e: The exception to format
        include_type: Whether to include the exception type name

    Returns:
        A non-empty, user-friendly error message

    Examples:
        >>> format_error_message(ValueError("invalid input"))
        'ValueError: invalid input'

        >>> format_error_message(PackageNotFoundError("Package 'Foo' not found"))
        "Package 'Foo' not found"
    """
    error_str = str(e)
    error_type = type(e).__name__

    if error_str:
        if include_type and not isinstance(e, PSResourceError) and error_type not in error_str:
            return f"{error_type}: {error_str}"
        return error_str

    for exc_type, friendly_msg in FRIENDLY_MESSAGES.items():
        if isinstance(e, exc_type):
            return f"{error_type}: {friendly_msg}"

    return f"{error_type}: (no additional details)"


def escape_markup(value: object) -> str:
    """Escape a value for safe interpolation into Rich markup strings.

    Prevents Rich from interpreting brackets in version ranges, file
    paths, or exception messages as markup tags.
    """
    return _escape_markup(str(value))
