"""
Utility functions for working with enums.
"""
from enum import StrEnum
from typing import List, Optional, Tuple, Type, TypeVar

T = TypeVar('T', bound=StrEnum)


def choices(enum_type: Type[StrEnum]) -> List[Tuple[str, str]]:
    """Build Django field choices from a StrEnum."""
    return [(member.value, member.name) for member in enum_type]


def safe_str_enum(val: Optional[str], default: Optional[T], enum_type: Type[T]) -> Optional[T]:
    """
    Convert a loosely formatted string (e.g. a query parameter) to a StrEnum.

    Returns default when val is empty or names no member.

    Example:
        >>> safe_str_enum(" Modify ", None, SessionKind)
        SessionKind.MODIFY
        >>> safe_str_enum("rebuild", None, SessionKind) is None
        True
    """
    if not val:
        return default
    try:
        return enum_type(val.lower().strip())
    except ValueError:
        return default
