"""Read boolean CI settings.

Travis and most other CI services export every setting as a string, so the
flags the dispatcher gates on arrive as ``"true"``, ``"1"``, a pull-request
number, or nothing at all.
"""

from __future__ import annotations

__all__ = ["coerce_bool", "is_pull_request"]

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


def coerce_bool(value: object, *, default: bool) -> bool:
    """Interpret ``value`` as a flag; ``None`` and blank strings give ``default``.

    Raises
    ------
    ValueError
        For strings outside the recognised spellings and for other types.

    Examples
    --------
    >>> coerce_bool("Yes", default=False)
    True
    >>> coerce_bool(" ", default=True)
    True
    """
    if value is None or isinstance(value, bool):
        return default if value is None else value
    text = value.strip().lower() if isinstance(value, str) else None
    if text == "":
        return default
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    msg = f"Cannot interpret {value!r} as boolean"
    raise ValueError(msg)


def is_pull_request(value: str | None) -> bool:
    """Return whether ``TRAVIS_PULL_REQUEST`` marks a pull-request build.

    Travis exports the pull request number, or ``"false"`` for branch and
    tag builds. Any other spelling raises :class:`ValueError`.

    Examples
    --------
    >>> is_pull_request("false")
    False
    >>> is_pull_request("418")
    True
    """
    if value is None:
        return False
    number = value.strip()
    if number.isdigit():
        return int(number) != 0
    return coerce_bool(number, default=False)
