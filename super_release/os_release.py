"""Parse ``/etc/os-release`` metadata."""

from __future__ import annotations

import dataclasses as dc
import shlex

OS_RELEASE_PATH = "/etc/os-release"


@dc.dataclass(frozen=True, slots=True)
class OsRelease:
    """The identifying fields of an ``os-release`` file."""

    id: str
    version_id: str
    pretty_name: str = ""

    @property
    def major_version(self) -> str:
        """Return the leading numeric component of :attr:`version_id`."""
        return self.version_id.split(".", 1)[0]


def parse_os_release(text: str) -> OsRelease:
    """Parse the shell-style ``KEY=value`` assignments of ``os-release``.

    Examples
    --------
    >>> parse_os_release('ID=fedora\\nVERSION_ID=28\\n').version_id
    '28'
    >>> parse_os_release('ID="centos"\\nVERSION_ID="7"').major_version
    '7'
    """
    fields: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        fields[key.strip()] = parts[0] if parts else ""
    return OsRelease(
        id=fields.get("ID", ""),
        version_id=fields.get("VERSION_ID", ""),
        pretty_name=fields.get("PRETTY_NAME", ""),
    )
