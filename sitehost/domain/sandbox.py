"""Confinement of request paths to a mount's root directory.

A mount serves one directory (``web/css``, ``web/vendor/jquery``...). Request
paths arrive prefix-stripped and URL-decoded; this module maps them onto the
filesystem and refuses anything whose real location lies outside that
directory, including escapes through symlinks.
"""

from pathlib import Path, PurePosixPath

# Never part of a servable path.
_REJECTED_CHARACTERS = ("\x00", "\\")


class ForbiddenPath(Exception):
    """Raised when a request path would leave the mount root."""


def confine_to_root(root: Path, request_path: str) -> Path:
    """Return the real filesystem path for *request_path* under *root*.

    ``""`` and ``"/"`` map to the root itself, which the static handler turns
    into an index lookup.
    """
    if any(character in request_path for character in _REJECTED_CHARACTERS):
        raise ForbiddenPath(request_path)

    segments = PurePosixPath(request_path.lstrip("/")).parts
    if ".." in segments:
        raise ForbiddenPath(request_path)

    real_root = root.resolve()
    real_target = real_root.joinpath(*segments).resolve()
    if not real_target.is_relative_to(real_root):
        raise ForbiddenPath(request_path)
    return real_target
