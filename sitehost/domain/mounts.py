"""Mount table mapping URL prefixes to asset directories."""

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional


class ContentCategory(enum.Enum):
    """Content category of a mount and the Content-Type it always emits."""

    HTML = "text/html; charset=utf-8"
    CSS = "text/css; charset=utf-8"
    JAVASCRIPT = "application/javascript"
    JSON = "application/json"
    SVG = "image/svg+xml"
    PNG = "image/png"
    PLAIN = "text/plain; charset=utf-8"

    @property
    def content_type(self) -> str:
        return self.value


class MountOrderError(ValueError):
    """Raised when a mount could never match because an earlier one shadows it."""


@dataclass(frozen=True)
class Mount:
    """A path prefix bound to a directory root and a content category."""

    prefix: str
    directory: Path
    category: ContentCategory

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def strip(self, path: str) -> str:
        return path[len(self.prefix) :]


class MountTable:
    """Ordered mounts where the first registered matching prefix wins."""

    def __init__(self) -> None:
        self._mounts: list[Mount] = []

    def register(
        self, prefix: str, directory: "str | Path", category: ContentCategory
    ) -> "MountTable":
        """Append a mount, rejecting prefixes that an earlier mount shadows."""
        if not prefix.startswith("/") or not prefix.endswith("/"):
            raise ValueError(f"mount prefix must start and end with '/': {prefix!r}")
        for existing in self._mounts:
            if prefix.startswith(existing.prefix):
                raise MountOrderError(
                    f"mount {prefix!r} is shadowed by earlier mount {existing.prefix!r}"
                )
        self._mounts.append(Mount(prefix, Path(directory), category))
        return self

    def match(self, path: str) -> Optional[Mount]:
        """Return the first mount whose prefix matches the request path."""
        for mount in self._mounts:
            if mount.matches(path):
                return mount
        return None

    def __iter__(self) -> Iterator[Mount]:
        return iter(self._mounts)

    def __len__(self) -> int:
        return len(self._mounts)


def default_mount_table(files_root: "str | Path") -> MountTable:
    """Build the site layout: vendored libraries, stylesheets, scripts, pages."""
    root = Path(files_root)
    return (
        MountTable()
        .register("/vendor/jquery/", root / "vendor" / "jquery", ContentCategory.JAVASCRIPT)
        .register("/vendor/", root / "vendor", ContentCategory.CSS)
        .register("/css/", root / "css", ContentCategory.CSS)
        .register("/js/", root / "js", ContentCategory.JAVASCRIPT)
        .register("/img/", root / "img", ContentCategory.PNG)
        .register("/", root, ContentCategory.HTML)
    )
