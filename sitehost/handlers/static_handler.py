"""Static asset serving for a single mounted directory."""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from sitehost.bootstrap.config import ALLOWED_METHODS, SECURITY_HEADERS
from sitehost.domain.correlation_id import component_logger
from sitehost.domain.http_types import HttpRequest, HttpResponse
from sitehost.domain.response_builders import (
    file_response,
    internal_error_response,
    method_not_allowed_response,
    not_found_response,
    redirect_response,
)
from sitehost.domain.sandbox import ForbiddenPath, confine_to_root

FILE_LOGGER = component_logger("handlers.static")

INDEX_DOCUMENT = "index.html"
CHUNK_SIZE = 65536


class AssetNotFound(Exception):
    """Raised when no servable file exists for a request path."""


class AssetAccessError(Exception):
    """Raised when the filesystem refuses a stat or open for a reason other than absence."""


@dataclass(frozen=True)
class ResolvedAsset:
    """A regular file chosen to answer a request."""

    path: Path
    size: int
    directory_index: bool


class FileStream:
    """Iterate an open file in fixed-size chunks; closing releases the handle."""

    def __init__(self, handle: BinaryIO, chunk_size: int = CHUNK_SIZE) -> None:
        self._handle = handle
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self._handle.read(self._chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        self._handle.close()


def _stat(path: Path) -> Optional[os.stat_result]:
    """Return stat info, ``None`` when the path does not exist."""
    try:
        return path.stat()
    except (FileNotFoundError, NotADirectoryError):
        return None
    except OSError as error:
        raise AssetAccessError(f"cannot stat {path}: {error}") from error


class StaticAssetHandler:
    """Serve files under ``root`` with a fixed Content-Type and security headers.

    Directories answer with their ``index.html`` and are never listed. The
    handler sees paths with the mount prefix already removed.
    """

    def __init__(
        self,
        root: "str | Path",
        content_type: str,
        security_headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.root = Path(root)
        self.content_type = content_type
        self.headers = {
            **(SECURITY_HEADERS if security_headers is None else security_headers),
            "Content-Type": content_type,
        }

    def resolve(self, request_path: str) -> ResolvedAsset:
        """Map a prefix-stripped request path to a regular file under the root."""
        try:
            target = confine_to_root(self.root, request_path)
        except (OSError, RuntimeError) as error:
            raise AssetAccessError(f"cannot resolve {request_path!r}: {error}") from error

        info = _stat(target)
        if info is None:
            raise AssetNotFound(request_path)

        if stat.S_ISDIR(info.st_mode):
            index = target / INDEX_DOCUMENT
            index_info = _stat(index)
            if index_info is None or not stat.S_ISREG(index_info.st_mode):
                raise AssetNotFound(request_path)
            return ResolvedAsset(index, index_info.st_size, True)

        if not stat.S_ISREG(info.st_mode) or request_path.endswith("/"):
            raise AssetNotFound(request_path)
        return ResolvedAsset(target, info.st_size, False)

    def respond(self, request: HttpRequest, request_path: str) -> HttpResponse:
        """Answer ``request`` for ``request_path`` relative to the root."""
        if request.method not in ALLOWED_METHODS:
            FILE_LOGGER.warning(
                "Unsupported method",
                extra={"event": "method_not_allowed", "method": request.method},
            )
            return method_not_allowed_response(request, self.headers, ALLOWED_METHODS)

        try:
            asset = self.resolve(request_path)
        except ForbiddenPath:
            FILE_LOGGER.warning(
                "Path escapes the mount root",
                extra={"event": "forbidden_path", "path": request_path},
            )
            return not_found_response(request, self.headers)
        except AssetNotFound:
            FILE_LOGGER.info(
                "File not found",
                extra={"event": "file_not_found", "path": request_path},
            )
            return not_found_response(request, self.headers)
        except AssetAccessError as error:
            FILE_LOGGER.error(
                "File access failed",
                extra={"event": "file_access_error", "path": request_path, "error": str(error)},
            )
            return internal_error_response(request, self.headers)

        if asset.directory_index and request_path and not request_path.endswith("/"):
            location = request_path.rstrip("/").rsplit("/", 1)[-1] + "/"
            return redirect_response(request, location, self.headers)

        if request.method == "HEAD":
            return file_response(request, (), asset.size, self.headers)

        try:
            handle = open(asset.path, "rb")  # pylint: disable=consider-using-with
        except FileNotFoundError:
            return not_found_response(request, self.headers)
        except OSError as error:
            FILE_LOGGER.error(
                "File open failed",
                extra={"event": "file_access_error", "path": request_path, "error": str(error)},
            )
            return internal_error_response(request, self.headers)

        if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            FILE_LOGGER.debug(
                "File streaming started",
                extra={
                    "event": "file_streaming_started",
                    "path": asset.path.as_posix(),
                    "bytes_out": asset.size,
                },
            )
        return file_response(request, FileStream(handle), asset.size, self.headers)
