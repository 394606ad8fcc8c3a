"""Pure HTTP response builders."""

from typing import Iterable, Optional

from sitehost.domain.http_types import HttpRequest, HttpResponse, should_close


def _closes(request: Optional[HttpRequest]) -> bool:
    return should_close(request) if request is not None else True


def _is_head(request: Optional[HttpRequest]) -> bool:
    return request is not None and request.method == "HEAD"


def file_response(
    request: HttpRequest,
    body_iter: Iterable[bytes],
    size: int,
    headers: dict[str, str],
) -> HttpResponse:
    """Return a 200 OK response streaming ``size`` bytes of file content."""
    return HttpResponse(
        200,
        "OK",
        headers.copy(),
        close_connection=should_close(request),
        body_iter=body_iter,
        body_length=size,
        omit_body=_is_head(request),
    )


def not_found_response(
    request: Optional[HttpRequest], headers: dict[str, str]
) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return HttpResponse(
        404,
        "Not Found",
        headers.copy(),
        b"404 page not found\n",
        _closes(request),
        omit_body=_is_head(request),
    )


def redirect_response(
    request: HttpRequest, location: str, headers: dict[str, str]
) -> HttpResponse:
    """Return a 301 response pointing at ``location``."""
    return HttpResponse(
        301,
        "Moved Permanently",
        {**headers, "Location": location},
        b"",
        should_close(request),
    )


def method_not_allowed_response(
    request: HttpRequest, headers: dict[str, str], allowed_methods: Iterable[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    allow_header = ", ".join(sorted(allowed_methods))
    return HttpResponse(
        405,
        "Method Not Allowed",
        {**headers, "Allow": allow_header},
        b"",
        should_close(request),
    )


def internal_error_response(
    request: Optional[HttpRequest], headers: dict[str, str]
) -> HttpResponse:
    """Produce a 500 response; the connection is always closed afterwards."""
    return HttpResponse(
        500,
        "Internal Server Error",
        headers.copy(),
        b"500 internal server error\n",
        True,
        omit_body=_is_head(request),
    )


def bad_request_response(headers: dict[str, str]) -> HttpResponse:
    """Produce a 400 response for requests that could not be parsed."""
    return HttpResponse(400, "Bad Request", headers.copy(), b"", True)


def header_too_large_response(headers: dict[str, str]) -> HttpResponse:
    """Produce a 431 response that always closes the connection."""
    return HttpResponse(
        431, "Request Header Fields Too Large", headers.copy(), b"", True
    )
