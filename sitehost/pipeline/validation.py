"""Request validation utilities."""

from typing import Optional

from sitehost.domain.http_types import HttpRequest, HttpResponse
from sitehost.domain.response_builders import bad_request_response


class RequestHeaderTooLarge(Exception):
    """Raised when a request head exceeds the configured limit."""


def enforce_origin_form(
    request: HttpRequest, security_headers: dict[str, str]
) -> Optional[HttpResponse]:
    """Reject request targets that are not absolute paths."""
    if not request.path.startswith("/") or "\x00" in request.path:
        return bad_request_response(security_headers)
    return None
