"""Request routing across the mount table."""

import logging

from sitehost.bootstrap.config import SECURITY_HEADERS
from sitehost.domain.correlation_id import component_logger
from sitehost.domain.http_types import HttpRequest, HttpResponse
from sitehost.domain.mounts import ContentCategory, MountTable
from sitehost.domain.response_builders import not_found_response, redirect_response
from sitehost.handlers.static_handler import StaticAssetHandler
from sitehost.pipeline.validation import enforce_origin_form

ROUTER_LOGGER = component_logger("pipeline.router")

UNROUTED_HEADERS = {**SECURITY_HEADERS, "Content-Type": ContentCategory.PLAIN.content_type}


class Router:
    """Dispatch requests to one static handler per mount, first match wins."""

    def __init__(self, mount_table: MountTable) -> None:
        self.mount_table = mount_table
        self._handlers = {
            mount.prefix: StaticAssetHandler(mount.directory, mount.category.content_type)
            for mount in mount_table
        }

    def route(self, request: HttpRequest) -> HttpResponse:
        """Route the request to the matching mount and return its response."""
        invalid = enforce_origin_form(request, UNROUTED_HEADERS)
        if invalid is not None:
            ROUTER_LOGGER.warning(
                "Invalid request target",
                extra={"event": "route_invalid", "route": request.path},
            )
            return invalid

        if request.path + "/" in self._handlers:
            return redirect_response(request, request.path + "/", UNROUTED_HEADERS)

        mount = self.mount_table.match(request.path)
        if mount is None:
            ROUTER_LOGGER.info(
                "No matching mount found",
                extra={
                    "event": "route_not_found",
                    "route": request.path,
                    "method": request.method,
                },
            )
            return not_found_response(request, UNROUTED_HEADERS)

        if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ROUTER_LOGGER.debug(
                "Route matched",
                extra={"event": "route_matched", "route": request.path, "mount": mount.prefix},
            )
        return self._handlers[mount.prefix].respond(request, mount.strip(request.path))
