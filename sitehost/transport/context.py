"""Context object shared across worker threads."""

import ssl
from dataclasses import dataclass
from typing import Optional

from sitehost.bootstrap.config import Configuration
from sitehost.lifecycle.state import ServerLifecycle
from sitehost.pipeline.router import Router


@dataclass
class WorkerContext:
    """Read-only dependencies shared across handler threads."""

    router: Router
    config: Configuration
    lifecycle: Optional[ServerLifecycle] = None
    tls_context: Optional[ssl.SSLContext] = None
