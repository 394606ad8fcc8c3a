"""Listening socket creation and the production TLS policy."""

import socket
import ssl
from pathlib import Path
from typing import Sequence

from sitehost.domain.correlation_id import component_logger

SOCKET_LOGGER = component_logger("socket")

ACCEPT_POLL_SECONDS = 0.5

# Forward-secret TLS 1.2 suites only: ECDHE key exchange with AEAD ciphers.
TLS12_CIPHERS = (
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
)
# OpenSSL always enables these for TLS 1.3; all use ephemeral key exchange.
TLS13_CIPHERSUITES = (
    "TLS_AES_256_GCM_SHA384",
    "TLS_CHACHA20_POLY1305_SHA256",
    "TLS_AES_128_GCM_SHA256",
)
TLS_GROUPS = ("X25519", "prime256v1")
# Single-group fallback where SSLContext.set_groups is missing.
TLS_FALLBACK_GROUP = "prime256v1"


class TLSMaterialError(Exception):
    """Raised when the certificate or key cannot be loaded."""


class ListenError(Exception):
    """Raised when the listening socket cannot be bound."""


def build_tls_context(
    cert_file: str, key_file: str, alpn_protocols: Sequence[str]
) -> ssl.SSLContext:
    """Create the hardened server-side TLS context used in production."""
    if not alpn_protocols:
        raise ValueError("at least one ALPN protocol is required")
    for label, path in (("certificate", cert_file), ("key", key_file)):
        if not path:
            raise TLSMaterialError(f"TLS {label} file is not configured")
        if not Path(path).is_file():
            raise TLSMaterialError(f"TLS {label} file {path} does not exist")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE | ssl.OP_NO_COMPRESSION
    context.set_ciphers(":".join(TLS12_CIPHERS))
    _restrict_groups(context)
    context.set_alpn_protocols(list(alpn_protocols))

    try:
        context.load_cert_chain(cert_file, key_file)
    except (ssl.SSLError, OSError) as error:
        raise TLSMaterialError(f"failed to load TLS certificate chain: {error}") from error
    return context


def _restrict_groups(context: ssl.SSLContext) -> None:
    """Limit key exchange to X25519 and P-256, or to P-256 alone on older Pythons."""
    if hasattr(context, "set_groups"):
        context.set_groups(":".join(TLS_GROUPS))
        return
    context.set_ecdh_curve(TLS_FALLBACK_GROUP)
    SOCKET_LOGGER.info(
        "TLS group list unavailable, key exchange narrowed to %s",
        TLS_FALLBACK_GROUP,
        extra={"event": "tls_groups_narrowed"},
    )


def offered_ciphers(context: ssl.SSLContext) -> list[str]:
    """Return the names of every cipher suite the context will negotiate."""
    return [cipher["name"] for cipher in context.get_ciphers()]


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on ``host:port`` with a short accept poll timeout."""
    try:
        server_socket = socket.create_server((host, port))
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "listen_failed",
                "host": host,
                "port": port,
                "errno": error.errno,
            },
        )
        raise ListenError(f"cannot listen on {host}:{port}: {error}") from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
