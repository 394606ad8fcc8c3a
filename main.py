"""Personal static site host: resolve configuration, serve, shut down on signals."""

import signal
import sys
import threading

from sitehost.bootstrap.config import (
    DEFAULT_SEARCH_PATHS,
    ConfigError,
    parse_cli_args,
    resolve_configuration,
)
from sitehost.bootstrap.logging_setup import configure_logging
from sitehost.bootstrap.socket_factory import ListenError, TLSMaterialError
from sitehost.domain.correlation_id import component_logger
from sitehost.domain.mounts import default_mount_table
from sitehost.lifecycle.manager import LifecycleManager, UnexpectedServeError

SERVER_LOGGER = component_logger("server")


def main() -> None:
    """Start the site host and block until it is shut down."""
    args = parse_cli_args(sys.argv[1:])
    configure_logging("DEBUG", args.log_destination, use_json=args.log_format == "json")

    try:
        config = resolve_configuration([*args.config_dir, *DEFAULT_SEARCH_PATHS])
    except ConfigError as error:
        SERVER_LOGGER.critical(
            "Configuration could not be resolved",
            extra={
                "event": "config_failed",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        sys.exit(1)

    manager = LifecycleManager(config, default_mount_table(config.files_root), host=args.host)
    shutdown_threads: list[threading.Thread] = []

    def shutdown_handler(signum: int, _frame) -> None:
        SERVER_LOGGER.info("Received shutdown signal", extra={"signal": signum})
        shutdown_threads.append(manager.request_shutdown())

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    SERVER_LOGGER.info(
        "Starting site host",
        extra={
            "event": "server_starting",
            "host": args.host,
            "port": config.listen_port,
            "tls": config.production,
            "log_destination": args.log_destination,
            "log_level": config.log_level,
        },
    )
    try:
        manager.start()
    except (TLSMaterialError, ListenError, UnexpectedServeError) as error:
        SERVER_LOGGER.critical(
            "Server could not keep serving",
            extra={
                "event": "server_failed",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        sys.exit(1)

    for thread in shutdown_threads:
        thread.join()


if __name__ == "__main__":
    main()
