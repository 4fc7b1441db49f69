"""
Process entry point.

    python -m storefront.server      (or the `storefront` console script)

Startup order: logging, configuration, metrics, database, signal handlers,
then the Flask development server. A database that cannot be reached at
startup, or missing required configuration, exits the process with status 1.
"""

import logging
import sys

from storefront.app import create_app
from storefront.config import Config, load_config
from storefront.db import DatabaseConnector, ReconnectPolicy, install_signal_handlers
from storefront.exceptions import ConfigurationError, DatabaseStartupError
from storefront.logging_setup import configure_logging
from storefront.metrics import Metrics

logger = logging.getLogger(__name__)


def build_connector(config: Config, metrics: Metrics, **kwargs) -> DatabaseConnector:
    return DatabaseConnector(
        config.database,
        policy=ReconnectPolicy.from_config(config.reconnect),
        status_sink=metrics.update_db_connection_status,
        **kwargs,
    )


def start_database(connector: DatabaseConnector) -> DatabaseConnector:
    """Connect once; an unreachable database at startup is fatal."""
    try:
        connector.connect()
    except DatabaseStartupError as exc:
        logger.critical(f"Could not connect to the database ({exc.category}); shutting down")
        sys.exit(1)
    return connector


def main() -> None:
    config = load_config()
    configure_logging(config.app.log_level)

    config.warn_missing()
    try:
        config.validate()
    except ConfigurationError as exc:
        logger.critical(str(exc))
        sys.exit(1)

    metrics = Metrics()
    connector = start_database(build_connector(config, metrics))
    install_signal_handlers(connector)

    app = create_app(config, connector, metrics)
    logger.info(f"Starting storefront API on {config.app.host}:{config.app.port} ({config.app.environment})")
    # The reloader would fork a second process with its own connector
    app.run(host=config.app.host, port=config.app.port, debug=config.app.debug, use_reloader=False)


if __name__ == "__main__":
    main()
