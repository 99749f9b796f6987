#!/usr/bin/env python3
"""Monero daemon metrics exporter for Prometheus.

Polls monerod's RPC interface on a fixed interval and serves the latest
rendered metrics on the configured address (:8080 by default).
"""

import argparse
import logging
import os
import signal
import ssl
import sys
import threading

from . import telemetry
from .client import Client
from .config import Config, ConfigError, default_config_path
from .metrics import Exporter, Publisher
from .server import MetricsServer, build_ssl_context

logger = logging.getLogger("monerod_exporter")


def init_logging(level):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_client(config):
    if config.skip_tls_verification:
        logger.warning("TLS verification disabled for Monero RPC client")

    ssl_context = None
    if config.base_url.startswith("https"):
        ssl_context = ssl.create_default_context(
            cafile=str(config.tls_cert_path) if config.tls_cert_path else None
        )
        if config.skip_tls_verification:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
    return Client(config.base_url, timeout=config.timeout, ssl_context=ssl_context)


def create_publisher(config):
    client = create_client(config.monerod)
    exporter = Exporter(client, config.block_spans)
    return Publisher(exporter, config.refresh_interval)


def create_server(publisher, config):
    ssl_context = None
    if config.tls_key_path is not None:
        ssl_context = build_ssl_context(config.tls_cert_path or config.tls_key_path, config.tls_key_path)
    return MetricsServer(publisher, config.host, ssl_context=ssl_context)


def parse_args(argv):
    parser = argparse.ArgumentParser(prog="monerod-exporter", description=__doc__.splitlines()[0])
    parser.add_argument("-c", "--config", default=None, help="path to a TOML config file")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    init_logging(args.log_level)

    try:
        config = Config.load(args.config or default_config_path())
    except ConfigError as e:
        logger.error("failed to create config: %s", e)
        return 1
    logger.debug("config: %s", config)

    try:
        publisher = create_publisher(config)
    except (OSError, ssl.SSLError) as e:
        logger.error("failed to create publisher: %s", e)
        return 1

    stop = threading.Event()

    try:
        server = create_server(publisher, config.server)
        telemetry.start(config.telemetry.port)
    except (OSError, ssl.SSLError, ValueError) as e:
        logger.error("failed to create HTTP server: %s", e)
        return 1

    def handle_signal(sig, frame):
        stop.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    server.start(on_exit=stop.set)
    host, port = server.server_address[:2]
    logger.info("Listening on %s:%d, polling monerod at %s", host, port, config.monerod.base_url)

    try:
        publisher.run(stop)
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
