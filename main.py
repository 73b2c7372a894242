#!/usr/bin/env python3
"""
Water Meter CoAP Ingress - Main Entry Point

Receives water meter telegrams over CoAP/UDP, decodes them and logs the readings.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import yaml

from coap_core.listener import COAP_PORT, ListenerConfig, UdpListener
from coap_core.errors import TransportError
from coap_core.mux import Router, access_logger, discovery_filter, error_handler
from water_meter.handlers import DEFAULT_MAX_PAYLOAD_SIZE, IngestionHandler, LivenessHandler
from water_meter.telegram import TelegramDecoder, default_variants


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def load_config(path: str) -> dict:
    """Load configuration from YAML file; a missing file means defaults."""
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


def setup_logging(level: str, fmt: str = DEFAULT_LOG_FORMAT, log_file: Optional[str] = None) -> None:
    """Configure root logging at an explicit level."""
    numeric_level = getattr(logging, level.upper())

    logging.basicConfig(level=numeric_level, format=fmt)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setLevel(numeric_level)
        fh.setFormatter(logging.Formatter(fmt))
        logging.getLogger().addHandler(fh)


def build_router(config: dict, logger: logging.Logger) -> Router:
    """Wire the middleware chain and handlers."""
    ingestion_cfg = config.get("ingestion", {})
    liveness_cfg = config.get("liveness", {})

    decoder = TelegramDecoder(
        default_variants(ingestion_cfg.get("temperature_divisor", 100.0))
    )

    router = Router(logger.getChild("router"))
    router.use(discovery_filter(), access_logger(logger))
    router.handle(
        ingestion_cfg.get("path", "/coap"),
        IngestionHandler(
            decoder,
            max_payload_size=ingestion_cfg.get("max_payload_size", DEFAULT_MAX_PAYLOAD_SIZE),
            logger=logger.getChild("ingestion")
        )
    )
    router.handle(liveness_cfg.get("path", "/hello"), LivenessHandler())
    return router


class IngressApplication:
    """Main application class."""

    def __init__(self, config: dict):
        self.config = config
        service_cfg = config.get("service", {})
        self.service_name = service_cfg.get("name", "ingress-coap")
        self.version = service_cfg.get("version", "v0.0.1")

        self.logger = logging.getLogger(self.service_name)
        self.router = build_router(config, self.logger)
        self.listener = UdpListener(
            self.router,
            self._create_listener_config(),
            on_error=error_handler(self.logger),
            logger=self.logger.getChild("listener")
        )
        self._stopped: Optional[asyncio.Event] = None

    def _create_listener_config(self) -> ListenerConfig:
        """Create listener config from settings."""
        server_cfg = self.config.get("server", {})
        return ListenerConfig(
            host=server_cfg.get("host", "0.0.0.0"),
            port=server_cfg.get("port", COAP_PORT)
        )

    async def run(self) -> None:
        """Bind the listener and serve until stop() is called."""
        self._stopped = asyncio.Event()
        config = self.listener.config

        self.logger.info(
            f"🚀 Starting {self.service_name} {self.version} udp listener on port {config.port}"
        )
        await self.listener.start()
        self.logger.info(f"✅ Serving routes {', '.join(self.router.routes)}")

        try:
            await self._stopped.wait()
        finally:
            await self.listener.stop()

    async def stop(self) -> None:
        """Stop the application."""
        self.logger.info("Stopping...")
        if self._stopped:
            self._stopped.set()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Water meter CoAP ingress")
    parser.add_argument("-c", "--config", default="config/config.yaml", help="YAML config file")
    parser.add_argument("--host", help="Listen address (overrides config)")
    parser.add_argument("-p", "--port", type=int, help="Listen port (overrides config)")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    config = load_config(args.config)

    server_cfg = config.setdefault("server", {})
    if args.host:
        server_cfg["host"] = args.host
    if args.port is not None:
        server_cfg["port"] = args.port

    log_cfg = config.get("logging", {})
    setup_logging(
        args.log_level or log_cfg.get("level", "INFO"),
        log_cfg.get("format", DEFAULT_LOG_FORMAT),
        log_cfg.get("file")
    )

    app = IngressApplication(config)

    # Handle signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(app.stop()))

    try:
        await app.run()
    except TransportError as e:
        app.logger.error(f"❌ {e}")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
