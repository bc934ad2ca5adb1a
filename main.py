#!/usr/bin/env python3
"""Wake-on-LAN HTTP Proxy - Main Entry Point

A Python service that forwards HTTP requests to a primary destination,
waking auxiliary backends via Wake-on-LAN when they appear to be offline.
"""

import asyncio
import argparse
import logging
import logging.handlers
import sys
from pathlib import Path

from aiohttp import web, web_runner

try:
    import sdnotify
except ImportError:
    sdnotify = None

from wolproxy.config_manager import ConfigManager, ConfigError, LoggingSettings
from wolproxy.proxy_server import ProxyServer


def setup_logging(log_config: LoggingSettings) -> None:
    """Set up logging configuration."""
    log_level = getattr(logging, log_config.level.upper())

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Set up root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console handler
    if log_config.console_output or not log_config.file:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if not log_config.file:
        return

    # File handler with rotation
    try:
        log_path = Path(log_config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_config.file,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        logging.info(f"Logging configured - Level: {log_config.level}, File: {log_config.file}")

    except OSError as e:
        print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
        print("Continuing with console logging only", file=sys.stderr)
        if not root_logger.handlers:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)


async def status_server(port: int, proxy_server: ProxyServer) -> web_runner.AppRunner:
    """Start a simple HTTP status server for monitoring."""

    async def get_status(request):
        """Get proxy status as JSON."""
        if proxy_server.is_running:
            return web.json_response({
                "status": "running",
                "proxy": proxy_server.get_status(),
                "config": proxy_server.get_config_info()
            })
        else:
            return web.json_response({
                "status": "stopped",
                "message": "Proxy is not running"
            }, status=503)

    async def health_check(request):
        """Simple health check endpoint."""
        return web.json_response({"status": "healthy"})

    # Create web application
    app = web.Application()
    app.router.add_get('/status', get_status)
    app.router.add_get('/health', health_check)

    # Start server
    runner = web_runner.AppRunner(app)
    await runner.setup()

    site = web_runner.TCPSite(runner, '0.0.0.0', port)
    await site.start()

    logging.info(f"Status server started on port {port}")
    return runner


def notify_ready() -> None:
    """Tell systemd the service is ready, when running under it."""
    if sdnotify is None:
        return
    sdnotify.SystemdNotifier().notify("READY=1")


async def main_service(config) -> int:
    """Main service function."""
    proxy_server = ProxyServer(config)

    if not await proxy_server.start():
        logging.error("Failed to start proxy service")
        return 1

    status_runner = None
    if config.monitoring.status_enabled:
        try:
            status_runner = await status_server(config.monitoring.status_port, proxy_server)
        except OSError as e:
            logging.warning(f"Failed to start status server: {e}")

    notify_ready()

    try:
        await proxy_server.run_forever()
    finally:
        if status_runner:
            await status_runner.cleanup()

    logging.info("WoL HTTP Proxy stopped")
    return 0


def main():
    """Main entry point with command line argument handling."""
    parser = argparse.ArgumentParser(
        description="Wake-on-LAN HTTP Proxy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Run with config.toml
  %(prog)s /etc/wol-http-proxy.toml # Run with custom config
        """
    )

    parser.add_argument(
        'config',
        nargs='?',
        default='config.toml',
        help='Configuration file path (default: config.toml)'
    )

    args = parser.parse_args()

    # Configuration errors are fatal before anything is bound
    try:
        config = ConfigManager(args.config).load_config()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logging.critical(f"Failed to load config file: {e}")
        return 1

    setup_logging(config.logging)
    logging.info("Starting WoL HTTP Proxy")
    logging.info(f"Configuration loaded from: {args.config}")

    try:
        return asyncio.run(main_service(config))
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 0


if __name__ == '__main__':
    sys.exit(main())
