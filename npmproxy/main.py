import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from npmproxy.core.config import load_config, pick_ports
from npmproxy.core.dependencies import get_log_level
from npmproxy.domain.errors import ProxyConfigError
from npmproxy.services.proxy import Proxy
from npmproxy.storage.npmrc import NpmrcFile

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = ".npmproxy.yaml"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def run_proxy(config_path: Path, stop_event: Optional[asyncio.Event] = None) -> int:
    """
    Load the configuration, write `.npmrc` and run the proxy until stopped.

    Returns a process exit code. Nothing is started when no overrides are
    configured.
    """
    config = load_config(config_path)
    settings = config.settings

    if not settings.overrides:
        logger.info("No npm overrides configured. Not starting proxy server.")
        return 0

    logger.info(f"Found {len(settings.overrides)} npm overrides. Starting proxy server.")
    port, internal_port = pick_ports(settings)

    proxy = Proxy(
        settings.overrides,
        config.project_root,
        port=port,
        internal_port=internal_port,
        cache_dir=Path(settings.cache_dir) if settings.cache_dir else None,
        default_registry=settings.default_registry,
        host=settings.host,
    )

    with NpmrcFile(config.project_root, proxy.overrides.namespaces, port, host=settings.host):
        await proxy.start(stop_event)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="npmproxy",
        description="Serve selected npm namespaces from local source directories.",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_NAME,
        help=f"Path to the configuration file (default: {DEFAULT_CONFIG_NAME}).",
    )
    args = parser.parse_args(argv)

    configure_logging(get_log_level())

    try:
        return asyncio.run(run_proxy(Path(args.config)))
    except ProxyConfigError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
