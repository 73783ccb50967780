"""
Main entry point for the SEKS actuator.

Usage:
    SEKS_BROKER_URL=https://broker.example.com \\
    SEKS_BROKER_TOKEN=seks_agent_xxx \\
    seks-actuator [--id my-actuator] [--cwd /data/workspace]
"""
import argparse
import asyncio
import os
import sys
from typing import Any, Dict, List, Optional

from actuator.config import ConfigManager, HANDSHAKE_QUERY, HANDSHAKE_REGISTER
from actuator.config.config_manager import ENV_BROKER_URL, ENV_BROKER_TOKEN, ENV_CONFIG_PATH
from actuator.core.actuator import Actuator
from actuator.utils import get_logger, setup_logger, get_file_logging_status
from actuator.version import __version__, __app_name__

logger = get_logger("main")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='seks-actuator',
        description="Connect to the SEKS broker as an actuator and execute delivered commands.",
        epilog=f"Environment: {ENV_BROKER_URL} (required), {ENV_BROKER_TOKEN} (required), "
               f"{ENV_CONFIG_PATH} (optional JSON config file)."
    )
    parser.add_argument('--id', dest='actuator_id', help='Actuator ID (default: hostname).')
    parser.add_argument('--cwd', help='Working directory for commands (default: current directory).')
    parser.add_argument('--capabilities', help='Comma-separated capabilities (default: actuator/shell).')
    parser.add_argument('--config', dest='config_path', help='Path to a JSON configuration file.')
    parser.add_argument('--handshake', choices=[HANDSHAKE_QUERY, HANDSHAKE_REGISTER],
                        help='Broker handshake: token in query parameters, or a registration message after connect.')
    parser.add_argument('--log-level', help='Console log level (default: INFO).')
    parser.add_argument('--log-file', help='Also log to this rotating file.')
    parser.add_argument('--version', action='version', version=f"{__app_name__} {__version__}")
    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Turns parsed arguments into a nested config overlay; unset options are left out."""
    capabilities: Optional[List[str]] = None
    if args.capabilities:
        capabilities = [c.strip() for c in args.capabilities.split(',') if c.strip()]
    return {
        'actuator_id': args.actuator_id,
        'cwd': args.cwd,
        'capabilities': capabilities,
        'websocket': {'handshake': args.handshake},
        'logging': {'level': args.log_level, 'file': args.log_file},
    }


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parses arguments, loads configuration and runs the actuator until it is
    stopped by SIGINT/SIGTERM.

    :return: Process exit code
    :rtype: int
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logger(console_level_name=args.log_level or 'INFO')

    environ: Dict[str, str] = dict(os.environ)
    if args.config_path:
        environ[ENV_CONFIG_PATH] = args.config_path

    try:
        config = ConfigManager.from_env(environ, overrides=_overrides_from_args(args))
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print(f"{ENV_BROKER_URL} and {ENV_BROKER_TOKEN} must be set (or provided in the config file).", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    setup_logger(
        console_level_name=config.get('logging.level', 'INFO'),
        log_file_path=config.get('logging.file')
    )
    if get_file_logging_status()["file_logging_enabled"]:
        logger.debug(f"File logging status: {get_file_logging_status()}")

    logger.info(f"Starting {__app_name__} {__version__} - broker: {config.get('broker_url')}, id: {config.get('actuator_id')}")
    actuator = Actuator(config)
    try:
        asyncio.run(actuator.run())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received. Actuator stopped.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
