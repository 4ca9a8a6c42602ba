"""
Command-Line Interface

Entry point for the plugin-sync CLI tool.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from . import __version__
from .config import CONTEXT_FILE, LOG_DIR
from .config_loader import load_config, load_context, resolve_chown, validate_config
from .downloader import PluginDownloader
from .errors import ConfigError, LedgerFormatError, ParseError
from .ledger import InstallLedger
from .manifest import drop_requests, load_requests, merge_requests
from .shorthand import parse_shorthand
from .updater import PluginUpdater

logger = logging.getLogger(__name__)


# Logging setup
def setup_logging(verbose: bool = False, log_dir: Path = LOG_DIR):
    """Configure logging for CLI"""
    handlers = [logging.StreamHandler()]
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"plugin-sync-{datetime.now().strftime('%Y%m%d%H%M%S')}.log"
        handlers.insert(0, logging.FileHandler(log_file))
    except OSError as e:
        print(f"Cannot write log file in {log_dir}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


async def run_command(args: argparse.Namespace, config: dict, context: dict) -> int:
    """
    Execute one CLI command against a fresh ledger and updater

    Returns:
        Exit code (0 = success)
    """
    paths = config['paths']
    requests_file = Path(paths['requests'])

    # parse user input before touching anything on disk
    if args.command == 'add':
        requests = [parse_shorthand(arg) for arg in args.plugins]
    elif args.command == 'remove':
        requests = [parse_shorthand(arg, for_removal=True) for arg in args.plugins]
    elif args.command == 'update':
        requests = load_requests(requests_file)
    else:
        requests = []

    ledger = InstallLedger(paths['ledger'])
    await ledger.load()

    downloader = PluginDownloader(paths['plugin_dir'], chown=resolve_chown(config, context))
    updater = PluginUpdater(ledger, downloader)

    if args.command == 'update':
        if not requests:
            logger.info(f"No plugins listed in {requests_file}")
        updater.update(requests)
        ok = await updater.wait()

    elif args.command == 'add':
        updater.update(requests)
        ok = await updater.wait()
        if ok:
            merge_requests(requests_file, requests)

    elif args.command == 'remove':
        updater.remove(requests)
        ok = await updater.wait()
        drop_requests(requests_file, requests)

    else:
        updater.list_installed()
        ok = await updater.wait()

    if ledger.needs_save:
        logger.error("✗ Ledger changes could not be saved")
        return 1

    return 0 if ok else 1


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description=f"plugin-sync v{__version__} - Keep server plugins at their latest versions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Install and start tracking plugins
  %(prog)s add https://hangar.papermc.io/ViaVersion/ViaVersion
  %(prog)s add worldedit@^7 modrinth:luckperms

  # Update everything listed in plugins.json
  %(prog)s update

  # Show installed plugins and whether they are current
  %(prog)s list

  # Stop tracking a plugin (its jar moves to plugins.old/)
  %(prog)s remove worldedit
        """
    )

    parser.add_argument("--config", type=Path, help="Path to config file (overrides default search paths)")
    parser.add_argument("--context", type=Path, default=CONTEXT_FILE, help="Path to context.json (ownership settings)")
    parser.add_argument("--plugin-dir", type=Path, help="Live plugin directory (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("update", help="Update every plugin in the plugin list")
    add_parser = subparsers.add_parser("add", help="Install plugins and add them to the plugin list")
    add_parser.add_argument("plugins", nargs="+", help="Plugin references (URL, slug, owner/slug, service:slug@range)")
    remove_parser = subparsers.add_parser("remove", help="Uninstall plugins and drop them from the plugin list")
    remove_parser.add_argument("plugins", nargs="+", help="Plugin names or references")
    subparsers.add_parser("list", help="Show installed plugins against their latest versions")

    args = parser.parse_args(argv)

    # Default to update if no command specified
    if not args.command:
        args.command = "update"

    setup_logging(args.verbose)

    try:
        config = load_config(args.config if args.config else None)
        if args.plugin_dir:
            config['paths']['plugin_dir'] = str(args.plugin_dir)

        is_valid, errors = validate_config(config)
        if not is_valid:
            logger.error("\n✗ Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            return 1

        context = load_context(args.context)
        return asyncio.run(run_command(args, config, context))

    except LedgerFormatError as e:
        logger.error(f"✗ {e}")
        return 1
    except (ConfigError, ParseError) as e:
        logger.error(f"✗ {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("\n\nInterrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
