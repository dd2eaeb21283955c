"""
CLI entrypoint for the indexer container.

Usage:
    indexer-entrypoint ./bel_20_node --flag value
    python -m indexer_entrypoint -- ./bel_20_node --flag value
    indexer-entrypoint --print-config
"""
import argparse
import logging
import sys

from indexer_entrypoint.config import EntrypointConfig
from indexer_entrypoint.errors import BootstrapError
from indexer_entrypoint.logs import configure_logging
from indexer_entrypoint.runner import Bootstrap


logger = logging.getLogger("indexer_entrypoint")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="indexer-entrypoint",
        description="Prepare the indexer container filesystem and launch the indexer"
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the effective configuration as YAML and exit"
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command (and arguments) to launch"
    )
    return parser


def main(argv=None):
    """Run the bootstrap sequence, exiting non-zero on any fatal condition."""
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        config = EntrypointConfig.from_env()
    except BootstrapError as e:
        logger.error(f"Error: {e}")
        sys.exit(e.exit_code)

    configure_logging(config.log_level)

    if args.print_config:
        print(config.to_yaml(), end="")
        sys.exit(0)

    command = args.command
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        logger.error("Error: no command provided to launch")
        sys.exit(1)

    try:
        Bootstrap(config).run(command)
    except BootstrapError as e:
        logger.error(f"Error: {e}")
        sys.exit(e.exit_code)


if __name__ == "__main__":
    main()
