"""CLI entry point."""

import os
import sys

from common.logging_config import setup_logging
from cli.commands import get_config
from cli.repl import repl_loop


def main() -> None:
    """Entry point for CLI."""
    debug = '--debug' in sys.argv
    if debug:
        sys.argv.remove('--debug')

    logger = setup_logging('cli', log_level='DEBUG' if debug else os.getenv('LOG_LEVEL', 'WARNING'))

    config = get_config()
    logger.info(f"Scatola CLI starting (server={config.get_base_url()}, config={config.config_path})")
    try:
        repl_loop()
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Scatola CLI exiting")


if __name__ == "__main__":
    main()
