"""Console entry point: ``sequencer`` starts the numbering API."""

import structlog

from sequencer.app import App
from sequencer.config import Config
from sequencer.logging import setup_logging
from sequencer.web.runner import run_server

logger = structlog.get_logger(__name__)


def main() -> None:
    config = Config()
    setup_logging(config)
    logger.info("sequencer_starting", storage=config.storage, host=config.host, port=config.port, tz=config.timezone)
    run_server(App(config), config)


if __name__ == "__main__":
    main()
