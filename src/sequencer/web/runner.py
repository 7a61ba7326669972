"""Uvicorn runner for the sequencer API."""

import copy

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from sequencer.app import App
from sequencer.config import Config
from sequencer.web.server import create_fastapi_app


def run_server(app: App, config: Config) -> None:
    """Serve the API with access logs in the same terse layout as the app logs."""
    fastapi_app = create_fastapi_app(app, config)

    log_config = copy.deepcopy(LOGGING_CONFIG)
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s access "%(request_line)s" %(status_code)s'
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s %(levelname)s %(message)s"

    uvicorn.run(
        fastapi_app,
        host=config.host,
        port=config.port,
        log_config=log_config,
        log_level="debug" if config.debug else "info",
        access_log=True,
    )
