"""Entry point for running the gateway under uvicorn."""

import logging

import uvicorn

from .api import create_app
from .config import ConfigError, Settings, configure_logging, load_settings

logger = logging.getLogger(__name__)


def _log_configuration(settings: Settings) -> None:
    logger.info(f"OpenAI-compatible API server starting on port {settings.port}")
    logger.info(f"Available models: {settings.model_names()}")
    logger.info(f"Upstream: {settings.upstream_url}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Default stream: {settings.default_stream}")
    logger.info(f"Thinking tags mode: {settings.think_tags_mode.value}")


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Configuration error: {str(e)}")
        raise SystemExit(1)

    configure_logging(settings)
    _log_configuration(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
