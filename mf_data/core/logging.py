import logging

from mf_data.core.config import Settings


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    # aiohttp access noise is not useful for a proxy
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
