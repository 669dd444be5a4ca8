import logging
import os

from dotenv import load_dotenv

from .settings import get_settings

logger = logging.getLogger(__name__)


def setup(dotenv_path: str | None = None) -> None:
    """
    Load the .env file and configure logging.

    Args:
        dotenv_path: Optional explicit path to the .env file. Defaults to the
            first .env found from the working directory upwards.
    """
    load_dotenv(dotenv_path=dotenv_path, override=False)
    get_settings.cache_clear()
    settings = get_settings()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"threadloop setup complete (ENV={settings.env}, store={settings.store_backend})")
