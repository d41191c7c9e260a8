import sys

from app_config import AppConfig
from exceptions import ConfigurationError
from logger import get_logger
from web_app import create_app

logger = get_logger(__name__)


def main() -> int:
    """
    Load the configuration, build the app and serve it.

    Returns the process exit code: 1 when required settings are missing.
    """
    try:
        config = AppConfig.load().validate()
    except ConfigurationError as e:
        logger.critical(f"Startup aborted: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    app = create_app(config)

    logger.info(f"Pallet label server listening on {config.host}:{config.port}")
    logger.info(f"Label form: {config.public_base_url}/labels")
    logger.info(f"Completion log: {config.storage_backend} at {config.completion_log_path}")

    app.run(host=config.host, port=config.port, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
