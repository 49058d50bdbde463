import json
import logging
import logging.config
import os
import sys

from .config import LOG_FILE, LOG_LEVEL


def setup_logging(env_key: str = "LOG_CFG_FILEPATH") -> None:
    """
    Apply a json-based logging configuration when LOG_CFG_FILEPATH points at one,
    otherwise log to stdout and LOG_FILE.
    """
    path = os.getenv(env_key, None)
    if path and os.path.exists(path):
        with open(path, "r") as f:
            config = json.load(f)
        logging.config.dictConfig(config)
        return

    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    LOG_FILE.touch(exist_ok=True)
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout),
                  logging.FileHandler(LOG_FILE)],
    )
