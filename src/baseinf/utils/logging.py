import logging
import sys

from pythonjsonlogger import json

_HANDLER_NAME = "baseinf"


def setup_logging(level: str = "WARNING", json_format: bool = False) -> logging.Logger:
    """
    Configure the ``baseinf`` logger with a single stderr handler.

    stdout is left to the generated text, so diagnostics always go to stderr.
    Calling this again replaces the previous handler.
    """
    logger = logging.getLogger("baseinf")
    logger.setLevel(getattr(logging, level.upper()))

    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if json_format:
        handler.setFormatter(json.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger
