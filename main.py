import logging
import sys

import colorlog

from aws_token import AwsToken

LOG_FORMAT = "%(asctime)-8s (%(bold)s%(log_color)s%(levelname)s%(reset)s) %(message)s"


def setup_logging():
    """Sends log records to stderr, keeping stdout for credential output."""
    logger = logging.getLogger()
    logger.setLevel(logging.INFO)
    handler = colorlog.StreamHandler(sys.stderr)
    handler.setFormatter(colorlog.ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)


def entry_point():
    """Console script entry point."""
    setup_logging()
    token = AwsToken(sys.argv)
    raise SystemExit(token.main())


if __name__ == "__main__":
    entry_point()
