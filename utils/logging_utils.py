import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

LOGGER_NAME = "trackfuse"


def make_logger(name: str = LOGGER_NAME, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)
    logger.setLevel(level)
    return logger


def get_logger(logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Return the given logger, or the package logger (no handler added)."""
    if logger is not None:
        return logger
    return logging.getLogger(LOGGER_NAME)


@contextmanager
def timed(logger: logging.Logger, msg: str) -> Iterator[None]:
    t0 = time.perf_counter()
    logger.info(f"{msg} ...")
    yield
    dt = time.perf_counter() - t0
    logger.info(f"{msg} done in {dt:.2f}s")
