# auction_pipeline/utils.py
"""Shared utilities: logging setup, the retry decorator and small time helpers."""
import logging
import time
from datetime import datetime, timezone
from functools import wraps

from . import config


def get_logger(name=None):
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO)
    )
    if name is None:
        return logging.getLogger("auction-pipeline")
    return logging.getLogger(f"auction-pipeline.{name.rsplit('.', 1)[-1]}")

logger = get_logger()


def retry(exceptions, tries=2, delay=1, backoff=2, giveup=None, logger=logger):
    """Retry the wrapped call on `exceptions`.

    `tries` counts the first attempt, so tries=2 means one retry. When
    `giveup(exc)` returns True the exception is re-raised immediately.
    """
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    if giveup is not None and giveup(e):
                        raise
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_cancelled(cancel):
    return cancel is not None and cancel.is_set()


def pause(seconds, cancel=None):
    """Sleep between upstream requests; wakes early when `cancel` is set."""
    if seconds <= 0:
        return
    if cancel is not None:
        cancel.wait(seconds)
    else:
        time.sleep(seconds)
