# pharmaqms/utils.py

import functools
import logging
import time
from datetime import date
from typing import Optional, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_backoff(retries: int = 3, initial_delay: float = 1.0, factor: float = 2.0,
                       exceptions: Tuple[Type[BaseException], ...] = (Exception,)):
    """
    Retries the wrapped call with exponential backoff. The last failure is
    re-raised once the attempts are used up.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay
            for attempt in range(1, retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == retries:
                        raise
                    logger.warning(f"{func.__name__} failed (attempt {attempt}/{retries}): {e}. "
                                   f"Retrying in {delay:.1f}s")
                    time.sleep(delay)
                    delay *= factor
        return wrapper
    return decorator


def today_iso(today: Optional[date] = None) -> str:
    return (today or date.today()).isoformat()


def add_years(start: date, years: int) -> date:
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        # 29 February rolls back to the 28th
        return start.replace(year=start.year + years, day=28)
