import asyncio
import logging
import random
from functools import wraps
from typing import Callable, Tuple, Type

import requests

logger = logging.getLogger("automation_engine")

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class RetryManager:
    """
    Retries provider calls with exponential backoff and jitter.
    Only transient failures are retried; anything else is raised immediately.
    """

    @staticmethod
    def is_transient_error(exception: Exception) -> bool:
        if isinstance(exception, (requests.Timeout, requests.ConnectionError)):
            return True

        if isinstance(exception, requests.HTTPError) and exception.response is not None:
            return exception.response.status_code in TRANSIENT_STATUS_CODES

        error_msg = str(exception).lower()
        transient_keywords = ["timeout", "timed out", "connection", "rate limit", "429"]
        return any(keyword in error_msg for keyword in transient_keywords)

    @staticmethod
    def with_retry(
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        retry_on: Tuple[Type[Exception], ...] = (Exception,),
    ):
        """Decorator to retry an async function upon transient failure."""

        def decorator(func: Callable):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                attempt = 0
                while True:
                    try:
                        return await func(*args, **kwargs)
                    except retry_on as e:
                        attempt += 1
                        if attempt >= max_attempts:
                            logger.warning(f"Max retry attempts ({max_attempts}) reached for {func.__name__}. Last error: {e}")
                            raise

                        if not RetryManager.is_transient_error(e):
                            logger.warning(f"Non-transient error in {func.__name__}: {e}. Not retrying.")
                            raise

                        delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                        final_delay = delay + random.uniform(0, 0.1 * delay)

                        logger.info(f"Transient error in {func.__name__}: {e}. Retrying in {final_delay:.2f}s (Attempt {attempt}/{max_attempts})")
                        await asyncio.sleep(final_delay)

            return wrapper

        return decorator
