"""
Retry with exponential backoff for Bedrock runtime calls.
"""

import random
import time
from typing import Callable, Tuple, Type, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

RETRYABLE_ERRORS: Tuple[Type[Exception], ...] = (ClientError, BotoCoreError)


def call_with_backoff(call: Callable[[], T],
                      attempts: int,
                      base_delay: float,
                      error_cls: Type[Exception],
                      label: str,
                      retry_on: Tuple[Type[Exception], ...] = RETRYABLE_ERRORS) -> T:
    """Run ``call`` up to ``attempts`` times.

    Errors listed in ``retry_on`` are retried after ``base_delay * 2**n`` plus
    up to one second of jitter; any other exception, or the last retryable
    one, is re-raised as ``error_cls``.

    Args:
        call: Zero-argument callable doing one request
        attempts: Total number of tries (at least one is made)
        base_delay: Seconds before the first retry
        error_cls: Exception type raised on final failure
        label: Name used in log lines and error messages

    Returns:
        Whatever ``call`` returns
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            logger.debug(f'{label} request attempt {attempt}/{attempts}')
            return call()
        except retry_on as e:
            if attempt == attempts:
                raise error_cls(f'{label} failed after {attempts} attempts: {e}')
            delay = base_delay * (2**(attempt - 1)) + random.uniform(0, 1)
            logger.warning(f'{label} attempt {attempt}/{attempts} failed: {e}; retrying in {delay:.1f}s')
            time.sleep(delay)
        except error_cls:
            raise
        except Exception as e:
            logger.error(f'Unexpected error in {label}: {e}')
            raise error_cls(f'Unexpected {label} error: {e}')
    raise error_cls(f'{label} failed after {attempts} attempts')
