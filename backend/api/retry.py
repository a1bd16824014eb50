"""
Bounded retry for operations that can lose a race against another writer.
"""

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar('T')


def call_with_retry(
    func: Callable[[], T],
    exceptions: Union[Type[BaseException], Tuple[Type[BaseException], ...]],
    attempts: int = 3,
    delay: float = 0.2,
    backoff: float = 2.0,
    on_retry: Optional[Callable[[BaseException], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func, retrying on the given exceptions.

    All state lives in this call. The last failure propagates once attempts
    are used up.

    Args:
        func: Zero-argument callable to run
        exceptions: Exception type(s) worth retrying
        attempts: Total number of calls, including the first
        delay: Seconds to wait before the second call
        backoff: Multiplier applied to delay after each retry
        on_retry: Hook run after a failure and before waiting (e.g. a rollback)
        sleep: Wait function, replaceable in tests
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    current_delay = delay
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except exceptions as e:
            if attempt == attempts:
                raise
            logger.warning(f"Retryable error (attempt {attempt}/{attempts}): {e}, retrying in {current_delay}s")
            if on_retry is not None:
                on_retry(e)
            sleep(current_delay)
            current_delay *= backoff
