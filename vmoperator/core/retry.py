# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/core/retry.py
"""
Exponential backoff helpers.

backoff_delay() is shared by the reconcile scheduler (requeue after a
failure) and retry_operation() (vCenter login, watch reconnects).
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar, Union

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    *,
    base_backoff_s: float = 1.0,
    max_backoff_s: float = 300.0,
    jitter_s: float = 0.5,
) -> float:
    """
    Delay before retry number `attempt` (1-based): base * 2**(attempt-1),
    capped at max_backoff_s, plus uniform jitter in [0, jitter_s].
    """
    attempt = max(1, int(attempt))
    delay = min(base_backoff_s * (2 ** (attempt - 1)), max_backoff_s)
    if jitter_s > 0:
        delay += random.uniform(0, jitter_s)
    return delay


def retry_operation(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_backoff_s: float = 2.0,
    max_backoff_s: float = 60.0,
    jitter_s: float = 1.0,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = Exception,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.WARNING,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Retry an operation with exponential backoff.

    Example:
        si = retry_operation(
            lambda: SmartConnect(host=host, user=user, pwd=pwd),
            max_attempts=5,
            operation_name="vCenter login",
            logger=my_logger,
        )
    """
    last_exception: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except exceptions as e:
            last_exception = e

            if attempt < max_attempts:
                sleep_time = backoff_delay(
                    attempt, base_backoff_s=base_backoff_s, max_backoff_s=max_backoff_s, jitter_s=jitter_s
                )
                if logger:
                    logger.log(
                        log_level,
                        "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                        operation_name,
                        attempt,
                        max_attempts,
                        e,
                        sleep_time,
                    )
                sleep(sleep_time)
            elif logger:
                logger.log(logging.ERROR, "%s failed after %d attempts: %s", operation_name, max_attempts, e)

    if last_exception:
        raise last_exception

    raise RuntimeError(f"{operation_name} failed with no exception recorded")
