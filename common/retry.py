"""
Retry utilities for units of work that lose a lock race or deadlock
"""
import random
import time
from typing import Callable, Any, Optional, List
import logging

from confluent_kafka import KafkaException
from sqlalchemy.exc import IntegrityError, OperationalError

from common.settings import settings

logger = logging.getLogger(__name__)

class RetryConfig:
    """Configuration for retry behavior"""
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.05,
        max_delay: float = 1.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[type]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [Exception]

    def is_retryable(self, exc: Exception) -> bool:
        return any(isinstance(exc, exc_type) for exc_type in self.retryable_exceptions)

def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for exponential backoff with jitter"""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= (0.5 + random.random() * 0.5)

    return delay

def retry_call(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Call func, retrying retryable failures with exponential backoff"""
    last_exception = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            last_exception = e

            if not config.is_retryable(e):
                raise

            if attempt == config.max_attempts:
                logger.error(f"Max retry attempts ({config.max_attempts}) reached for {func.__name__}")
                break

            delay = calculate_delay(attempt, config)
            logger.warning(f"Attempt {attempt}/{config.max_attempts} failed for {func.__name__}: {e}. Retrying in {delay:.2f}s")
            time.sleep(delay)

    raise last_exception

# Deadlocks and lock wait timeouts come back as OperationalError; two first
# accruals racing to create the same account or ledger entry as IntegrityError.
LEDGER_RETRY_CONFIG = RetryConfig(
    max_attempts=settings.ledger_max_attempts,
    base_delay=0.05,
    max_delay=1.0,
    retryable_exceptions=[OperationalError, IntegrityError]
)

KAFKA_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=15.0,
    retryable_exceptions=[KafkaException]
)
