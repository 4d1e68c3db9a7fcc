"""
Circuit Breaker Pattern Implementation

Shields the event loop from a dead gateway or model backend: after enough
consecutive failures calls are rejected immediately until a cool-off
period has passed, then a few probe calls decide whether to close again.
"""
import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, TypeVar
from dataclasses import dataclass

from ppid_bot.core.logging import get_logger
from ppid_bot.core.exceptions import CircuitBreakerOpenError

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5         # Failures before opening
    success_threshold: int = 2          # Successes in half-open to close
    timeout_seconds: float = 30.0       # Time before trying half-open
    half_open_max_calls: int = 3        # Max calls in half-open state


@dataclass
class CircuitBreakerState:
    """State tracking for circuit breaker"""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0
    half_open_calls: int = 0


class CircuitBreaker:
    """
    Circuit breaker for one external service.

    All bookkeeping runs between awaits on the single event loop, so no
    lock is taken around state updates.
    """

    _instances: dict[str, "CircuitBreaker"] = {}

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitBreakerState()
        self._clock = clock

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Get or create the shared breaker for a service"""
        if service_name not in cls._instances:
            cls._instances[service_name] = cls(service_name, config)
        return cls._instances[service_name]

    @classmethod
    def all_instances(cls) -> dict[str, "CircuitBreaker"]:
        return dict(cls._instances)

    @classmethod
    def reset_all(cls) -> None:
        """Reset all circuit breakers (for testing)"""
        cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def is_closed(self) -> bool:
        return self._state.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state.state == CircuitState.HALF_OPEN

    def _should_attempt_reset(self) -> bool:
        if self._state.state != CircuitState.OPEN:
            return False
        return self._clock() - self._state.last_failure_time >= self.config.timeout_seconds

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state.state
        self._state.state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._state.half_open_calls = 0
            self._state.success_count = 0

        if new_state == CircuitState.CLOSED:
            self._state.failure_count = 0
            self._state.success_count = 0

        logger.info(
            f"Circuit breaker '{self.service_name}' transitioned",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value
            }
        )

    def record_success(self) -> None:
        if self._state.state == CircuitState.HALF_OPEN:
            self._state.success_count += 1
            if self._state.success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state.state == CircuitState.CLOSED:
            self._state.failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        self._state.failure_count += 1
        self._state.last_failure_time = self._clock()

        logger.warning(
            f"Circuit breaker '{self.service_name}' recorded failure",
            extra_data={
                "service": self.service_name,
                "failure_count": self._state.failure_count,
                "threshold": self.config.failure_threshold,
                "error": str(error) if error else None
            }
        )

        if self._state.state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._state.failure_count >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)

    def can_execute(self) -> bool:
        """Check if a request can be executed"""
        if self._state.state == CircuitState.CLOSED:
            return True

        if self._state.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to(CircuitState.HALF_OPEN)
            else:
                return False

        if self._state.half_open_calls < self.config.half_open_max_calls:
            self._state.half_open_calls += 1
            return True
        return False

    def get_retry_after(self) -> float:
        """Seconds until the circuit may half-open"""
        if self._state.state != CircuitState.OPEN:
            return 0.0
        remaining = self.config.timeout_seconds - (self._clock() - self._state.last_failure_time)
        return max(0.0, remaining)

    def snapshot(self) -> dict:
        return {
            "service": self.service_name,
            "state": self._state.state.value,
            "failure_count": self._state.failure_count,
            "retry_after_seconds": round(self.get_retry_after(), 1),
        }

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``func`` under breaker protection.

        Cancellation is not counted as a failure of the remote service.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


def get_whatsapp_circuit_breaker() -> CircuitBreaker:
    """Breaker for messages to citizens"""
    return CircuitBreaker.get_instance(
        "whatsapp",
        CircuitBreakerConfig(failure_threshold=5, success_threshold=2, timeout_seconds=30.0)
    )


def get_whatsapp_admin_circuit_breaker() -> CircuitBreaker:
    """Separate breaker so admin alert failures never block citizen replies"""
    return CircuitBreaker.get_instance(
        "whatsapp_admin",
        CircuitBreakerConfig(failure_threshold=3, success_threshold=1, timeout_seconds=60.0)
    )


def get_llm_circuit_breaker(provider: str) -> CircuitBreaker:
    """Breaker per generation backend"""
    return CircuitBreaker.get_instance(
        f"llm_{provider}",
        CircuitBreakerConfig(failure_threshold=3, success_threshold=1, timeout_seconds=60.0)
    )


def get_embedding_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance(
        "embeddings",
        CircuitBreakerConfig(failure_threshold=5, success_threshold=1, timeout_seconds=30.0)
    )
