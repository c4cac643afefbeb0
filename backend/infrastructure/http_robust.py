import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    retry_if_result,
    before_sleep_log,
)
from loguru import logger

# --- Retry Conditions ---
def is_retryable_status(response: httpx.Response) -> bool:
    """Retry on 429 (Too Many Requests) and 5xx (Server Errors)."""
    return response.status_code == 429 or 500 <= response.status_code <= 599

# --- Robust Wrapper ---
def robust_retry(max_attempts: int = 1):
    """
    Decorator for HTTP requests using tenacity.
    - Exponential backoff: 1s to 30s.
    - With max_attempts=1 the request is sent exactly once.
    - Returns the last response (even a 5xx) once attempts are exhausted.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        retry=(
            retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)) |
            retry_if_result(is_retryable_status)
        ),
        before_sleep=before_sleep_log(logger, "WARNING"),
        retry_error_callback=lambda state: state.outcome.result(),
    )

class RobustAsyncClient:
    """
    A wrapper around httpx.AsyncClient that integrates retries.
    There is no shared circuit breaker: one failing peer must not short-circuit the others.
    """
    def __init__(self, client: httpx.AsyncClient, max_attempts: int = 1):
        self.client = client
        self.max_attempts = max_attempts

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        attempts = kwargs.pop("max_attempts", self.max_attempts)

        @robust_retry(max_attempts=attempts)
        async def _make_request():
            logger.debug(f"HTTP {method} {url} - Attempting...")
            return await self.client.request(method, url, **kwargs)

        return await _make_request()

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)
