"""Retrying HTTP transport shared by all sources."""

import threading
import time
from typing import Any, Callable, Optional, Set, TypeVar

import requests  # type: ignore[import-untyped]

from shelfscan.config import HEADERS, REQUEST_TIMEOUT, RETRY_BACKOFF
from shelfscan.logging_config import get_logger
from shelfscan.url_validation import validate_url

__all__ = ["RetryingClient", "TransportError", "create_session"]

logger = get_logger("transport")

T = TypeVar("T")


class TransportError(Exception):
    """Raised when every attempt of a request has failed."""
    pass


def create_session() -> requests.Session:
    """Create a requests Session with connection pooling and proper headers."""
    session = requests.Session()
    session.headers.update(HEADERS)
    return session


class RetryingClient:
    """HTTP client that retries requests and replaces broken sessions.

    A transport failure (connection error, timeout) throws away the current
    session, creates a fresh one and waits ``backoff`` seconds before the
    next attempt. A failure inside the response handler (bad status, bad
    payload) is retried right away on the same session.

    Usage:
        client = RetryingClient(num_retries=3)
        data = client.get_json("https://example.com/api")
    """

    def __init__(
        self,
        num_retries: int,
        backoff: float = RETRY_BACKOFF,
        timeout: float = REQUEST_TIMEOUT,
        session_factory: Callable[[], requests.Session] = create_session,
        sleep: Callable[[float], None] = time.sleep,
        allowed_domains: Optional[Set[str]] = None,
    ) -> None:
        if num_retries < 1:
            raise ValueError(f"num_retries must be at least 1, got {num_retries}")
        self.num_retries = num_retries
        self.allowed_domains = allowed_domains
        self.backoff = backoff
        self.timeout = timeout
        self.replacements = 0
        self._session_factory = session_factory
        self._sleep = sleep
        self._lock = threading.Lock()
        self._session = session_factory()

    def _current_session(self) -> requests.Session:
        with self._lock:
            return self._session

    def _replace_session(self, broken: requests.Session) -> None:
        with self._lock:
            # Another thread may already have swapped it out.
            if self._session is broken:
                self._session = self._session_factory()
                self.replacements += 1
        broken.close()

    def execute(
        self,
        build_request: Callable[[requests.Session], requests.Request],
        handle_response: Callable[[requests.Response], T],
    ) -> T:
        """Send a request with retries and return the handler's result.

        Args:
            build_request: Builds the request to send on the given session
            handle_response: Turns a response into a result; raising marks
                the attempt as failed

        Returns:
            The result of ``handle_response`` for the first successful attempt

        Raises:
            TransportError: If all attempts fail; chained to the last error
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.num_retries):
            session = self._current_session()
            request = build_request(session)
            try:
                response = session.send(session.prepare_request(request), timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                last_exception = e
                logger.warning(
                    f"Transport error for {request.url}: {e} "
                    f"(attempt {attempt + 1}/{self.num_retries})"
                )
                self._replace_session(session)
                if attempt + 1 < self.num_retries:
                    self._sleep(self.backoff)
                continue

            try:
                return handle_response(response)
            except Exception as e:
                last_exception = e
                logger.warning(
                    f"Bad response from {request.url}: {e} "
                    f"(attempt {attempt + 1}/{self.num_retries})"
                )

        logger.error(f"Giving up after {self.num_retries} attempts: {last_exception}")
        raise TransportError(
            f"Request failed after {self.num_retries} attempts: {last_exception}"
        ) from last_exception

    def get(self, url: str, handle_response: Callable[[requests.Response], T]) -> T:
        """GET ``url`` with retries."""
        url = validate_url(url, allowed_domains=self.allowed_domains)
        return self.execute(lambda session: requests.Request("GET", url), handle_response)

    def get_bytes(self, url: str) -> bytes:
        def handle(resp: requests.Response) -> bytes:
            resp.raise_for_status()
            return bytes(resp.content)

        return self.get(url, handle)

    def get_text(self, url: str) -> str:
        def handle(resp: requests.Response) -> str:
            resp.raise_for_status()
            return str(resp.text)

        return self.get(url, handle)

    def get_json(self, url: str) -> Any:
        def handle(resp: requests.Response) -> Any:
            resp.raise_for_status()
            return resp.json()

        return self.get(url, handle)
