"""The Source contract and the streaming machinery shared by providers.

A source yields listings lazily. Providers write a plain generator that
pages through a retailer's API; ``StreamingSearchSource`` runs that generator
on a producer thread which hands items over through a one-slot queue, so at
most one scraped listing is ever waiting to be stored.
"""

import queue
import threading
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Optional, Protocol, Tuple

from shelfscan.models import Listing

if TYPE_CHECKING:
    from shelfscan.db import Database
    from shelfscan.transport import RetryingClient

__all__ = [
    "Source",
    "SourceError",
    "ListingStream",
    "StreamingSearchSource",
    "parse_price",
]


class SourceError(Exception):
    """Raised when a provider cannot make sense of a retailer's response."""
    pass


class Source(Protocol):
    """A provider of listings for one category of one website.

    ``identifier()`` is the stable scheduling key. ``update()`` returns a
    finite, non-restartable iterator; raising from it ends the run, but
    listings consumed before the error stay stored.
    """

    max_items: int

    def identifier(self) -> str:
        ...

    def update(self, client: "RetryingClient", db: "Database") -> Iterator[Listing]:
        ...


def parse_price(text: Optional[str]) -> Optional[int]:
    """Parse a displayed price like ``"$1,234.50"`` into cents.

    Returns:
        Price in cents, or None if the text is not a single price
    """
    if not text:
        return None
    cleaned = text.replace(",", "").replace("$", "").strip()
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return int((value * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class ListingStream(Iterator[Listing]):
    """Iterator fed by a producer thread through a one-slot queue.

    The producer blocks while the previous item has not been taken. Closing
    the stream (or reaching its end or an error) signals the producer to stop
    at its next hand-off.
    """

    def __init__(
        self,
        produce: Callable[[], Iterable[Listing]],
        name: str = "listing-stream",
        poll_interval: float = 0.1,
    ) -> None:
        self._queue: "queue.Queue[Tuple[str, Any]]" = queue.Queue(maxsize=1)
        self._stop = threading.Event()
        self._poll_interval = poll_interval
        self._finished = False
        self._thread = threading.Thread(target=self._run, args=(produce,), name=name, daemon=True)
        self._thread.start()

    def _put(self, kind: str, value: Any) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put((kind, value), timeout=self._poll_interval)
            except queue.Full:
                continue
            # A put can land after close() drained the slot.
            return not self._stop.is_set()
        return False

    def _run(self, produce: Callable[[], Iterable[Listing]]) -> None:
        items: Optional[Iterable[Listing]] = None
        try:
            items = produce()
            for listing in items:
                if not self._put("item", listing):
                    return
        except Exception as e:
            self._put("error", e)
            return
        finally:
            close = getattr(items, "close", None)
            if close is not None:
                close()
        self._put("done", None)

    def __iter__(self) -> "ListingStream":
        return self

    def __next__(self) -> Listing:
        if self._finished:
            raise StopIteration
        kind, value = self._queue.get()
        if kind == "item":
            return value
        self._finished = True
        self._stop.set()
        if kind == "error":
            raise value
        raise StopIteration

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop consuming; the producer exits at its next hand-off.

        Args:
            timeout: If given, wait up to this many seconds for the producer
                thread to finish. A producer stuck in a slow request is left
                to finish on its own.
        """
        self._finished = True
        self._stop.set()
        try:
            self._queue.get_nowait()
        except queue.Empty:
            pass
        if timeout is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def __enter__(self) -> "ListingStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class StreamingSearchSource:
    """A source backed by a paginated category search.

    Args:
        prefix: Provider prefix used in the identifier (e.g. 'azn')
        category: Provider-native category id
        max_items: Cap on listings consumed per run
        stream_fn: Generator function ``(client, category) -> listings``
    """

    def __init__(
        self,
        prefix: str,
        category: str,
        max_items: int,
        stream_fn: Callable[["RetryingClient", str], Iterable[Listing]],
    ) -> None:
        self.prefix = prefix
        self.category = category
        self.max_items = max_items
        self.stream_fn = stream_fn

    def identifier(self) -> str:
        return f"{self.prefix}/{self.category}"

    def update(self, client: "RetryingClient", db: "Database") -> ListingStream:
        return ListingStream(
            lambda: self.stream_fn(client, self.category),
            name=f"source-{self.identifier()}",
        )

    def __repr__(self) -> str:
        return f"StreamingSearchSource({self.identifier()!r}, max_items={self.max_items})"
