"""Text-completion oracle interface."""

from typing import AsyncIterator, Protocol

import structlog

from .errors import EmptyResponseError, OracleError

logger = structlog.get_logger(__name__)


class StreamObserver(Protocol):
    """Receives incremental text while a completion streams in."""

    def on_data(self, chunk: str) -> None:
        """Called with each partial piece of text."""
        ...

    def on_complete(self, full_text: str) -> None:
        """Called once with the full text when the stream ends."""
        ...


class TextOracle(Protocol):
    """Anything that turns a prompt into text.

    Implementations may raise at any time; callers treat any exception
    as a transport failure.
    """

    async def complete(
        self, prompt: str, observer: StreamObserver | None = None
    ) -> str:
        """Return the full completion for the prompt."""
        ...


async def stream_completion(
    chunks: AsyncIterator[str],
    observer: StreamObserver | None = None,
) -> str:
    """
    Drain a token stream, forwarding pieces to an observer.

    Adapters whose backend yields text incrementally use this to honour
    the observer contract. The stream always runs to completion.

    Args:
        chunks: Async iterator of partial text
        observer: Optional observer for partial text

    Returns:
        The concatenated text
    """
    parts: list[str] = []
    async for chunk in chunks:
        if not chunk:
            continue
        parts.append(chunk)
        if observer is not None:
            observer.on_data(chunk)

    full_text = "".join(parts)
    if observer is not None:
        observer.on_complete(full_text)
    return full_text


async def call_oracle(
    oracle: TextOracle,
    prompt: str,
    observer: StreamObserver | None = None,
) -> str:
    """Call the oracle and normalise every failure into OracleError."""
    try:
        response = await oracle.complete(prompt, observer)
    except OracleError:
        raise
    except Exception as e:
        logger.debug("oracle_call_failed", error=str(e), error_type=type(e).__name__)
        raise OracleError(f"{type(e).__name__}: {e}") from e

    if not isinstance(response, str) or not response.strip():
        raise EmptyResponseError("Oracle returned an empty response")
    return response
