"""Retrying, deduplicating transcription client.

Looks up the cache by content hash, otherwise calls the service with
bounded exponential backoff on transient failures and writes the result
through to the cache before returning it. Within one client (one run),
concurrent requests for the same audio share a single outbound call.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Callable

from rich.markup import escape

from subalign.core.config import TranscriptionConfig
from subalign.core.errors import (
    CacheIOError,
    PermanentTranscriptionError,
    TranscriptionCancelled,
    TransientTranscriptionError,
)
from subalign.core.events import CancellationToken
from subalign.core.models import TranscriptSegment
from subalign.transcriber.api import TranscriptionService
from subalign.transcriber.cache import TranscriptionCache
from subalign.utils.audio import wav_duration
from subalign.utils.cache import content_hash
from subalign.utils.console import console


class TranscriptionClient:
    """Transcribe audio clips with caching, retry and per-run dedup.

    Args:
        service: The external speech-to-text capability.
        cache: Optional durable cache; None disables persistence.
        config: Retry and language settings.
        sleep: Backoff sleeper. When None, backoff waits on the run's
            cancellation token (or time.sleep without one).
    """

    def __init__(
        self,
        service: TranscriptionService,
        cache: TranscriptionCache | None = None,
        config: TranscriptionConfig | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.service = service
        self.cache = cache
        self.config = config or TranscriptionConfig()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._inflight: dict[str, Future] = {}
        self.calls = 0

    @property
    def engine_version(self) -> str:
        return self.service.engine_version

    def transcribe(
        self,
        audio_bytes: bytes,
        language_hint: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> TranscriptSegment:
        """Transcribe one WAV clip; times in the result are clip-relative.

        Raises:
            PermanentTranscriptionError: Fails fast, never retried.
            TransientTranscriptionError: Retries exhausted.
            TranscriptionCancelled: Cancelled before or during backoff.
        """
        key = content_hash(audio_bytes)

        cached = self._cache_get(key)
        if cached is not None:
            return cached

        with self._lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = self._inflight[key] = Future()

        if not owner:
            return future.result()

        try:
            segment = self._call_with_retry(key, audio_bytes, language_hint, cancel)
            self._cache_put(key, segment)
        except BaseException as e:
            # Failures are not memoized: a later request may try again.
            with self._lock:
                del self._inflight[key]
            future.set_exception(e)
            raise

        future.set_result(segment)
        return segment

    def _call_with_retry(
        self,
        key: str,
        audio_bytes: bytes,
        language_hint: str | None,
        cancel: CancellationToken | None,
    ) -> TranscriptSegment:
        cfg = self.config
        delay = cfg.initial_backoff
        last_error: TransientTranscriptionError | None = None
        for attempt in range(1, cfg.max_attempts + 1):
            if cancel is not None and cancel.cancelled:
                raise TranscriptionCancelled(
                    "run cancelled", content_hash=key, attempts=attempt - 1
                )

            with self._lock:
                self.calls += 1
            try:
                result = self.service.submit(audio_bytes, language_hint)
            except PermanentTranscriptionError as e:
                e.content_hash = key
                e.attempts = attempt
                raise
            except TransientTranscriptionError as e:
                e.content_hash = key
                e.attempts = attempt
                last_error = e
                if attempt < cfg.max_attempts:
                    wait = min(delay, cfg.max_backoff)
                    console.print(
                        f"[yellow]{escape(e.reason)}, retrying in {wait:.1f}s "
                        f"(attempt {attempt}/{cfg.max_attempts})...[/yellow]"
                    )
                    self._backoff(wait, key, attempt, cancel)
                    delay *= cfg.backoff_multiplier
                continue

            duration = wav_duration(audio_bytes)
            start = result.start if result.start is not None else 0.0
            end = result.end if result.end is not None else duration
            if end <= start:
                end = max(duration, start + 0.001)
            return TranscriptSegment(
                start=start, end=end, text=result.text.strip(), source_hash=key
            )

        raise last_error

    def _backoff(
        self, wait: float, key: str, attempt: int, cancel: CancellationToken | None
    ) -> None:
        if self._sleep is not None:
            self._sleep(wait)
            cancelled = cancel is not None and cancel.cancelled
        elif cancel is not None:
            cancelled = cancel.wait(wait)
        else:
            time.sleep(wait)
            cancelled = False
        if cancelled:
            raise TranscriptionCancelled("run cancelled", content_hash=key, attempts=attempt)

    def _cache_get(self, key: str) -> TranscriptSegment | None:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key, self.engine_version)
        except CacheIOError as e:
            console.print(f"[yellow]Cache read failed, calling service:[/yellow] {escape(str(e))}")
            return None

    def _cache_put(self, key: str, segment: TranscriptSegment) -> None:
        if self.cache is None:
            return
        try:
            self.cache.put(key, self.engine_version, segment)
        except CacheIOError as e:
            console.print(
                f"[yellow]Cache write failed, result not cached:[/yellow] {escape(str(e))}"
            )
