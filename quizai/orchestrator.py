from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from .aggregator import AggregatedContent, Payload
from .errors import ErrorKind, QuizAIError, RateLimited, error_kind
from .rate_limiter import Identity, RateLimiter
from .schemas import Quiz, QuizConfiguration
from .settings import settings
from .sources import SessionGuard

logger = logging.getLogger(__name__)

START_PERCENT = 10
SETTLED_PERCENT = 95
STATUS_THINKING = "AI is thinking..."


class GenerationService(Protocol):
    async def generate(
        self,
        content: Payload,
        config: QuizConfiguration,
        title_hint: str = "",
        preformatted: bool = False,
    ) -> Quiz: ...


class GenerationState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    ATTEMPTING = "attempting"
    RETRY_WAITING = "retry_waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class GenerationAttempt:
    attempt_number: int
    max_attempts: int
    progress_percent: int = 0


@dataclass(frozen=True)
class GenerationSuccess:
    quiz: Quiz
    final_config: QuizConfiguration


@dataclass(frozen=True)
class GenerationRateLimited:
    limit: int

    @property
    def message(self) -> str:
        return RateLimited(self.limit).message


@dataclass(frozen=True)
class GenerationFailure:
    message: str


GenerationOutcome = Union[GenerationSuccess, GenerationRateLimited, GenerationFailure]


@dataclass(frozen=True)
class ProgressUpdate:
    state: GenerationState
    attempt: int
    max_attempts: int
    percent: int
    status: str


ProgressCallback = Callable[[ProgressUpdate], Any]
Sleep = Callable[[float], Awaitable[Any]]


def retry_status(attempt: int, max_attempts: int) -> str:
    return f"Retrying (attempt {attempt} of {max_attempts})..."


class GenerationOrchestrator:
    """
    Idle -> Checking -> Attempting -> Succeeded
                                   -> RetryWaiting -> Attempting
                                   -> Failed

    Attempts are strictly sequential. While one is in flight a cosmetic
    ticker nudges the progress percent toward an attempt-scaled ceiling; it is
    cancelled and awaited before the attempt's result is acted on.
    """

    def __init__(
        self,
        service: GenerationService,
        rate_limiter: RateLimiter,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        tick_interval: Optional[float] = None,
        progress_step: Optional[int] = None,
        progress_ceiling: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.service = service
        self.rate_limiter = rate_limiter
        self.max_retries = settings.max_generation_retries if max_retries is None else max_retries
        self.retry_base_delay = settings.retry_base_delay_ms / 1000.0 if retry_base_delay is None else retry_base_delay
        self.tick_interval = settings.progress_tick_ms / 1000.0 if tick_interval is None else tick_interval
        self.progress_step = settings.progress_step if progress_step is None else progress_step
        self.progress_ceiling = settings.progress_ceiling if progress_ceiling is None else progress_ceiling
        self.sleep = sleep

        self.state = GenerationState.IDLE
        self.attempt: Optional[GenerationAttempt] = None
        self.status = ""
        self._on_progress: Optional[ProgressCallback] = None

    # ------------------------------------------------------------------
    # progress
    # ------------------------------------------------------------------
    def _emit(self) -> None:
        if self._on_progress is None:
            return
        att = self.attempt
        update = ProgressUpdate(
            state=self.state,
            attempt=att.attempt_number if att else 0,
            max_attempts=att.max_attempts if att else self.max_retries,
            percent=att.progress_percent if att else 0,
            status=self.status,
        )
        try:
            self._on_progress(update)
        except Exception as e:
            logger.warning("progress_callback_failed error=%s", e)

    def _set_percent(self, percent: int) -> None:
        if self.attempt is None:
            return
        self.attempt.progress_percent = max(0, min(100, int(percent)))
        self._emit()

    def ceiling_for(self, attempt_number: int) -> int:
        return self.progress_ceiling - self.progress_step * attempt_number

    async def _tick(self, attempt: GenerationAttempt) -> None:
        ceiling = self.ceiling_for(attempt.attempt_number)
        while attempt.progress_percent < ceiling:
            await asyncio.sleep(self.tick_interval)
            self._set_percent(min(attempt.progress_percent + self.progress_step, ceiling))

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------
    def _transition(self, state: GenerationState, status: Optional[str] = None) -> None:
        self.state = state
        if status is not None:
            self.status = status
        logger.debug("generation_state state=%s", state.value)
        self._emit()

    def _finish(self, outcome: GenerationOutcome) -> GenerationOutcome:
        self.attempt = None
        self._on_progress = None
        return outcome

    async def run(
        self,
        content: AggregatedContent,
        config: QuizConfiguration,
        identity: Identity,
        on_progress: Optional[ProgressCallback] = None,
        guard: Optional[SessionGuard] = None,
    ) -> GenerationOutcome:
        self.state = GenerationState.IDLE
        self.status = ""
        self.attempt = None
        self._on_progress = on_progress

        self._transition(GenerationState.CHECKING, "Checking quota...")
        if not self.rate_limiter.check_and_consume(identity):
            limit = self.rate_limiter.limit
            self._transition(GenerationState.FAILED, "")
            logger.info("generation_rate_limited limit=%d", limit)
            return self._finish(GenerationRateLimited(limit))

        attempt_number = 0
        while True:
            if attempt_number > 0:
                self.attempt = GenerationAttempt(attempt_number, self.max_retries, self.attempt.progress_percent)
                self._transition(GenerationState.RETRY_WAITING, retry_status(attempt_number, self.max_retries))
                await self.sleep(self.retry_base_delay * attempt_number)
                status = self.status
            else:
                status = STATUS_THINKING

            self.attempt = GenerationAttempt(attempt_number, self.max_retries, START_PERCENT + self.progress_step * attempt_number)
            self._transition(GenerationState.ATTEMPTING, status)

            try:
                quiz = await self._attempt(content, config)
            except Exception as e:
                kind = error_kind(e)
                message = e.message if isinstance(e, QuizAIError) else str(e)
                logger.warning(
                    "generation_attempt_failed attempt=%d/%d kind=%s error=%s",
                    attempt_number + 1,
                    self.max_retries + 1,
                    kind.value,
                    message,
                )
                if kind == ErrorKind.TRANSIENT and attempt_number < self.max_retries:
                    attempt_number += 1
                    continue
                self._transition(GenerationState.FAILED, "")
                return self._finish(GenerationFailure(message or "Failed to generate quiz."))

            self._set_percent(SETTLED_PERCENT)
            if guard is not None and not guard.current:
                self._transition(GenerationState.FAILED, "")
                logger.info("generation_superseded attempt=%d", attempt_number + 1)
                return self._finish(GenerationFailure("Superseded by a newer request."))

            self.rate_limiter.record_usage(identity)
            self.attempt.progress_percent = 100
            self._transition(GenerationState.SUCCEEDED, "")
            logger.info(
                "generation_succeeded attempts=%d questions=%d",
                attempt_number + 1,
                len(quiz.questions),
            )
            return self._finish(GenerationSuccess(quiz=quiz, final_config=config))

    async def _attempt(self, content: AggregatedContent, config: QuizConfiguration) -> Quiz:
        attempt = self.attempt
        ticker = asyncio.create_task(self._tick(attempt))
        try:
            return await self.service.generate(
                content.payload,
                config,
                content.title_suggestion,
                preformatted=content.looks_preformatted,
            )
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
