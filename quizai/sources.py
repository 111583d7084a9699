from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence, Union

from .errors import StaleSessionError

if TYPE_CHECKING:
    from .aggregator import AggregatedContent, ContentAggregator
    from .orchestrator import GenerationOrchestrator, GenerationOutcome, ProgressCallback
    from .rate_limiter import Identity
    from .schemas import QuizConfiguration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    name: str
    mime_type: str
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class FilesInput:
    files: List[SourceFile]


@dataclass(frozen=True)
class PastedTextInput:
    text: str


@dataclass(frozen=True)
class PromptInput:
    text: str


SourceInput = Union[FilesInput, PastedTextInput, PromptInput]


class SessionGuard:
    """Captured session token; `check()` after every await."""

    def __init__(self, session: "IntakeSession", token: int) -> None:
        self._session = session
        self.token = token

    @property
    def current(self) -> bool:
        return self._session.token == self.token

    def check(self) -> None:
        if not self.current:
            raise StaleSessionError(self.token, self._session.token)


class IntakeSession:
    """
    One user's creation flow. Exactly one SourceInput is active; picking a new
    one replaces the previous and bumps the token, so results still in flight
    for the old input are dropped when they resolve.
    """

    def __init__(self) -> None:
        self.token = 0
        self.source: Optional[SourceInput] = None
        self.content: Optional["AggregatedContent"] = None

    def _select(self, source: SourceInput) -> SourceInput:
        self.token += 1
        self.source = source
        self.content = None
        return source

    def select_files(self, files: Sequence[SourceFile]) -> SourceInput:
        return self._select(FilesInput(list(files)))

    def select_text(self, text: str) -> SourceInput:
        return self._select(PastedTextInput(text))

    def select_prompt(self, text: str) -> SourceInput:
        return self._select(PromptInput(text))

    def guard(self) -> SessionGuard:
        return SessionGuard(self, self.token)

    async def aggregate(self, aggregator: "ContentAggregator") -> Optional["AggregatedContent"]:
        if self.source is None:
            raise ValueError("No source selected.")
        guard = self.guard()
        try:
            content = await aggregator.aggregate(self.source, guard=guard)
        except StaleSessionError as e:
            logger.info("intake_discarded token=%d current=%d", e.token, e.current)
            return None
        self.content = content
        return content

    async def generate(
        self,
        orchestrator: "GenerationOrchestrator",
        config: "QuizConfiguration",
        identity: "Identity",
        on_progress: Optional["ProgressCallback"] = None,
    ) -> Optional["GenerationOutcome"]:
        """
        Runs the orchestrator on the current content. Returns None when the
        session moved on while generation was in flight.
        """
        if self.content is None:
            raise ValueError("Nothing aggregated yet.")
        guard = self.guard()
        outcome = await orchestrator.run(self.content, config, identity, on_progress=on_progress, guard=guard)
        if not guard.current:
            logger.info("generation_discarded token=%d current=%d", guard.token, self.token)
            return None
        return outcome
