from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .schemas import MANUAL_DIFFICULTIES, Difficulty, QuizConfiguration

DEFAULT_MANUAL_DIFFICULTY = Difficulty.MEDIUM
DEFAULT_MANUAL_NUM_QUESTIONS = 10

LOCALE_LANGUAGES = {
    "en": "English",
    "vi": "Vietnamese",
}


def language_for_locale(locale: str) -> str:
    code = (locale or "en").strip().lower().replace("_", "-").split("-")[0]
    return LOCALE_LANGUAGES.get(code, "English")


@dataclass(frozen=True)
class AIMode:
    pass


@dataclass(frozen=True)
class ManualMode:
    pass


Mode = Union[AIMode, ManualMode]


@dataclass(frozen=True)
class ManualSettings:
    difficulty: Difficulty = DEFAULT_MANUAL_DIFFICULTY
    num_questions: int = DEFAULT_MANUAL_NUM_QUESTIONS


def resolve(
    mode: Mode,
    previous: QuizConfiguration,
    user_difficulty: Difficulty,
    user_num_questions: int,
    language: str,
) -> QuizConfiguration:
    """
    Canonical configuration for `mode`. Manual mode falls back to Medium / 10
    when the user values are not valid manual values.
    """
    if isinstance(mode, AIMode):
        return QuizConfiguration(
            num_questions=0,
            difficulty=Difficulty.AI_DETERMINED,
            language=language,
            custom_prompt=previous.custom_prompt,
        )

    difficulty = user_difficulty if user_difficulty in MANUAL_DIFFICULTIES else DEFAULT_MANUAL_DIFFICULTY
    num = user_num_questions if user_num_questions > 0 else DEFAULT_MANUAL_NUM_QUESTIONS
    return QuizConfiguration(
        num_questions=num,
        difficulty=difficulty,
        language=language,
        custom_prompt=previous.custom_prompt,
    )


class ConfigResolver:
    """
    Holds the AI-determined/manual toggle for one creation session.

    Entering AI mode snapshots the manual settings so that toggling back
    restores them; the snapshot is the only remembered state.
    """

    def __init__(self, locale: str = "en", ai_mode: bool = True) -> None:
        self.remembered = ManualSettings()
        self.language = language_for_locale(locale)
        self.mode: Mode = AIMode() if ai_mode else ManualMode()
        self.config = resolve(
            self.mode,
            QuizConfiguration(language=self.language),
            self.remembered.difficulty,
            self.remembered.num_questions,
            self.language,
        )

    @property
    def ai_mode(self) -> bool:
        return isinstance(self.mode, AIMode)

    def enter_ai_mode(self) -> QuizConfiguration:
        if self.ai_mode:
            return self.config
        cur = self.config
        self.remembered = ManualSettings(
            difficulty=cur.difficulty if cur.difficulty in MANUAL_DIFFICULTIES else self.remembered.difficulty,
            num_questions=cur.num_questions if cur.num_questions > 0 else self.remembered.num_questions,
        )
        self.mode = AIMode()
        self.config = resolve(self.mode, cur, self.remembered.difficulty, self.remembered.num_questions, self.language)
        return self.config

    def enter_manual_mode(self) -> QuizConfiguration:
        if not self.ai_mode:
            return self.config
        self.config = resolve(
            ManualMode(),
            self.config,
            self.remembered.difficulty,
            self.remembered.num_questions,
            self.language,
        )
        self.mode = ManualMode()
        return self.config

    def set_num_questions(self, value: int) -> QuizConfiguration:
        n = max(0, int(value))
        if self.ai_mode:
            self.config = self.config.model_copy(update={"num_questions": n})
            return self.config

        n = max(1, n)
        self.remembered = ManualSettings(self.remembered.difficulty, n)
        self.config = self.config.model_copy(update={"num_questions": n})
        return self.config

    def set_difficulty(self, difficulty: Difficulty) -> QuizConfiguration:
        difficulty = Difficulty(difficulty)
        if difficulty == Difficulty.AI_DETERMINED:
            return self.enter_ai_mode()

        self.remembered = ManualSettings(difficulty, self.remembered.num_questions)
        if self.ai_mode:
            return self.config

        self.config = self.config.model_copy(update={"difficulty": difficulty})
        return self.config

    def set_locale(self, locale: str) -> QuizConfiguration:
        self.language = language_for_locale(locale)
        self.config = self.config.model_copy(update={"language": self.language})
        return self.config

    def set_custom_prompt(self, text: Optional[str]) -> QuizConfiguration:
        self.config = self.config.model_copy(update={"custom_prompt": text})
        return self.config

    def final_config(self) -> QuizConfiguration:
        prompt = (self.config.custom_prompt or "").strip() or None
        return self.config.model_copy(update={"custom_prompt": prompt})
