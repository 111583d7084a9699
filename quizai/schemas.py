from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"
    AI_DETERMINED = "AI-Determined"


MANUAL_DIFFICULTIES = (Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD)


class QuizConfiguration(BaseModel):
    num_questions: int = Field(0, ge=0)
    difficulty: Difficulty = Difficulty.AI_DETERMINED
    language: str = "English"
    custom_prompt: Optional[str] = None

    @model_validator(mode="after")
    def _manual_needs_count(self) -> "QuizConfiguration":
        # 0 only means "let the service decide" in AI-determined mode.
        if self.difficulty != Difficulty.AI_DETERMINED and self.num_questions < 1:
            raise ValueError("manual configuration needs num_questions >= 1")
        return self

    @property
    def ai_determined(self) -> bool:
        return self.difficulty == Difficulty.AI_DETERMINED


class Question(BaseModel):
    id: str
    question_text: str
    options: List[str]
    correct_answer: str
    explanation: str = ""


class Quiz(BaseModel):
    title: str
    questions: List[Question]
    source_content_snippet: str = ""


class IntakePreview(BaseModel):
    kind: str  # text | image
    text: Optional[str] = None
    image_mime_type: Optional[str] = None
    looks_preformatted: bool = False
    title_suggestion: str
    files: List[str] = []
