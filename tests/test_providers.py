from __future__ import annotations

import asyncio
import json

import pytest

from quizai import providers
from quizai.errors import ErrorKind, FatalGenerationFailure, TransientGenerationFailure, error_kind
from quizai.extraction import ImagePayload
from quizai.providers import (
    TRANSIENT_FAILURE_MARKER,
    QuizGenerationService,
    build_quiz_prompt,
    describe_provider_error,
    parse_json_from_model_text,
    quiz_from_model_text,
)
from quizai.schemas import Difficulty, QuizConfiguration

GOOD = {
    "title": "Cell Biology",
    "questions": [
        {
            "id": "q1",
            "questionText": "What is the powerhouse of the cell?",
            "options": ["Nucleus", "Mitochondria", "Ribosome"],
            "correctAnswer": "Mitochondria",
            "explanation": "Mitochondria produce ATP.",
        }
    ],
}


def test_parse_plain_and_fenced_json() -> None:
    assert parse_json_from_model_text(json.dumps(GOOD)) == GOOD
    assert parse_json_from_model_text("```json\n" + json.dumps(GOOD) + "\n```") == GOOD
    assert parse_json_from_model_text("```\n{\"a\": 1}\n```") == {"a": 1}


def test_parse_tolerates_trailing_commas_and_chatter() -> None:
    assert parse_json_from_model_text('{"a": [1, 2,], "b": {"c": 3,},}') == {"a": [1, 2], "b": {"c": 3}}
    text = 'Sure! Here is your quiz: {"title": "T {x}", "questions": []} Hope it helps.'
    assert parse_json_from_model_text(text) == {"title": "T {x}", "questions": []}


def test_parse_returns_none_for_garbage() -> None:
    assert parse_json_from_model_text("no json here") is None
    assert parse_json_from_model_text('{"title": "cut off') is None
    assert parse_json_from_model_text("") is None


def test_quiz_from_model_text_builds_quiz() -> None:
    quiz = quiz_from_model_text(json.dumps(GOOD), snippet="cells...")
    assert quiz.title == "Cell Biology"
    assert quiz.questions[0].correct_answer == "Mitochondria"
    assert quiz.source_content_snippet == "cells..."


def test_quiz_from_model_text_repairs_questions() -> None:
    raw = {
        "title": "Repairs",
        "questions": [
            {"questionText": "Pick one", "options": ["a", "b"], "correctAnswer": "zzz"},
            {"question_text": "Only one option?", "options": ["x"], "correct_answer": "x", "explanation": "fine"},
            {"options": ["no", "text"]},
            "not a dict",
        ],
    }
    quiz = quiz_from_model_text(json.dumps(raw))
    assert [q.id for q in quiz.questions] == ["q1", "q2"]

    first, second = quiz.questions
    assert first.correct_answer == "a"
    assert first.explanation.startswith("No explanation provided")
    assert second.options == ["Generated Option A for q2", "Generated Option B for q2", "Generated Option C for q2"]
    assert second.correct_answer == second.options[0]
    assert second.explanation == "fine"


@pytest.mark.parametrize(
    "reply",
    [
        "I cannot help with that.",
        json.dumps({"title": "", "questions": GOOD["questions"]}),
        json.dumps({"title": "T", "questions": []}),
        json.dumps({"title": "T", "questions": [{"options": ["a", "b"]}]}),
        json.dumps([GOOD]),
    ],
)
def test_malformed_replies_are_transient(reply: str) -> None:
    with pytest.raises(TransientGenerationFailure) as info:
        quiz_from_model_text(reply)
    assert TRANSIENT_FAILURE_MARKER in info.value.message
    assert error_kind(info.value) == ErrorKind.TRANSIENT


def test_prompt_ai_mode_and_manual_mode() -> None:
    ai = build_quiz_prompt("Text about cells", QuizConfiguration(language="Vietnamese"), title_hint="bio")
    assert "MUST be in Vietnamese" in ai.system
    assert "Determine the best number of questions" in ai.text
    assert 'relevant to "bio"' in ai.text
    assert ai.image is None

    hinted = build_quiz_prompt("x", QuizConfiguration(num_questions=7))
    assert "aim for 7" in hinted.text

    manual = build_quiz_prompt("x", QuizConfiguration(num_questions=12, difficulty=Difficulty.HARD))
    assert "exactly 12 questions, all at Hard difficulty" in manual.text
    assert "Suggest a creative and relevant title" in manual.text


def test_prompt_custom_instructions_and_preformatted() -> None:
    cfg = QuizConfiguration(custom_prompt="Include IPA for every word")
    p = build_quiz_prompt("word list", cfg, preformatted=True)
    assert "Include IPA for every word" in p.system
    assert "already is a formatted quiz" in p.text

    plain = build_quiz_prompt("word list", QuizConfiguration())
    assert "No specific user instructions" in plain.system
    assert "already is a formatted quiz" not in plain.text


def test_prompt_for_image_and_snippet() -> None:
    img = ImagePayload("YWJj", "image/png")
    p = build_quiz_prompt(img, QuizConfiguration())
    assert p.image is img
    assert p.snippet == "Image content (image/png)"
    assert "Source Text" not in p.text

    long_text = "a" * 600
    assert build_quiz_prompt(long_text, QuizConfiguration()).snippet == "a" * 500 + "..."


def test_describe_provider_error_messages() -> None:
    assert "API key" in describe_provider_error(Exception("Incorrect API key provided"), "openai").message
    assert "OpenAI" in describe_provider_error(Exception("invalid api_key"), "openai").message
    assert "took too long" in describe_provider_error(Exception("Deadline exceeded"), "claude").message
    assert "quota exceeded" in describe_provider_error(Exception("You exceeded your current quota"), "claude").message
    assert "internet connection" in describe_provider_error(Exception("HTTP 500 from upstream")).message
    generic = describe_provider_error(Exception("weird"))
    assert generic.message.startswith("Failed to generate quiz.")
    assert isinstance(generic, FatalGenerationFailure)
    assert error_kind(generic) == ErrorKind.FATAL


def test_service_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError):
        QuizGenerationService(provider="mistral")


def test_service_generate_uses_selected_provider(monkeypatch) -> None:
    seen = {}

    def fake_openai(system, text, image=None, model=None, max_tokens=0):
        seen.update(system=system, text=text, image=image, model=model)
        return "```json\n" + json.dumps(GOOD) + "\n```"

    monkeypatch.setattr(providers, "generate_with_openai", fake_openai)
    service = QuizGenerationService(provider="openai", model="gpt-test")
    quiz = asyncio.run(service.generate("Cells are small.", QuizConfiguration(), "bio"))

    assert quiz.title == "Cell Biology"
    assert quiz.source_content_snippet == "Cells are small."
    assert seen["model"] == "gpt-test"
    assert "Cells are small." in seen["text"]


def test_service_maps_sdk_errors_to_fatal(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise RuntimeError("Error code: 401 - invalid api key")

    monkeypatch.setattr(providers, "generate_with_claude", boom)
    service = QuizGenerationService(provider="claude")
    with pytest.raises(FatalGenerationFailure) as info:
        asyncio.run(service.generate("x", QuizConfiguration()))
    assert "Anthropic API key" in info.value.message
    assert isinstance(info.value.cause, RuntimeError)


def test_service_bad_reply_is_transient(monkeypatch) -> None:
    monkeypatch.setattr(providers, "generate_with_openai", lambda *a, **k: "sorry, no")
    service = QuizGenerationService(provider="openai")
    with pytest.raises(TransientGenerationFailure):
        asyncio.run(service.generate("x", QuizConfiguration()))


def test_service_ocr(monkeypatch) -> None:
    calls = []

    def fake_openai(system, text, image=None, model=None, max_tokens=0):
        calls.append((system, image, max_tokens))
        return "  E = mc^2  "

    monkeypatch.setattr(providers, "generate_with_openai", fake_openai)
    service = QuizGenerationService(provider="openai", ocr_model="vision-x")
    img = ImagePayload("YWJj", "image/png")

    assert asyncio.run(service.ocr_image(img)) == "E = mc^2"
    assert calls == [("", img, providers.OCR_MAX_TOKENS)]

    monkeypatch.setattr(providers, "generate_with_openai", lambda *a, **k: "   ")
    assert asyncio.run(service.ocr_image(img)) is None
