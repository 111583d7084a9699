from __future__ import annotations

import dataclasses

import pytest
from pydantic import ValidationError

from quizai.config_resolver import AIMode, ConfigResolver, ManualMode, language_for_locale, resolve
from quizai.schemas import Difficulty, QuizConfiguration


def test_resolve_ai_mode_is_canonical() -> None:
    prev = QuizConfiguration(num_questions=7, difficulty=Difficulty.HARD, custom_prompt="focus on dates")
    cfg = resolve(AIMode(), prev, Difficulty.HARD, 7, "English")
    assert cfg.difficulty == Difficulty.AI_DETERMINED
    assert cfg.num_questions == 0
    assert cfg.custom_prompt == "focus on dates"


def test_resolve_manual_falls_back_to_medium_and_ten() -> None:
    prev = QuizConfiguration()
    cfg = resolve(ManualMode(), prev, Difficulty.AI_DETERMINED, 0, "English")
    assert cfg.difficulty == Difficulty.MEDIUM
    assert cfg.num_questions == 10

    cfg = resolve(ManualMode(), prev, Difficulty.EASY, 3, "Vietnamese")
    assert (cfg.difficulty, cfg.num_questions, cfg.language) == (Difficulty.EASY, 3, "Vietnamese")


def test_manual_values_live_in_config_not_in_mode() -> None:
    assert dataclasses.fields(ManualMode) == ()

    r = ConfigResolver(ai_mode=False)
    r.set_difficulty(Difficulty.HARD)
    cfg = r.set_num_questions(3)
    assert r.mode == ManualMode()
    assert (cfg.difficulty, cfg.num_questions) == (Difficulty.HARD, 3)
    assert resolve(r.mode, cfg, cfg.difficulty, cfg.num_questions, "English") == cfg


def test_configuration_rejects_manual_without_count() -> None:
    with pytest.raises(ValidationError):
        QuizConfiguration(num_questions=0, difficulty=Difficulty.EASY)
    assert QuizConfiguration(num_questions=0).ai_determined is True


def test_language_for_locale() -> None:
    assert language_for_locale("vi") == "Vietnamese"
    assert language_for_locale("vi-VN") == "Vietnamese"
    assert language_for_locale("en") == "English"
    assert language_for_locale("fr") == "English"
    assert language_for_locale("") == "English"


def test_default_is_ai_mode() -> None:
    r = ConfigResolver()
    assert r.ai_mode is True
    assert r.config.difficulty == Difficulty.AI_DETERMINED
    assert r.config.num_questions == 0


def test_toggle_restores_manual_values() -> None:
    r = ConfigResolver(ai_mode=False)
    r.set_difficulty(Difficulty.HARD)
    r.set_num_questions(15)

    r.enter_ai_mode()
    assert r.config.difficulty == Difficulty.AI_DETERMINED
    assert r.config.num_questions == 0

    cfg = r.enter_manual_mode()
    assert cfg.difficulty == Difficulty.HARD
    assert cfg.num_questions == 15


def test_first_manual_entry_uses_defaults() -> None:
    cfg = ConfigResolver().enter_manual_mode()
    assert cfg.difficulty == Difficulty.MEDIUM
    assert cfg.num_questions == 10


def test_count_hint_in_ai_mode_is_not_remembered() -> None:
    r = ConfigResolver()
    cfg = r.set_num_questions(7)
    assert cfg.num_questions == 7
    assert cfg.difficulty == Difficulty.AI_DETERMINED

    assert r.enter_manual_mode().num_questions == 10


def test_manual_count_is_clamped_to_one() -> None:
    r = ConfigResolver(ai_mode=False)
    assert r.set_num_questions(0).num_questions == 1
    assert r.set_num_questions(-4).num_questions == 1


def test_ai_mode_count_never_negative() -> None:
    assert ConfigResolver().set_num_questions(-3).num_questions == 0


def test_difficulty_in_ai_mode_only_updates_memory() -> None:
    r = ConfigResolver()
    cfg = r.set_difficulty(Difficulty.EASY)
    assert cfg.difficulty == Difficulty.AI_DETERMINED
    assert r.enter_manual_mode().difficulty == Difficulty.EASY


def test_choosing_ai_determined_difficulty_enters_ai_mode() -> None:
    r = ConfigResolver(ai_mode=False)
    r.set_difficulty(Difficulty.HARD)
    cfg = r.set_difficulty(Difficulty.AI_DETERMINED)
    assert r.ai_mode is True
    assert cfg.num_questions == 0
    assert r.enter_manual_mode().difficulty == Difficulty.HARD


def test_locale_and_prompt_survive_toggles() -> None:
    r = ConfigResolver(locale="vi")
    r.set_custom_prompt("  include IPA  ")
    r.enter_manual_mode()
    r.enter_ai_mode()
    cfg = r.final_config()
    assert cfg.language == "Vietnamese"
    assert cfg.custom_prompt == "include IPA"

    r.set_locale("en")
    assert r.config.language == "English"


def test_blank_custom_prompt_is_dropped() -> None:
    r = ConfigResolver()
    r.set_custom_prompt("   ")
    assert r.final_config().custom_prompt is None
