from __future__ import annotations

from quizai.detector import looks_like_formatted_quiz

FORMATTED = """
Question 1: What is the capital of France?
A. Berlin
B. Paris
C. Rome
D. Madrid

Question 2: Which planet is known as the red planet?
A. Mars
B. Venus
C. Jupiter
D. Saturn
"""

VIETNAMESE = """
Câu 1: Thủ đô của Việt Nam là gì?
A. Hà Nội
B. Huế
Đáp án: A
Câu 2: Sông dài nhất Việt Nam?
A. Sông Hồng
B. Sông Mê Kông
Đáp án: B
"""

PROSE = """
The French Revolution began in 1789. It reshaped politics across Europe.
Historians still debate its causes: fiscal crisis, Enlightenment ideas and
food shortages all played a part. Why did it turn radical so quickly?
"""


def test_detects_lettered_quiz() -> None:
    assert looks_like_formatted_quiz(FORMATTED) is True


def test_detects_numbered_quiz_with_paren_options() -> None:
    text = "1) Largest ocean?\n(a) Atlantic\n(b) Pacific\n2) Smallest continent?\n(a) Europe\n(b) Australia\n"
    assert looks_like_formatted_quiz(text) is True


def test_detects_vietnamese_quiz_with_answer_key() -> None:
    assert looks_like_formatted_quiz(VIETNAMESE) is True


def test_prose_is_not_a_quiz() -> None:
    assert looks_like_formatted_quiz(PROSE) is False


def test_single_question_is_not_enough() -> None:
    assert looks_like_formatted_quiz("Question 1: Why?\nA. yes\nB. no\n") is False


def test_questions_without_options_are_not_a_quiz() -> None:
    assert looks_like_formatted_quiz("What is 2+2?\nWhat is 3+3?\nWhat is 4+4?\n") is False


def test_empty_text() -> None:
    assert looks_like_formatted_quiz("") is False


def test_detection_is_stable_for_same_input() -> None:
    results = {looks_like_formatted_quiz(FORMATTED) for _ in range(3)}
    assert results == {True}
