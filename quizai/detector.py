from __future__ import annotations

import re
from typing import List

_QUESTION_HEADER = re.compile(r"^(?:question|câu(?:\s+hỏi)?|q)\s*\d+\s*[:.)\-]?", re.I)
_NUMBERED = re.compile(r"^\d{1,3}\s*[.)]\s+\S")
_OPTION = re.compile(r"^(?:\(?[A-Fa-f]\)|[A-Fa-f][.:])\s*\S")
_ANSWER = re.compile(r"^(?:correct\s+answer|answer|đáp\s+án|key)\s*[:：]", re.I)

MIN_QUESTIONS = 2
MIN_OPTIONS_PER_QUESTION = 2


def _lines(text: str) -> List[str]:
    return [ln.strip() for ln in (text or "").splitlines() if ln.strip()]


def looks_like_formatted_quiz(text: str) -> bool:
    """
    True when `text` already reads like a finished multiple-choice quiz:
    at least two question stems, each followed by lettered options on
    average. Answer-key lines count as supporting evidence for borderline
    option density. Pure function of its input.
    """
    questions = 0
    options = 0
    answers = 0
    for ln in _lines(text):
        if _OPTION.match(ln):
            options += 1
        elif _ANSWER.match(ln):
            answers += 1
        elif _QUESTION_HEADER.match(ln) or _NUMBERED.match(ln) or ln.endswith("?"):
            questions += 1

    if questions < MIN_QUESTIONS:
        return False
    if options >= questions * MIN_OPTIONS_PER_QUESTION:
        return True
    return answers >= questions and options >= questions
