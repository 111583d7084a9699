from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import anyio

from .errors import FatalGenerationFailure, GenerationError, TransientGenerationFailure
from .extraction import ImagePayload
from .schemas import Question, Quiz, QuizConfiguration
from .settings import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"
SUPPORTED_PROVIDERS = ("openai", "claude")
QUIZ_MAX_TOKENS = 8192
OCR_MAX_TOKENS = 4096
SNIPPET_CHARS = 500

# Appears in the message of every malformed-output failure. Retry decisions
# use the exception type, never this text.
TRANSIENT_FAILURE_MARKER = "AI failed to generate quiz"

OCR_INSTRUCTION = (
    "Extract all visible text from this image. Respond with only the extracted text, without any "
    "additional commentary, formatting, or markdown. Just return the raw text content found in the image."
)

Content = Union[str, ImagePayload]


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------
def _json_schema_instruction(language: str) -> str:
    return f"""
JSON output schema (follow strictly):
{{
  "title": "string (creative and relevant quiz title in {language})",
  "questions": [
    {{
      "id": "string (unique, e.g. 'q1', 'q2')",
      "questionText": "string (clear, unambiguous multiple-choice question in {language})",
      "options": ["string (3-5 distinct, plausible, complete options in {language})"],
      "correctAnswer": "string (the exact text of the correct option from 'options')",
      "explanation": "string (2-4 sentences in {language}: why the answer is right and the distractors are wrong)"
    }}
  ]
}}
"""


@dataclass
class QuizPrompt:
    system: str
    text: str
    image: Optional[ImagePayload]
    snippet: str


def build_quiz_prompt(
    content: Content,
    config: QuizConfiguration,
    title_hint: str = "",
    preformatted: bool = False,
) -> QuizPrompt:
    """
    Single prompt shared by every provider. User instructions shape content and
    style; the JSON contract and the multiple-choice format are not negotiable.
    """
    language = (config.language or "English").strip() or "English"
    custom = (config.custom_prompt or "").strip()

    system = f"""You are an expert quiz designer who writes MULTIPLE-CHOICE questions only.
Your output MUST be a single valid JSON object matching the schema. No text or markdown outside it.
The whole quiz (title, questions, options, explanations) MUST be in {language}.

If the USER INSTRUCTIONS block below contains text, it defines the content, style, tone and focus of
the quiz and takes precedence over general guidelines. Extra material it asks for (IPA, etymology,
example sentences) belongs in the 'explanation' field. The JSON format still applies.

BEGIN USER INSTRUCTIONS
{custom if custom else "No specific user instructions. Default quiz generation guidelines apply."}
END USER INSTRUCTIONS

Every string must be complete, quoted and escaped. Never truncate a string or leave an array open;
shorten an explanation instead. A LaTeX backslash must be written as a double backslash."""

    if title_hint:
        title_instruction = f'The quiz title should be relevant to "{title_hint}".'
    else:
        title_instruction = "Suggest a creative and relevant title for this quiz."

    if config.ai_determined:
        aim = config.num_questions if config.num_questions > 0 else "between 5 and 10, adjusted to the content length and complexity"
        count_instruction = (
            f"Determine the best number of questions (aim for {aim}) and their difficulty from the content. "
            "Use a balanced mix of difficulties where appropriate."
        )
    else:
        count_instruction = (
            f"The quiz must have exactly {config.num_questions} questions, all at {config.difficulty.value} difficulty."
        )

    preformatted_instruction = ""
    if preformatted:
        preformatted_instruction = (
            "The source already is a formatted quiz. Keep its questions, options and answers verbatim; "
            "only convert them to the JSON schema and write missing explanations."
        )

    instructions = "\n".join(
        part
        for part in (
            title_instruction,
            count_instruction,
            preformatted_instruction,
            "ALL questions MUST be multiple-choice.",
            _json_schema_instruction(language),
        )
        if part
    )

    if isinstance(content, ImagePayload):
        return QuizPrompt(
            system=system,
            text=f'Instructions for a multiple-choice quiz based on the preceding image: """{instructions}"""',
            image=content,
            snippet=f"Image content ({content.mime_type})",
        )

    snippet = content[:SNIPPET_CHARS] + ("..." if len(content) > SNIPPET_CHARS else "")
    return QuizPrompt(
        system=system,
        text=f'Source Text: """{content}"""\n\nInstructions for multiple-choice quiz generation: """{instructions}"""',
        image=None,
        snippet=snippet,
    )


# ---------------------------------------------------------------------------
# Provider calls (blocking; run in a worker thread)
# ---------------------------------------------------------------------------
def generate_with_openai(
    system: str,
    text: str,
    image: Optional[ImagePayload] = None,
    model: Optional[str] = None,
    max_tokens: int = QUIZ_MAX_TOKENS,
) -> str:
    model = (model or DEFAULT_OPENAI_MODEL).strip()

    try:
        from openai import OpenAI  # type: ignore
    except Exception as e:
        raise RuntimeError("openai package not installed. Run: pip install openai") from e

    content: List[Dict[str, Any]] = []
    if image is not None:
        content.append(
            {"type": "input_image", "image_url": f"data:{image.mime_type};base64,{image.base64_data}"}
        )
    content.append({"type": "input_text", "text": text})

    client = OpenAI()
    resp = client.responses.create(
        model=model,
        instructions=system or None,
        input=[{"role": "user", "content": content}],
        max_output_tokens=max_tokens,
    )

    if hasattr(resp, "output_text"):
        return (resp.output_text or "").strip()  # type: ignore[attr-defined]

    parts: List[str] = []
    for item in getattr(resp, "output", []) or []:
        for c in getattr(item, "content", []) or []:
            if getattr(c, "type", "") == "output_text":
                parts.append(getattr(c, "text", ""))
    return "".join(parts).strip()


def generate_with_claude(
    system: str,
    text: str,
    image: Optional[ImagePayload] = None,
    model: Optional[str] = None,
    max_tokens: int = QUIZ_MAX_TOKENS,
) -> str:
    model = (model or DEFAULT_CLAUDE_MODEL).strip()

    try:
        import anthropic  # type: ignore
    except Exception as e:
        raise RuntimeError("anthropic package not installed. Run: pip install anthropic") from e

    content: List[Dict[str, Any]] = []
    if image is not None:
        content.append(
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.base64_data},
            }
        )
    content.append({"type": "text", "text": text})

    params: Dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": content}],
    }
    if system:
        params["system"] = system

    client = anthropic.Anthropic()
    msg = client.messages.create(**params)

    out: List[str] = []
    for block in getattr(msg, "content", []) or []:
        if getattr(block, "type", "") == "text":
            out.append(getattr(block, "text", ""))
    return "".join(out).strip()


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------
_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.S)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def _balanced_json_span(s: str) -> Optional[str]:
    starts = [i for i in (s.find("{"), s.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return s[start : i + 1]
    return None


def parse_json_from_model_text(text: str) -> Optional[Any]:
    """
    Best-effort JSON recovery from a model reply: code fences, trailing commas
    and leading/trailing chatter are tolerated. Returns None when nothing parses.
    """
    s = (text or "").strip()
    m = _FENCE.match(s)
    if m:
        s = m.group(1).strip()
    s = _TRAILING_COMMA.sub(r"\1", s)

    try:
        return json.loads(s)
    except ValueError:
        pass

    span = _balanced_json_span(s)
    if span is None:
        logger.warning("model_json_unparseable chars=%d head=%r", len(s), s[:200])
        return None
    try:
        return json.loads(_TRAILING_COMMA.sub(r"\1", span))
    except ValueError as e:
        logger.warning("model_json_fallback_failed error=%s head=%r", e, span[:200])
        return None


def _pick(d: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in d:
            return d[k]
    return None


def _coerce_question(raw: Any, index: int) -> Optional[Question]:
    if not isinstance(raw, dict):
        return None
    qid = str(_pick(raw, "id") or f"q{index + 1}")
    text = _pick(raw, "questionText", "question_text", "question")
    if not isinstance(text, str) or not text.strip():
        return None

    options = _pick(raw, "options")
    if not isinstance(options, list) or len(options) < 2:
        logger.warning("question_options_invalid id=%s", qid)
        options = [f"Generated Option A for {qid}", f"Generated Option B for {qid}", f"Generated Option C for {qid}"]
    options = [str(o) for o in options]

    correct = _pick(raw, "correctAnswer", "correct_answer", "answer")
    correct = correct if isinstance(correct, str) else ""
    if correct not in options:
        logger.warning("question_answer_not_in_options id=%s", qid)
        correct = options[0]

    explanation = _pick(raw, "explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        explanation = "No explanation provided by AI. Consider regenerating or editing."

    return Question(
        id=qid,
        question_text=text.strip(),
        options=options,
        correct_answer=correct,
        explanation=explanation,
    )


def quiz_from_model_text(text: str, snippet: str = "") -> Quiz:
    data = parse_json_from_model_text(text)
    if not isinstance(data, dict):
        raise TransientGenerationFailure(
            f"The {TRANSIENT_FAILURE_MARKER} in the expected format. Please try again."
        )

    title = data.get("title")
    raw_questions = data.get("questions")
    if not isinstance(title, str) or not title.strip() or not isinstance(raw_questions, list) or not raw_questions:
        raise TransientGenerationFailure(
            f"The {TRANSIENT_FAILURE_MARKER} in the expected format or returned an empty/invalid quiz."
        )

    questions = [q for q in (_coerce_question(r, i) for i, r in enumerate(raw_questions)) if q is not None]
    if not questions:
        raise TransientGenerationFailure(
            f"The {TRANSIENT_FAILURE_MARKER}: no usable questions were returned."
        )
    return Quiz(title=title.strip(), questions=questions, source_content_snippet=snippet)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
def describe_provider_error(exc: BaseException, provider: str = "") -> FatalGenerationFailure:
    """User-facing message for a provider/SDK failure."""
    raw = str(exc)
    low = raw.lower()
    name = type(exc).__name__.lower()
    label = {"openai": "OpenAI", "claude": "Anthropic"}.get(provider, "AI")

    if "api key" in low or "api_key" in low or "authentication" in name or "permission" in name:
        msg = f"Invalid or missing {label} API key. Please check the provider key in your environment."
    elif "deadline exceeded" in low or "timeout" in name or "timed out" in low:
        msg = "The AI took too long to respond. Please try again or simplify the content."
    elif "quota" in low or "ratelimit" in name or "rate limit" in low:
        msg = f"{label} API quota exceeded. Please check your plan or try again later."
    elif "not installed" in low:
        msg = raw
    elif (
        "500" in low
        or "unknown" in low
        or "connection" in name
        or "internalserver" in name
        or "overloaded" in low
    ):
        msg = (
            "An unexpected error occurred while communicating with the AI service. "
            "Please check your internet connection and try again in a few moments."
        )
    else:
        msg = "Failed to generate quiz. An unexpected error occurred. Please try again later."
    return FatalGenerationFailure(msg, cause=exc)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class QuizGenerationService:
    """
    Generation collaborator for the orchestrator and OCR collaborator for the
    extractor. Errors always leave as GenerationError subclasses.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        ocr_model: Optional[str] = None,
    ) -> None:
        self.provider = (provider or settings.provider).strip().lower()
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unknown provider: {self.provider}")
        self.model = model or settings.gen_model or None
        self.ocr_model = ocr_model or settings.ocr_model or self.model

    def _complete(self, system: str, text: str, image: Optional[ImagePayload], model: Optional[str], max_tokens: int) -> str:
        if self.provider == "openai":
            return generate_with_openai(system, text, image=image, model=model, max_tokens=max_tokens)
        return generate_with_claude(system, text, image=image, model=model, max_tokens=max_tokens)

    async def generate(
        self,
        content: Content,
        config: QuizConfiguration,
        title_hint: str = "",
        preformatted: bool = False,
    ) -> Quiz:
        prompt = build_quiz_prompt(content, config, title_hint, preformatted=preformatted)
        logger.info(
            "quiz_generate_start provider=%s model=%s image=%s ai_mode=%s",
            self.provider,
            self.model or "default",
            prompt.image is not None,
            config.ai_determined,
        )
        try:
            reply = await anyio.to_thread.run_sync(
                lambda: self._complete(prompt.system, prompt.text, prompt.image, self.model, QUIZ_MAX_TOKENS)
            )
        except GenerationError:
            raise
        except Exception as e:
            logger.warning("quiz_generate_provider_error provider=%s error=%s", self.provider, e)
            raise describe_provider_error(e, self.provider) from e

        quiz = quiz_from_model_text(reply, snippet=prompt.snippet)
        logger.info("quiz_generate_done title=%r questions=%d", quiz.title, len(quiz.questions))
        return quiz

    async def ocr_image(self, image: ImagePayload) -> Optional[str]:
        try:
            reply = await anyio.to_thread.run_sync(
                lambda: self._complete("", OCR_INSTRUCTION, image, self.ocr_model, OCR_MAX_TOKENS)
            )
        except Exception as e:
            logger.warning("ocr_provider_error provider=%s error=%s", self.provider, e)
            raise describe_provider_error(e, self.provider) from e
        text = (reply or "").strip()
        return text or None
