from __future__ import annotations

import argparse
import asyncio
import mimetypes
import os
import sys
import textwrap
import time
from typing import List, Optional

import anyio

import quiz_store
from quizai.aggregator import ContentAggregator
from quizai.config_resolver import ConfigResolver
from quizai.errors import QuizAIError
from quizai.extraction import TextExtractor
from quizai.logging_utils import configure_logging
from quizai.orchestrator import (
    GenerationOrchestrator,
    GenerationRateLimited,
    GenerationState,
    GenerationSuccess,
    ProgressUpdate,
)
from quizai.providers import DEFAULT_CLAUDE_MODEL, DEFAULT_OPENAI_MODEL, QuizGenerationService
from quizai.rate_limiter import RateLimiter, identity_for
from quizai.schemas import Difficulty, Quiz
from quizai.settings import settings
from quizai.sources import IntakeSession, SourceFile
from quizai.store import JsonFileStore


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _wrap(text: str, width: int) -> str:
    return "\n".join(
        textwrap.fill(line, width=width) if line.strip() else ""
        for line in text.splitlines()
    )


def _read_file_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


async def load_source_files(paths: List[str]) -> List[SourceFile]:
    out: List[SourceFile] = []
    for path in paths:
        data = await anyio.to_thread.run_sync(lambda: _read_file_bytes(path))
        mime, _ = mimetypes.guess_type(path)
        out.append(SourceFile(name=os.path.basename(path), mime_type=mime or "", data=data))
    return out


def build_resolver(args: argparse.Namespace) -> ConfigResolver:
    resolver = ConfigResolver(locale=args.locale, ai_mode=not args.manual)
    if args.manual and args.difficulty:
        resolver.set_difficulty(Difficulty(args.difficulty))
    if args.num is not None:
        resolver.set_num_questions(args.num)
    if args.instructions:
        resolver.set_custom_prompt(args.instructions)
    return resolver


def print_progress(u: ProgressUpdate) -> None:
    if u.state in (GenerationState.ATTEMPTING, GenerationState.RETRY_WAITING):
        sys.stdout.write(f"\r⏳ {u.percent:3d}% {u.status:<40}")
        sys.stdout.flush()
    elif u.state in (GenerationState.SUCCEEDED, GenerationState.FAILED):
        sys.stdout.write("\n")
        sys.stdout.flush()


def print_quiz(quiz: Quiz, wrap: int) -> None:
    print("\n" + "=" * 72)
    print(quiz.title)
    print("=" * 72)
    for i, q in enumerate(quiz.questions, start=1):
        print(_wrap(f"{i}. {q.question_text}", wrap))
        for j, opt in enumerate(q.options):
            mark = "*" if opt == q.correct_answer else " "
            print(_wrap(f"  {mark} {chr(ord('A') + j)}. {opt}", wrap))
        if q.explanation:
            print(_wrap(f"    → {q.explanation}", wrap))
        print()


async def run_generate(args: argparse.Namespace) -> int:
    service = QuizGenerationService(provider=args.provider or None, model=args.model or None)
    session = IntakeSession()

    if args.text:
        session.select_text(args.text)
    elif args.prompt:
        session.select_prompt(args.prompt)
    elif args.files:
        missing = [p for p in args.files if not os.path.exists(p)]
        if missing:
            print(f"⚠️ File not found: {', '.join(missing)}")
            return 2
        session.select_files(await load_source_files(args.files))
    else:
        print("⚠️ Give one or more files, --text or --prompt.")
        return 2

    try:
        resolver = build_resolver(args)
    except ValueError as e:
        print(f"⚠️ {e}")
        return 2

    print("⏳ Reading content...")
    try:
        content = await session.aggregate(ContentAggregator(TextExtractor(ocr_service=service)))
    except QuizAIError as e:
        print(_wrap(f"⚠️ {e.message}", args.wrap))
        return 1
    if content is None:
        return 1
    if content.looks_preformatted:
        print("ℹ️ Content looks like an existing quiz; it will be converted as-is.")

    limiter = RateLimiter(JsonFileStore(settings.state_dir))
    orchestrator = GenerationOrchestrator(service, limiter)
    t0 = time.time()
    outcome = await session.generate(
        orchestrator,
        resolver.final_config(),
        identity_for(args.user),
        on_progress=print_progress,
    )

    if isinstance(outcome, GenerationSuccess):
        dt = time.time() - t0
        print_quiz(outcome.quiz, args.wrap)
        if not args.no_save:
            item = quiz_store.add_quiz(args.owner, outcome.quiz, outcome.final_config, _now())
            print(f"✅ Saved quiz {item['id']} for '{args.owner}' ({dt:.2f}s)")
        return 0
    if isinstance(outcome, GenerationRateLimited):
        print(_wrap(f"⚠️ {outcome.message}", args.wrap))
        return 3
    if outcome is not None:
        print(_wrap(f"⚠️ {outcome.message}", args.wrap))
    return 1


def run_serve(host: str, port: int, reload: bool) -> None:
    # Import here so the generate command doesn't require uvicorn installed
    import uvicorn  # type: ignore

    uvicorn.run(
        "quizai.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="QuizAI: turn documents, text or a topic into a quiz")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_gen = sub.add_parser("generate", help="Generate a quiz in the terminal")
    p_gen.add_argument("files", nargs="*", help="PDF, DOCX, TXT/MD or image files")
    p_gen.add_argument("--text", default="", help="Paste text instead of files")
    p_gen.add_argument("--prompt", default="", help="Describe a topic instead of files")
    p_gen.add_argument("--manual", action="store_true", help="Pick difficulty and count yourself")
    p_gen.add_argument("--difficulty", default="", choices=["", "Easy", "Medium", "Hard"])
    p_gen.add_argument("--num", type=int, default=None, help="Number of questions (a hint in AI mode)")
    p_gen.add_argument("--locale", default="en", help="UI locale; 'vi' generates in Vietnamese")
    p_gen.add_argument("--instructions", default="", help="Extra instructions for the quiz")
    p_gen.add_argument("--user", default="", help="Signed-in user id (empty = anonymous)")
    p_gen.add_argument("--owner", default="default", help="Owner/namespace for saved quizzes")
    p_gen.add_argument("--provider", default="", choices=["", "openai", "claude"])
    p_gen.add_argument("--model", default="", help="Model override (optional)")
    p_gen.add_argument("--wrap", type=int, default=100, help="Wrap width (default: 100)")
    p_gen.add_argument("--no-save", action="store_true", help="Do not store the generated quiz")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=8002, help="Port (default: 8002)")
    p_serve.add_argument("--reload", action="store_true", help="Enable auto-reload")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "serve":
        run_serve(args.host, args.port, args.reload)
        return

    configure_logging("quizai.cli")
    print(f"Defaults: OpenAI={DEFAULT_OPENAI_MODEL} | Claude={DEFAULT_CLAUDE_MODEL} | provider={settings.provider}")
    sys.exit(asyncio.run(run_generate(args)))


if __name__ == "__main__":
    main()
