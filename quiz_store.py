from __future__ import annotations

import json
import os
import re
import secrets
from typing import Any, Dict, List, Optional

from quizai.schemas import Quiz, QuizConfiguration
from quizai.settings import settings
from quizai.store import atomic_write_json, path_lock

DEFAULT_DIR = os.path.abspath(settings.quiz_dir)
MAX_QUIZZES = 500


def _safe_owner(owner: str) -> str:
    owner = owner.strip() or "default"
    owner = re.sub(r"[^a-zA-Z0-9._-]+", "_", owner)
    return owner[:128]


def _path(owner: str, base_dir: str = DEFAULT_DIR) -> str:
    os.makedirs(base_dir, exist_ok=True)
    return os.path.join(base_dir, f"{_safe_owner(owner)}.json")


def load_quizzes(owner: str, base_dir: str = DEFAULT_DIR) -> List[Dict[str, Any]]:
    path = _path(owner, base_dir)
    with path_lock(path):
        if not os.path.exists(path):
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return []

    if not isinstance(data, list):
        return []

    out: List[Dict[str, Any]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        if not isinstance(item.get("id"), str):
            continue
        if not isinstance(item.get("quiz"), dict):
            continue
        out.append(item)
    return out


def save_quizzes(owner: str, items: List[Dict[str, Any]], base_dir: str = DEFAULT_DIR) -> None:
    atomic_write_json(_path(owner, base_dir), items[-MAX_QUIZZES:])


def add_quiz(
    owner: str,
    quiz: Quiz,
    config: QuizConfiguration,
    created_at: str,
    title: str = "",
    base_dir: str = DEFAULT_DIR,
) -> Dict[str, Any]:
    items = load_quizzes(owner, base_dir)
    item = {
        "id": secrets.token_urlsafe(9),
        "owner": owner,
        "title": (title or "").strip() or quiz.title,
        "quiz": quiz.model_dump(),
        "config": config.model_dump(mode="json"),
        "created_at": created_at,
    }
    items.append(item)
    save_quizzes(owner, items, base_dir)
    return item


def get_quiz(owner: str, quiz_id: str, base_dir: str = DEFAULT_DIR) -> Optional[Dict[str, Any]]:
    for item in load_quizzes(owner, base_dir):
        if item.get("id") == quiz_id:
            return item
    return None


def delete_quiz(owner: str, quiz_id: str, base_dir: str = DEFAULT_DIR) -> bool:
    items = load_quizzes(owner, base_dir)
    kept = [x for x in items if x.get("id") != quiz_id]
    if len(kept) == len(items):
        return False
    save_quizzes(owner, kept, base_dir)
    return True
