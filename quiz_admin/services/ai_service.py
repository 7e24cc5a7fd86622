from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from flask import current_app
from openai import OpenAI

from ..content import content_to_text, image_sources


LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


@lru_cache(maxsize=1)
def _client() -> OpenAI:
    return OpenAI()


def _model() -> str:
    try:
        return current_app.config.get("OPENAI_MODEL") or DEFAULT_MODEL
    except RuntimeError:
        return DEFAULT_MODEL


def _call_openai(system_prompt: str, user_content: List[Dict[str, Any]], *, json_mode: bool = False) -> str:
    kwargs: Dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = _client().chat.completions.create(
        model=_model(),
        temperature=0.3,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        **kwargs,
    )
    text = response.choices[0].message.content if response.choices else None
    if not text:
        LOGGER.warning("Empty completion from model %s.", _model())
        raise RuntimeError("OpenAI response did not include text output.")
    return text


def generate_questions(
    *,
    prompt: str,
    count: int,
    topic: Optional[str] = None,
    difficulty: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Ask the model for trivia questions; returns [{title, question, answer, topic, difficulty}]."""
    details = [f"Quantity: {count}", f"Request: {prompt.strip()}"]
    if topic:
        details.append(f"Topic: {topic}")
    if difficulty:
        details.append(f"Difficulty (1-5): {difficulty}")
    instruction = (
        "Write trivia questions for a pub quiz.\n"
        + "\n".join(details)
        + "\nEach question must have a single unambiguous, verifiable answer."
        " Return JSON with this shape:\n"
        '{ "questions": [ { "title": str, "question": str, "answer": str,'
        ' "topic": str, "difficulty": int } ] }'
    )
    raw = _call_openai(
        system_prompt="You write accurate, engaging quiz questions.",
        user_content=[{"type": "text", "text": instruction}],
        json_mode=True,
    )
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError("AI response was not valid JSON.") from exc
    questions = parsed.get("questions") if isinstance(parsed, dict) else None
    if not isinstance(questions, list):
        raise RuntimeError("AI response missing questions array.")
    return [item for item in questions if isinstance(item, dict)]


def validate_question(*, title: str, content: Any, topic: str) -> Dict[str, Any]:
    user_content: List[Dict[str, Any]] = [
        {
            "type": "text",
            "text": (
                "Review this quiz question for spelling, punctuation and grammar."
                " If it contains images, judge whether they fit the question."
                " Answer in plain text.\n"
                f"Title: {title}\nTopic: {topic}\n\n{content_to_text(content)}"
            ),
        }
    ]
    for src in image_sources(content):
        if not src.startswith(("http://", "https://")):
            continue
        user_content.append({"type": "image_url", "image_url": {"url": src}})

    feedback = _call_openai(
        system_prompt="You are a meticulous copy editor for quiz questions.",
        user_content=user_content,
    )
    return {
        "isValid": True,
        "spellingErrors": [],
        "grammarErrors": [],
        "punctuationErrors": [],
        "factualIssues": [],
        "suggestions": [feedback],
        "citations": [],
        "correctedTitle": title,
        "correctedContent": content,
    }


def fact_check_question(*, title: str, content: Any, answer: str) -> Dict[str, Any]:
    instruction = (
        "Check whether the answer to this quiz question is factually correct and unambiguous."
        ' Return JSON {"isCorrect": bool, "explanation": str, "sources": [str]}.\n'
        f"Title: {title}\nQuestion: {content_to_text(content)}\nAnswer: {answer}"
    )
    raw = _call_openai(
        system_prompt="You are a careful fact checker for quiz content.",
        user_content=[{"type": "text", "text": instruction}],
        json_mode=True,
    )
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError("AI response was not valid JSON.") from exc
    return {
        "isCorrect": bool(parsed.get("isCorrect")),
        "explanation": str(parsed.get("explanation") or ""),
        "sources": [str(source) for source in parsed.get("sources") or []],
    }


__all__ = [
    "generate_questions",
    "validate_question",
    "fact_check_question",
]
