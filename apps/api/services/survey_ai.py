"""AI-assisted survey question generation and response analysis."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from llm.manager import LLMOrchestrator
from llm.types import LLMMessage, LLMRequest

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("single_choice", "multiple_choice", "text", "rating")
QUALITY_SCORES = ("green", "yellow", "red")
SENTIMENTS = ("positive", "neutral", "negative")
MAX_QUESTION_COUNT = 20

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _system_prompt(language: str) -> str:
    reply_language = "Chinese" if language == "zh" else "English"
    return (
        "You are an expert survey designer. Generate high-quality survey questions based on the user's requirements.\n"
        "Rules:\n"
        "1. Output only a JSON array, no markdown\n"
        "2. Each question has: id, type, content, options (for choice questions)\n"
        f"3. Question types: {', '.join(QUESTION_TYPES)}\n"
        "4. Choice questions get 3-5 meaningful options as {\"label\", \"value\"} objects\n"
        "5. Rating questions use a 1-5 or 1-10 scale given as \"scale\": {\"min\", \"max\"}\n"
        "6. Questions are clear, unbiased and professional; avoid leading or loaded wording\n"
        "7. Keep a logical flow from general to specific\n"
        f"Write the questions in {reply_language}."
    )


def _user_prompt(
    *,
    topic: str,
    target_audience: Optional[str],
    question_count: int,
    question_types: Sequence[str],
    existing_questions: Sequence[str],
) -> str:
    lines = [f"Topic: {topic}", f"Number of questions: {question_count}"]
    if target_audience:
        lines.append(f"Target audience: {target_audience}")
    lines.append(f"Allowed question types: {', '.join(question_types)}")
    if existing_questions:
        lines.append("Do not repeat these existing questions:")
        lines.extend(f"- {question}" for question in existing_questions)
    return "\n".join(lines)


def _extract_json(text: str, pattern: re.Pattern) -> Any:
    match = pattern.search(text or "")
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        return None


def _normalize_options(raw: Any) -> List[Dict[str, str]]:
    options: List[Dict[str, str]] = []
    if not isinstance(raw, list):
        return options
    for index, item in enumerate(raw, start=1):
        if isinstance(item, dict):
            label = str(item.get("label") or item.get("value") or "").strip()
            value = str(item.get("value") or f"opt{index}").strip()
        else:
            label = str(item).strip()
            value = f"opt{index}"
        if label:
            options.append({"label": label, "value": value})
    return options


def _rating_scale_max(value: Any) -> int:
    """Snap a model-supplied scale maximum onto 5 or 10."""
    try:
        max_raw = int(value or 5)
    except (TypeError, ValueError):
        return 5
    return 10 if max_raw > 5 else 5


def normalize_questions(raw_questions: Any, allowed_types: Sequence[str], limit: int) -> List[Dict[str, Any]]:
    """Keep well-formed questions of the allowed types, renumbering ids."""
    questions: List[Dict[str, Any]] = []
    if not isinstance(raw_questions, list):
        return questions
    for item in raw_questions:
        if not isinstance(item, dict):
            continue
        content = str(item.get("content") or item.get("question") or "").strip()
        question_type = str(item.get("type") or "").strip().lower()
        if not content or question_type not in allowed_types:
            continue
        question: Dict[str, Any] = {
            "id": f"q{len(questions) + 1}",
            "type": question_type,
            "content": content,
        }
        if question_type in ("single_choice", "multiple_choice"):
            options = _normalize_options(item.get("options"))
            if len(options) < 2:
                continue
            question["options"] = options
        elif question_type == "rating":
            scale = item.get("scale") if isinstance(item.get("scale"), dict) else {}
            question["scale"] = {"min": 1, "max": _rating_scale_max(scale.get("max"))}
        questions.append(question)
        if len(questions) >= limit:
            break
    return questions


async def generate_survey_questions(
    llm: LLMOrchestrator,
    *,
    topic: str,
    target_audience: Optional[str] = None,
    question_count: int = 5,
    question_types: Optional[Sequence[str]] = None,
    existing_questions: Optional[Sequence[str]] = None,
    language: str = "en",
) -> List[Dict[str, Any]]:
    """
    Ask the LLM for survey questions and return the parseable ones.

    AllProvidersExhaustedError propagates so the caller can report the
    service as temporarily unavailable.
    """
    count = min(max(int(question_count), 1), MAX_QUESTION_COUNT)
    allowed = [item for item in (question_types or QUESTION_TYPES) if item in QUESTION_TYPES] or list(QUESTION_TYPES)
    request = LLMRequest(
        messages=[
            LLMMessage(role="system", content=_system_prompt(language)),
            LLMMessage(
                role="user",
                content=_user_prompt(
                    topic=topic,
                    target_audience=target_audience,
                    question_count=count,
                    question_types=allowed,
                    existing_questions=list(existing_questions or []),
                ),
            ),
        ],
        temperature=0.7,
        max_tokens=2000,
    )
    response = await llm.generate_completion(request)
    questions = normalize_questions(_extract_json(response.content, _JSON_ARRAY_RE), allowed, count)
    if not questions:
        logger.warning("LLM provider %s returned no parseable questions for topic %r", response.provider, topic)
    return questions


def _analysis_prompt(answers: Sequence[Dict[str, Any]], survey_title: Optional[str]) -> str:
    return (
        f"Survey: {survey_title or 'untitled'}\n"
        f"Respondent answers:\n{json.dumps(list(answers), ensure_ascii=False, indent=2)}\n\n"
        "Assess the quality and sentiment of this response. Return strict JSON:\n"
        "{\n"
        '  "quality_score": "green|yellow|red",\n'
        '  "sentiment": "positive|neutral|negative",\n'
        '  "keywords": ["string"],\n'
        '  "insights": ["string"],\n'
        '  "confidence": 0.0-1.0\n'
        "}\n"
        "green = thoughtful and consistent, yellow = partially useful, red = careless or contradictory."
    )


def _clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.5
    return min(max(number, 0.0), 1.0)


def fallback_analysis() -> Dict[str, Any]:
    return {
        "quality_score": "yellow",
        "sentiment": "neutral",
        "keywords": [],
        "insights": ["Automatic analysis could not be parsed; review this response manually."],
        "confidence": 0.3,
        "parsed": False,
    }


def parse_analysis(text: str) -> Dict[str, Any]:
    data = _extract_json(text, _JSON_OBJECT_RE)
    if not isinstance(data, dict):
        return fallback_analysis()
    quality = str(data.get("quality_score") or "").lower()
    sentiment = str(data.get("sentiment") or "").lower()
    keywords = data.get("keywords") if isinstance(data.get("keywords"), list) else []
    insights = data.get("insights") if isinstance(data.get("insights"), list) else []
    return {
        "quality_score": quality if quality in QUALITY_SCORES else "yellow",
        "sentiment": sentiment if sentiment in SENTIMENTS else "neutral",
        "keywords": [str(item) for item in keywords][:10],
        "insights": [str(item) for item in insights][:5],
        "confidence": _clamp_confidence(data.get("confidence")),
        "parsed": True,
    }


async def analyze_survey_response(
    llm: LLMOrchestrator,
    *,
    answers: Sequence[Dict[str, Any]],
    survey_title: Optional[str] = None,
    context: Optional[str] = None,
) -> Dict[str, Any]:
    text = await llm.generate_analysis(_analysis_prompt(answers, survey_title), context=context)
    return parse_analysis(text)
