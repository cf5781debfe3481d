"""AI question generation and response analysis router."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from config import settings
from llm.manager import LLMOrchestrator
from llm.types import AllProvidersExhaustedError
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from services.survey_ai import MAX_QUESTION_COUNT, analyze_survey_response, generate_survey_questions

router = APIRouter()
logger = logging.getLogger(__name__)

AI_UNAVAILABLE_DETAIL = {
    "code": "AI_SERVICE_UNAVAILABLE",
    "message": "AI service is temporarily unavailable. Please try again later.",
}


class SuggestQuestionsRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=500)
    target_audience: Optional[str] = Field(default=None, max_length=500)
    question_count: int = Field(default=5, ge=1, le=MAX_QUESTION_COUNT)
    question_types: Optional[List[Literal["single_choice", "multiple_choice", "text", "rating"]]] = None
    existing_questions: List[str] = Field(default_factory=list)
    language: Literal["en", "zh"] = "en"


class AnalyzeResponseRequest(BaseModel):
    response_id: Optional[str] = None
    survey_title: Optional[str] = None
    answers: List[Dict[str, Any]] = Field(min_length=1)
    context: Optional[str] = Field(default=None, max_length=4000)


def get_llm_orchestrator(request: Request) -> LLMOrchestrator:
    orchestrator = getattr(request.app.state, "llm", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail=AI_UNAVAILABLE_DETAIL)
    return orchestrator


@router.post("/suggest")
async def suggest_questions(
    request: SuggestQuestionsRequest,
    _rate_limit: None = Depends(rate_limit("ai_suggest", limit=settings.AI_RATE_LIMIT_PER_HOUR, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    llm: LLMOrchestrator = Depends(get_llm_orchestrator),
):
    try:
        questions = await generate_survey_questions(
            llm,
            topic=request.topic,
            target_audience=request.target_audience,
            question_count=request.question_count,
            question_types=request.question_types,
            existing_questions=request.existing_questions,
            language=request.language,
        )
    except AllProvidersExhaustedError as exc:
        logger.error("Question generation failed for user %s: %s", auth.user_id, exc.attempted)
        raise HTTPException(status_code=503, detail=AI_UNAVAILABLE_DETAIL) from exc

    logger.info("AI suggestions generated for user %s: %s (%s questions)", auth.user_id, request.topic, len(questions))
    return {
        "topic": request.topic,
        "questions": questions,
        "total_questions": len(questions),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/analyze")
async def analyze_response(
    request: AnalyzeResponseRequest,
    _rate_limit: None = Depends(rate_limit("ai_analyze", limit=settings.AI_RATE_LIMIT_PER_HOUR, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    llm: LLMOrchestrator = Depends(get_llm_orchestrator),
):
    try:
        analysis = await analyze_survey_response(
            llm,
            answers=request.answers,
            survey_title=request.survey_title,
            context=request.context,
        )
    except AllProvidersExhaustedError as exc:
        logger.error("Response analysis failed for user %s: %s", auth.user_id, exc.attempted)
        raise HTTPException(status_code=503, detail=AI_UNAVAILABLE_DETAIL) from exc

    return {
        "response_id": request.response_id,
        "analysis": analysis,
        "analyzed_at": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health")
async def ai_health(
    _admin: AuthContext = Depends(require_admin),
    llm: LLMOrchestrator = Depends(get_llm_orchestrator),
):
    return {
        "providers": await llm.check_health(),
        "priority": llm.available_providers(),
    }
