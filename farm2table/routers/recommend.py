# farm2table/routers/recommend.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel

from farm2table.schemas import ConversationTurn, ScoredProduce, UserContext
from farm2table.services.container import Services, get_services
from farm2table.utils import slog
from farm2table.utils.errors import Farm2TableError, ValidationError

router = APIRouter(tags=["recommend"])


# ---------- Response schema ----------
class RecommendResponse(BaseModel):
    response: str
    recommendations: List[ScoredProduce]
    method: str
    session_id: Optional[str] = None
    conversation_history: List[ConversationTurn]


# ---------- Helpers ----------
def _first(d: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        v = d.get(k)
        if v not in (None, ""):
            return v
    return None


def _coerce_payload(raw: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str], UserContext]:
    """
    Accept snake_case and camelCase clients and normalize them.

    Supported forms:
      1) {"question": "...", "user_id": "...", "session_id": "...", "context": {...}}
      2) {"question": "...", "userId": "...", "sessionId": "...", "context": {"userPreferences": [...]}}
      3) {"query": "...", "ctx": {...}}  (aliases)

    Returns (question, user_id, session_id, user_context) or raises ValidationError.
    """
    data = {str(k).lower(): v for k, v in dict(raw or {}).items()}

    question = _first(data, "question", "query", "q")
    user_id = _first(data, "user_id", "userid")
    session_id = _first(data, "session_id", "sessionid")
    ctx = _first(data, "context", "ctx") or {}

    if not isinstance(question, str) or not question.strip():
        raise ValidationError("question")
    if not isinstance(ctx, dict):
        raise ValidationError("context", "context must be an object")

    try:
        user_context = UserContext.model_validate(ctx)
    except ValueError as e:
        raise ValidationError("context", str(e))
    return (
        question.strip(),
        str(user_id).strip() if user_id else None,
        str(session_id).strip() if session_id else None,
        user_context,
    )


# ---------- Endpoint ----------
@router.post("/ai/recommend", response_model=RecommendResponse)
async def post_recommend(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
) -> RecommendResponse:
    """
    Contextual produce recommendation.

    Input: question + optional user/session ids and shopping context.
    Output: narrative, ranked produce, and the last 3 turns of history.
    """
    question, user_id, session_id, user_context = _coerce_payload(payload)
    request.state.log_context = {"user_id": user_id, "session_id": session_id, "qhash": slog.qhash(question)}
    try:
        result = await services.recommender.recommend(question, user_context, user_id, session_id)
    except Farm2TableError:
        raise
    except Exception as e:
        # Keep details for debugging; middleware will log request context.
        raise HTTPException(status_code=500, detail=str(e))

    request.state.log_context.update({
        "method": result.method,
        "recommendations": len(result.recommendations),
        "model": result.model_used,
    })
    return RecommendResponse(
        response=result.narrative,
        recommendations=result.recommendations,
        method=result.method,
        session_id=session_id,
        conversation_history=result.history[:3],
    )
