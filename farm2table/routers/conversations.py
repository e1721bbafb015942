# =============================================
# File: farm2table/routers/conversations.py
# Purpose: Conversation history and analytics for producers
# =============================================
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from farm2table.schemas import ConversationAnalytics, ConversationTurn
from farm2table.services.container import Services, get_services

router = APIRouter(prefix="/conversations", tags=["conversations"])


class HistoryResponse(BaseModel):
    conversations: List[ConversationTurn]
    count: int


@router.get("", response_model=HistoryResponse)
def get_history(
    user_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
) -> HistoryResponse:
    turns = services.analytics.conversation_history(user_id, session_id, limit)
    return HistoryResponse(conversations=turns, count=len(turns))


@router.get("/analytics", response_model=ConversationAnalytics)
def get_analytics(
    time_range: str = Query("7d"),
    user_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> ConversationAnalytics:
    return services.analytics.conversation_analytics(time_range, user_id)
