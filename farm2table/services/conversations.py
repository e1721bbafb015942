# =============================================
# File: farm2table/services/conversations.py
# Purpose: Conversation history lookup and usage analytics over stored turns
# =============================================
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..interfaces import ConversationStore
from ..schemas import ConversationAnalytics, ConversationTurn, CountItem, DailyCount
from ..utils.errors import ValidationError

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90}


def _naive_utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ConversationAnalyticsService:
    def __init__(self, store: ConversationStore, now: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.now = now or _naive_utcnow

    def conversation_history(self, user_id: Optional[str] = None, session_id: Optional[str] = None,
                             limit: int = 20) -> List[ConversationTurn]:
        if not user_id and not session_id:
            raise ValidationError("user_id", "Either user_id or session_id is required")
        return self.store.recent_turns(user_id, session_id, max(1, int(limit)))

    def conversation_analytics(self, time_range: str = "7d", user_id: Optional[str] = None) -> ConversationAnalytics:
        if time_range not in TIME_RANGES:
            raise ValidationError("time_range", f"time_range must be one of {', '.join(TIME_RANGES)}")
        start = self.now() - timedelta(days=TIME_RANGES[time_range])
        turns = self.store.turns_since(start, user_id)  # newest first

        latencies = [t.metadata.response_time_ms for t in turns if t.metadata.response_time_ms]
        questions = Counter(q for q in (t.question.strip().lower() for t in turns) if q)
        categories = Counter(c for t in turns for c in t.metadata.categories)
        per_day = Counter(t.created_at.date().isoformat() for t in turns if t.created_at is not None)

        return ConversationAnalytics(
            time_range=time_range,
            total_conversations=len(turns),
            average_response_time_ms=round(sum(latencies) / len(latencies)) if latencies else 0,
            active_users=len({t.user_id for t in turns if t.user_id}),
            top_questions=[CountItem(key=q, count=n) for q, n in questions.most_common(5)],
            popular_categories=[CountItem(key=c, count=n) for c, n in categories.most_common(5)],
            recent_conversations=turns[:10],
            conversation_trends=[DailyCount(date=d, count=per_day[d]) for d in sorted(per_day)],
        )
