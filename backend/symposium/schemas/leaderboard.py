from pydantic import BaseModel, field_serializer
from datetime import datetime
from typing import List, Literal, Optional

from ..utils.timezone import format_display_time


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: str
    participant_name: str
    total_score: int
    max_score: int
    pending_count: int = 0
    submitted_at: datetime

    submitted_at_local: Optional[str] = None

    @field_serializer("submitted_at_local")
    def serialize_submitted_at_local(self, value):
        return format_display_time(self.submitted_at)


class Leaderboard(BaseModel):
    scope: Literal["round", "event"]
    scope_id: str
    entries: List[LeaderboardEntry] = []
