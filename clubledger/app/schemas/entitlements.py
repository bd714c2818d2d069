"""API schemas for entitlement endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements import ActionCode, ActionContext


class CheckActionRequest(BaseModel):
    action: ActionCode
    club_id: Optional[str] = Field(alias="clubId", default=None)
    event_id: Optional[str] = Field(alias="eventId", default=None)
    participants: Optional[int] = Field(default=None, ge=0)
    members: Optional[int] = Field(default=None, ge=0)
    is_paid: bool = Field(alias="isPaid", default=False)
    confirm_credit: bool = Field(alias="confirmCredit", default=False)

    model_config = ConfigDict(populate_by_name=True)

    def to_context(self, user_id: str) -> ActionContext:
        return ActionContext(
            user_id=user_id,
            club_id=self.club_id,
            event_id=self.event_id,
            participants=self.participants,
            members=self.members,
            is_paid=self.is_paid,
        )


__all__ = ["CheckActionRequest"]
