from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class SubscriptionRequest(BaseModel):
    stripe_key: str = ""
    plan: str = ""

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.stripe_key.strip():
            missing.append("stripe_key")
        if not self.plan.strip():
            missing.append("plan")
        return missing


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    user_id: str
    remote_id: str
    plan: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
