# schemas/billing.py
from typing import Literal

from pydantic import BaseModel

PaidPlanId = Literal["pro", "proAI", "premium", "premiumAI"]


class CheckoutRequest(BaseModel):
    plan_id: PaidPlanId


class ChangePlanRequest(BaseModel):
    plan_id: PaidPlanId
