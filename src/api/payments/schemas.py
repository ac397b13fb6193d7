"""Payments API schemas."""

from pydantic import BaseModel

from src.api.core.messages import APIResponse
from src.modules.payments.service import CreditsPurchased


class CreditsPurchasedRequest(CreditsPurchased):
    pass


class PurchaseAppliedModel(BaseModel):
    reference: str
    applied: bool


PurchaseAppliedResponse = APIResponse[PurchaseAppliedModel]
