"""Closed vocabularies shared by the quota and ledger components."""

from enum import Enum


class Tier(str, Enum):
    ANONYMOUS = "anonymous"
    REGISTERED = "registered"
    PAID = "paid"
    PREMIUM = "premium"


class CreditPool(str, Enum):
    BONUS = "bonus"
    FREE = "free"
    PAID = "paid"


class WindowKind(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class Resource(str, Enum):
    GENERATION = "generation"
