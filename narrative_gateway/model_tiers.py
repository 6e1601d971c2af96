"""Model tier selection: map a cost tier to a concrete model id."""
from enum import Enum
from typing import Optional

from .config import DEFAULT_MODELS, PROVIDER_GEMINI


class ModelTier(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class ModelTierSelector:
    """Resolve tiers against configured models.

    Standard uses the configured model or the provider default. Premium uses
    its own configured model or falls back to whatever standard resolves to.
    """

    def __init__(
        self,
        provider: str = PROVIDER_GEMINI,
        standard_model: Optional[str] = None,
        premium_model: Optional[str] = None,
    ):
        self.provider = provider
        self.standard_model = standard_model or DEFAULT_MODELS.get(provider, DEFAULT_MODELS[PROVIDER_GEMINI])
        self.premium_model = premium_model or self.standard_model

    def resolve(self, tier) -> str:
        if ModelTier(tier) is ModelTier.PREMIUM:
            return self.premium_model
        return self.standard_model

    def to_dict(self) -> dict:
        return {
            ModelTier.STANDARD.value: self.standard_model,
            ModelTier.PREMIUM.value: self.premium_model,
        }
