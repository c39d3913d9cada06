"""Boutique owner profile model."""

from pydantic import BaseModel, Field


class MerchantProfile(BaseModel):
    """Branding, payment link and prepaid credit balance of a boutique."""
    
    uid: str = "main_profile"
    name: str
    logo_url: str | None = None
    payment_link: str | None = None
    
    # Profile-scoped key; takes priority over the central key
    gemini_api_key: str | None = None
    
    # One credit is consumed per successful try-on
    credits: int = Field(default=0, ge=0)
    
    @property
    def can_serve(self) -> bool:
        return self.credits > 0
