"""Garment inventory models."""

from pydantic import BaseModel, Field


class Garment(BaseModel):
    """A sellable inventory item that can be tried on."""
    
    id: str = Field(min_length=1, description="Unique within a boutique's inventory")
    name: str
    description: str = ""
    price: float = Field(default=0.0, ge=0.0)
    
    # Either an embedded data-URI or a remote URL
    image_url: str
    
    boutique_name: str | None = None
    shop_url: str | None = Field(default=None, description="Optional purchase link")
    
    @property
    def has_embedded_image(self) -> bool:
        """True when the image travels inline as a data-URI."""
        return self.image_url.startswith("data:")
    
    def to_prompt_description(self) -> str:
        """Short text description used in the generation instructions."""
        if self.description:
            return f"{self.name} - {self.description}"
        return self.name
