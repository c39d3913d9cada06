"""Try-on history models."""

from pydantic import BaseModel

from .garment import Garment


class HistoryItem(BaseModel):
    """A successful try-on kept for later browsing.
    
    The garment is a snapshot taken at generation time, so the entry stays
    valid after the garment is removed from inventory.
    """
    
    id: str
    timestamp: int  # epoch milliseconds
    garment: Garment
    result_image_url: str
