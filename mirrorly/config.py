"""Configuration management for the Mirrorly try-on backend."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class GeminiConfig(BaseModel):
    """Generative model settings."""
    model: str = "gemini-2.5-flash-image"
    temperature: float = 0.2  # Low randomness: faithful reproduction over variation
    timeout_seconds: float = 40.0


class ImageConfig(BaseModel):
    """Image preparation settings."""
    max_dimension: int = 800
    quality: float = 0.7  # JPEG quality factor, 0.0 - 1.0


class FetchConfig(BaseModel):
    """Remote garment image retrieval settings."""
    direct_timeout: float = 8.0
    relay_timeout: float = 10.0
    relay_url_template: str | None = "https://corsproxy.io/?url={url}"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


class SafetyConfig(BaseModel):
    """Content-safety thresholds sent with every generation request.

    Only the categories that are irrelevant to fashion photos are relaxed;
    everything else keeps the model defaults.
    """
    threshold: str = "BLOCK_ONLY_HIGH"
    categories: list[str] = Field(default_factory=lambda: [
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
    ])


class SessionConfig(BaseModel):
    """Session machine and ledger settings."""
    cancel_grace_seconds: float = 10.0
    history_limit: int = 20
    initial_credits: int = 10


class AppConfig(BaseSettings):
    """Main application configuration."""

    # Central key, used when the boutique profile has none
    gemini_api_key: str | None = None

    # Language of user-facing messages ("en", "tr")
    locale: str = "en"

    # Paths
    data_dir: Path = Path("data")

    # QR codes encode {deep_link_base_url}?id=<garment id>
    deep_link_base_url: str = "http://localhost:5173/"

    # Sub-configs
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @property
    def history_dir(self) -> Path:
        """One history file per shopper lives here."""
        return self.data_dir / "history"

    @property
    def inventory_path(self) -> Path:
        return self.data_dir / "inventory.json"

    @property
    def inventory_cache_path(self) -> Path:
        return self.data_dir / "inventory_cache.json"

    @property
    def profile_path(self) -> Path:
        return self.data_dir / "profile.json"

    class Config:
        env_file = ".env"
        env_prefix = ""
        env_nested_delimiter = "__"
        extra = "ignore"


def load_config() -> AppConfig:
    """Load configuration from environment and defaults."""
    return AppConfig()
