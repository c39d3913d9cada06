"""Try-on request builder - assembles the multimodal generation request."""

from dataclasses import dataclass, field

from ..config import GeminiConfig, SafetyConfig
from ..models import Garment
from ..utils.images import detect_mime_type, parse_data_uri


TRYON_INSTRUCTIONS = """You are a virtual fitting room. You receive two images:
- Image 1: a PHOTO OF THE SHOPPER.
- Image 2: the GARMENT they want to try on: "{garment}".

Generate a new photo of the shopper from image 1 wearing the garment from image 2.

## ABSOLUTE PRESERVATION REQUIREMENTS:
1. Identity - keep the exact same face, facial features, skin tone, hair and expression.
2. Body - keep the exact same body shape, proportions and pose.
3. Scene - keep the background and lighting of image 1; where the new garment
   reveals hidden areas, reconstruct them plausibly in the same light.

## WHAT MUST CHANGE:
4. Fully replace the clothing the shopper is wearing with the garment from image 2,
   matching its color, pattern, fabric and cut. No trace of the old outfit may remain.

## OUTPUT RULES:
5. Photorealistic photograph only - no illustration, no drawing, no collage.
6. Respond with the generated IMAGE. Do not answer with text or explanations."""


@dataclass
class ImagePart:
    """One inline image block of the request."""
    mime_type: str
    data: bytes


@dataclass
class SafetySetting:
    """Block threshold for one harm category."""
    category: str
    threshold: str


@dataclass
class ModelRequest:
    """Everything the generative invoker sends, in order."""
    prompt: str
    images: list[ImagePart]
    temperature: float
    safety_settings: list[SafetySetting] = field(default_factory=list)


def build_safety_settings(config: SafetyConfig) -> list[SafetySetting]:
    """Explicit safety configuration for the fashion-photo context."""
    return [SafetySetting(category=c, threshold=config.threshold) for c in config.categories]


class TryOnRequestBuilder:
    """Builds the instruction text plus the two image blocks.

    The user photo always comes first and the garment second; the
    instructions refer to them as image 1 and image 2.
    """

    def __init__(self, gemini_config: GeminiConfig, safety_config: SafetyConfig):
        self.gemini_config = gemini_config
        self.safety_config = safety_config

    def build_prompt(self, garment: Garment) -> str:
        return TRYON_INSTRUCTIONS.format(garment=garment.to_prompt_description())

    def to_image_part(self, data_uri: str) -> ImagePart:
        """Turn a prepared data-URI into an inline image block."""
        _, data = parse_data_uri(data_uri)
        return ImagePart(mime_type=detect_mime_type(data_uri), data=data)

    def build(self, user_image: str, garment_image: str, garment: Garment) -> ModelRequest:
        """Assemble the generation request.

        Args:
            user_image: Prepared shopper photo (data-URI)
            garment_image: Prepared garment image (data-URI)
            garment: Garment metadata used in the instructions

        Returns:
            ModelRequest with one text block and two image blocks
        """
        return ModelRequest(
            prompt=self.build_prompt(garment),
            images=[
                self.to_image_part(user_image),
                self.to_image_part(garment_image),
            ],
            temperature=self.gemini_config.temperature,
            safety_settings=build_safety_settings(self.safety_config),
        )
