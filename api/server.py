"""FastAPI server for Mirrorly virtual try-on.

Serves the shopper flow behind a scanned QR code:
- deep link resolution (`?id=<garment id>`)
- try-on generation, gated by the boutique's credits
- the shopper's own try-on history
plus the boutique's inventory, profile, credit balance and an image relay
for garment URLs.
"""

import ipaddress
import logging
import re
import uuid
from urllib.parse import urlparse

import httpx
from fastapi import Cookie, Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from mirrorly import __version__
from mirrorly.config import AppConfig, load_config
from mirrorly.errors import InsufficientCreditsError, InvalidTransition
from mirrorly.models import ErrorCategory, Garment, HistoryItem, MerchantProfile
from mirrorly.pipeline import DeepLinkResolver, TryOnPipeline, TryOnSession, build_deep_link
from mirrorly.services import (
    CreditLedger,
    HistoryRecorder,
    InventoryStore,
    JsonInventoryStore,
    JsonProfileStore,
    ProfileStore,
)
from mirrorly.services.image_fetcher import browser_headers

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Mirrorly API",
    description="QR-scan virtual try-on using Gemini image generation",
    version=__version__,
)

# Shoppers arrive from the web app on any boutique domain
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SHOPPER_COOKIE = "mirrorly_shopper"
_SHOPPER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


class Services:
    """Everything a request needs, constructed once per process."""

    def __init__(
        self,
        config: AppConfig,
        inventory: InventoryStore | None = None,
        inventory_cache: InventoryStore | None = None,
        profiles: ProfileStore | None = None,
        pipeline: TryOnPipeline | None = None,
    ):
        self.config = config
        self.inventory = inventory or JsonInventoryStore(config.inventory_path)
        self.inventory_cache = inventory_cache or JsonInventoryStore(config.inventory_cache_path)
        self.profiles = profiles or JsonProfileStore(
            config.profile_path,
            default=MerchantProfile(name="Mirrorly Boutique", credits=config.session.initial_credits),
        )
        self.ledger = CreditLedger(self.profiles)
        self.pipeline = pipeline or TryOnPipeline(config)
        self.resolver = DeepLinkResolver(self.inventory, self.inventory_cache)
        self._histories: dict[str, HistoryRecorder] = {}

    def history_for(self, shopper_id: str) -> HistoryRecorder:
        """Each shopper gets a separate log with its own cap."""
        if shopper_id not in self._histories:
            self._histories[shopper_id] = HistoryRecorder(
                self.config.history_dir / f"{shopper_id}.json",
                self.config.session.history_limit,
            )
        return self._histories[shopper_id]

    def new_session(self, shopper_id: str) -> TryOnSession:
        return TryOnSession(
            config=self.config,
            pipeline=self.pipeline,
            ledger=self.ledger,
            history=self.history_for(shopper_id),
            profiles=self.profiles,
            resolver=self.resolver,
        )

    async def relay_hosts(self) -> set[str]:
        """Hosts serving inventory images; the relay refuses everything else."""
        hosts = set()
        for store in (self.inventory, self.inventory_cache):
            for garment in await store.list_garments():
                if not garment.has_embedded_image:
                    host = urlparse(garment.image_url).hostname
                    if host:
                        hosts.add(host.lower())
        return hosts


# Initialized on first request
_services: Services | None = None


def get_services() -> Services:
    """Get or create the process-wide services."""
    global _services
    if _services is None:
        _services = Services(load_config())  # Loads from .env automatically via pydantic-settings
    return _services


def get_shopper_id(
    response: Response,
    mirrorly_shopper: str | None = Cookie(default=None),
) -> str:
    """Identify the shopper's browser, issuing a cookie on the first visit."""
    if mirrorly_shopper and _SHOPPER_ID_RE.match(mirrorly_shopper):
        return mirrorly_shopper
    shopper_id = uuid.uuid4().hex
    response.set_cookie(SHOPPER_COOKIE, shopper_id, httponly=True, samesite="lax")
    return shopper_id


class TryOnBody(BaseModel):
    """Request body for try-on generation."""
    photo: str  # Base64 data URL of the shopper photo
    garment_id: str | None = None  # Preferred: id from the scanned deep link
    garment: Garment | None = None  # Inline garment for previews


class TryOnResponse(BaseModel):
    """Generated image or a user-safe failure message."""
    success: bool
    image_url: str | None = None
    message: str | None = None
    category: ErrorCategory | None = None
    retryable: bool = False
    credits_remaining: int | None = None


class TopUpBody(BaseModel):
    amount: int = Field(gt=0)


class CreditsResponse(BaseModel):
    credits: int


class ProfileBody(BaseModel):
    """Owner-editable profile fields. Credits change only through the ledger."""
    name: str = Field(min_length=1)
    logo_url: str | None = None
    payment_link: str | None = None
    gemini_api_key: str | None = None  # omit to keep the current key


class ProfileResponse(BaseModel):
    """Profile as shown to the owner. The key itself is never echoed back."""
    name: str
    logo_url: str | None = None
    payment_link: str | None = None
    has_api_key: bool
    credits: int


def _profile_response(profile: MerchantProfile) -> ProfileResponse:
    return ProfileResponse(
        name=profile.name,
        logo_url=profile.logo_url,
        payment_link=profile.payment_link,
        has_api_key=bool(profile.gemini_api_key),
        credits=profile.credits,
    )


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Mirrorly API", "version": __version__}


@app.get("/health")
async def health(services: Services = Depends(get_services)):
    """Detailed health check."""
    profile = await services.profiles.get_profile()
    key_configured = bool(services.config.gemini_api_key or (profile and profile.gemini_api_key))
    credits = profile.credits if profile else 0

    return {
        "status": "ok" if key_configured else "degraded",
        "gemini": "configured" if key_configured else "missing",
        "model": services.config.gemini.model,
        "credits": credits,
    }


@app.get("/api/garments", response_model=list[Garment])
async def list_garments(services: Services = Depends(get_services)):
    return await services.inventory.list_garments()


@app.post("/api/garments", response_model=Garment, status_code=201)
async def add_garment(garment: Garment, services: Services = Depends(get_services)):
    """Add or replace an inventory item. The local cache mirrors the primary store."""
    await services.inventory.save_garment(garment)
    await services.inventory_cache.save_garment(garment)
    logger.info("Saved garment %s", garment.id)
    return garment


@app.delete("/api/garments/{garment_id}", status_code=204)
async def delete_garment(garment_id: str, services: Services = Depends(get_services)):
    deleted = await services.inventory.delete_garment(garment_id)
    cached = await services.inventory_cache.delete_garment(garment_id)
    if not (deleted or cached):
        raise HTTPException(status_code=404, detail="Garment not found")
    logger.info("Deleted garment %s", garment_id)
    return Response(status_code=204)


@app.get("/api/garments/resolve")
async def resolve_garment(
    id: str | None = Query(default=None),
    services: Services = Depends(get_services),
):
    """Resolve a scanned deep link. Unknown ids route to the landing screen."""
    garment = await services.resolver.resolve({"id": id} if id else None)
    if garment is None:
        return {"route": "landing", "garment": None}
    return {"route": "garment", "garment": garment}


@app.get("/api/garments/{garment_id}/link")
async def garment_link(garment_id: str, services: Services = Depends(get_services)):
    """URL to encode into the garment's QR code."""
    garment = await services.inventory.get_garment(garment_id)
    if garment is None:
        raise HTTPException(status_code=404, detail="Garment not found")
    return {"url": build_deep_link(services.config.deep_link_base_url, garment.id)}


@app.get("/api/profile", response_model=ProfileResponse)
async def get_profile(services: Services = Depends(get_services)):
    profile = await services.profiles.get_profile()
    if profile is None:
        raise HTTPException(status_code=404, detail="No boutique profile configured")
    return _profile_response(profile)


@app.put("/api/profile", response_model=ProfileResponse)
async def update_profile(body: ProfileBody, services: Services = Depends(get_services)):
    """Update branding, payment link and the profile-scoped Gemini key."""
    current = await services.profiles.get_profile()
    updates = body.model_dump(exclude_unset=True)
    if "gemini_api_key" in updates and not (updates["gemini_api_key"] or "").strip():
        updates["gemini_api_key"] = None

    if current is None:
        profile = MerchantProfile(credits=services.config.session.initial_credits, **updates)
    else:
        profile = current.model_copy(update=updates)
    await services.profiles.save_profile(profile)
    logger.info("Profile %s updated", profile.uid)
    return _profile_response(profile)


@app.post("/api/tryon", response_model=TryOnResponse)
async def generate_tryon(
    body: TryOnBody,
    services: Services = Depends(get_services),
    shopper_id: str = Depends(get_shopper_id),
):
    """Generate a virtual try-on image.

    Args:
        body: Shopper photo plus a garment id (or inline garment)

    Returns:
        The composite as a data URL, or a localized failure message
    """
    if body.garment_id:
        garment = await services.resolver.resolve({"id": body.garment_id})
        if garment is None:
            raise HTTPException(status_code=404, detail="Garment not found")
    elif body.garment is not None:
        garment = body.garment
    else:
        raise HTTPException(status_code=422, detail="garment_id or garment is required")

    session = services.new_session(shopper_id)
    try:
        session.select_garment(garment)
        session.submit_photo(body.photo)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    result = await session.wait()

    return TryOnResponse(
        success=result.success,
        image_url=result.image_url,
        message=result.message,
        category=result.category,
        retryable=result.retryable,
        credits_remaining=await services.ledger.balance(),
    )


@app.get("/api/history", response_model=list[HistoryItem])
async def get_history(
    services: Services = Depends(get_services),
    shopper_id: str = Depends(get_shopper_id),
):
    return services.history_for(shopper_id).items()


@app.delete("/api/history", status_code=204)
async def clear_history(
    services: Services = Depends(get_services),
    shopper_id: str = Depends(get_shopper_id),
):
    services.history_for(shopper_id).clear()
    return Response(status_code=204)


@app.get("/api/credits", response_model=CreditsResponse)
async def get_credits(services: Services = Depends(get_services)):
    return CreditsResponse(credits=await services.ledger.balance())


@app.post("/api/credits/top-up", response_model=CreditsResponse)
async def top_up_credits(body: TopUpBody, services: Services = Depends(get_services)):
    """Stub purchase: credits are added without any payment step."""
    try:
        credits = await services.ledger.top_up(body.amount)
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return CreditsResponse(credits=credits)


def _is_private_literal(host: str) -> bool:
    try:
        return not ipaddress.ip_address(host).is_global
    except ValueError:
        return False  # a hostname, not an IP literal


@app.get("/proxy-image")
async def proxy_image(url: str, services: Services = Depends(get_services)):
    """Relay a garment image whose origin blocks direct retrieval.

    Only http(s) URLs on hosts that serve inventory images are relayed.
    Redirects are not followed.
    """
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host or _is_private_literal(host):
        raise HTTPException(status_code=400, detail="URL not allowed")
    if host not in await services.relay_hosts():
        raise HTTPException(status_code=403, detail="Host is not an inventory image host")

    headers = browser_headers(url, services.config.fetch.user_agent)
    async with httpx.AsyncClient(timeout=services.config.fetch.relay_timeout) as client:
        try:
            response = await client.get(url, headers=headers, follow_redirects=False)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Relay fetch of %s returned %d", url, e.response.status_code)
            raise HTTPException(status_code=502, detail=f"Upstream returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("Relay fetch of %s failed: %s", url, e)
            raise HTTPException(status_code=502, detail="Upstream image unavailable")

    media_type = response.headers.get("content-type", "application/octet-stream")
    return Response(content=response.content, media_type=media_type)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
