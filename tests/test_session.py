"""Tests for the credit-gated try-on session."""

import asyncio

import httpx
import pytest
import pytest_asyncio

from mirrorly.config import FetchConfig
from mirrorly.errors import InvalidTransition
from mirrorly.models import ErrorCategory, MerchantProfile
from mirrorly.pipeline import SessionState, TryOnSession
from mirrorly.services import CreditLedger, InMemoryProfileStore, RemoteImageFetcher


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def success_backend(fake_backend_cls, sdk_response, minimal_png_bytes):
    return fake_backend_cls(response=sdk_response(image=minimal_png_bytes))


@pytest.fixture
def make_session(config, make_pipeline, ledger, history, clock):
    def _make(backend, fetcher=None, ledger=ledger, api_key=None):
        return TryOnSession(
            config=config,
            pipeline=make_pipeline(backend, fetcher),
            ledger=ledger,
            history=history,
            api_key=api_key,
            clock=clock,
        )
    return _make


class TestHappyPath:
    """Scan, photo, result."""

    @pytest.mark.asyncio
    async def test_success_consumes_one_credit_and_logs(
        self, make_session, success_backend, garment, photo_data_uri, ledger, history
    ):
        session = make_session(success_backend)
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        result = await session.wait()

        assert result.success
        assert result.image_url.startswith("data:image/png;base64,")
        assert session.state == SessionState.RESULT
        assert await ledger.balance() == 4
        entries = history.items()
        assert len(entries) == 1
        assert entries[0].garment.id == "g1"
        assert entries[0].result_image_url == result.image_url

    @pytest.mark.asyncio
    async def test_processing_state_is_immediate(self, make_session, success_backend, garment, photo_data_uri):
        """The switch to PROCESSING happens before any awaiting."""
        session = make_session(success_backend)
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)

        assert session.state == SessionState.PROCESSING
        assert success_backend.calls == []
        await session.wait()

    @pytest.mark.asyncio
    async def test_resubmit_while_processing_is_ignored(
        self, make_session, success_backend, garment, photo_data_uri, ledger
    ):
        session = make_session(success_backend)
        session.select_garment(garment)

        first = session.submit_photo(photo_data_uri)
        second = session.submit_photo(photo_data_uri)
        await first

        assert second is None
        assert len(success_backend.calls) == 1
        assert await ledger.balance() == 4

    @pytest.mark.asyncio
    async def test_photo_requires_garment(self, make_session, success_backend, photo_data_uri):
        session = make_session(success_backend)

        with pytest.raises(InvalidTransition):
            session.submit_photo(photo_data_uri)


class TestCreditGate:
    """Credits are charged only for delivered images."""

    @pytest.mark.asyncio
    async def test_zero_credits_never_calls_model(
        self, make_session, success_backend, garment, photo_data_uri, history
    ):
        empty = CreditLedger(InMemoryProfileStore(MerchantProfile(name="Atelier Nord", credits=0)))
        session = make_session(success_backend, ledger=empty)
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        result = await session.wait()

        assert not result.success
        assert result.category == ErrorCategory.INSUFFICIENT_CREDITS
        assert success_backend.calls == []
        assert await empty.balance() == 0
        assert history.items() == []

    @pytest.mark.asyncio
    async def test_safety_refusal_keeps_credits(
        self, make_session, fake_backend_cls, sdk_response, garment, photo_data_uri, ledger, history
    ):
        backend = fake_backend_cls(response=sdk_response(text="I can't help with that.", finish_reason="IMAGE_SAFETY"))
        session = make_session(backend)
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        result = await session.wait()

        assert result.category == ErrorCategory.SAFETY_REFUSAL
        assert result.retryable
        assert await ledger.balance() == 5
        assert history.items() == []

    @pytest.mark.asyncio
    async def test_dead_garment_link_keeps_credits(
        self, make_session, success_backend, remote_garment, photo_data_uri, ledger
    ):
        """Direct timeout + relay 404: fetch failure, no generation, no charge."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.example.com":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(404)

        fetcher = RemoteImageFetcher(
            FetchConfig(),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        session = make_session(success_backend, fetcher=fetcher)
        session.select_garment(remote_garment)

        session.submit_photo(photo_data_uri)
        result = await session.wait()

        assert result.category == ErrorCategory.GARMENT_FETCH_FAILED
        assert success_backend.calls == []
        assert await ledger.balance() == 5

    @pytest.mark.asyncio
    async def test_backend_error_is_classified(
        self, make_session, fake_backend_cls, garment, photo_data_uri, ledger
    ):
        backend = fake_backend_cls(error=RuntimeError("429 RESOURCE_EXHAUSTED. Quota exceeded"))
        session = make_session(backend)
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        result = await session.wait()

        assert result.category == ErrorCategory.RATE_LIMITED
        assert await ledger.balance() == 5


class TestApiKeyResolution:
    """Explicit key, then profile key, then environment key."""

    @pytest.mark.asyncio
    async def test_explicit_key_wins(self, config, make_pipeline, history, success_backend, garment, photo_data_uri):
        profiles = InMemoryProfileStore(MerchantProfile(name="Atelier Nord", credits=3, gemini_api_key="profile-key"))
        session = TryOnSession(
            config, make_pipeline(success_backend), CreditLedger(profiles), history, api_key="explicit-key",
        )
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        await session.wait()

        assert success_backend.calls[0].api_key == "explicit-key"

    @pytest.mark.asyncio
    async def test_profile_key_beats_environment(
        self, config, make_pipeline, history, success_backend, garment, photo_data_uri
    ):
        profiles = InMemoryProfileStore(MerchantProfile(name="Atelier Nord", credits=3, gemini_api_key="profile-key"))
        session = TryOnSession(config, make_pipeline(success_backend), CreditLedger(profiles), history)
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        await session.wait()

        assert success_backend.calls[0].api_key == "profile-key"

    @pytest.mark.asyncio
    async def test_no_key_anywhere(self, make_session, success_backend, garment, photo_data_uri, ledger):
        session = make_session(success_backend)
        session.config = session.config.model_copy(update={"gemini_api_key": None})
        session.select_garment(garment)

        session.submit_photo(photo_data_uri)
        result = await session.wait()

        assert result.category == ErrorCategory.MISSING_CREDENTIALS
        assert not result.retryable
        assert success_backend.calls == []
        assert await ledger.balance() == 5


class TestCancel:
    """Cancel is offered only after the grace period and discards the late result."""

    @pytest.fixture
    def slow_backend(self, fake_backend_cls, sdk_response, minimal_png_bytes):
        return fake_backend_cls(response=sdk_response(image=minimal_png_bytes), delay=0.2)

    @pytest.mark.asyncio
    async def test_not_cancellable_during_grace_period(
        self, make_session, slow_backend, garment, photo_data_uri, clock
    ):
        session = make_session(slow_backend)
        session.select_garment(garment)
        session.submit_photo(photo_data_uri)

        clock.now += 5
        assert not session.can_cancel
        assert not session.cancel()
        assert session.state == SessionState.PROCESSING
        await session.wait()

    @pytest.mark.asyncio
    async def test_cancelled_attempt_changes_nothing(
        self, make_session, slow_backend, garment, photo_data_uri, clock, ledger, history
    ):
        session = make_session(slow_backend)
        session.select_garment(garment)
        task = session.submit_photo(photo_data_uri)

        clock.now += 10
        assert session.can_cancel
        assert session.cancel()
        assert session.state == SessionState.IDLE
        assert session.garment is garment

        # The abandoned call still completes; its outcome must be dropped
        await task
        assert session.state == SessionState.IDLE
        assert session.result is None
        assert await ledger.balance() == 5
        assert history.items() == []

    @pytest.mark.asyncio
    async def test_new_attempt_after_cancel_is_not_clobbered(
        self, make_session, fake_backend_cls, sdk_response, minimal_png_bytes, garment, photo_data_uri, clock, ledger
    ):
        backend = fake_backend_cls(response=sdk_response(image=minimal_png_bytes), delay=0.2)
        session = make_session(backend)
        session.select_garment(garment)
        stale = session.submit_photo(photo_data_uri)
        clock.now += 11
        session.cancel()

        backend.delay = 0.0
        fresh = session.submit_photo(photo_data_uri)
        await asyncio.gather(stale, fresh)

        assert session.state == SessionState.RESULT
        assert session.result.success
        assert await ledger.balance() == 4

    @pytest.mark.asyncio
    async def test_cancel_refused_while_charging(
        self, config, make_pipeline, history, success_backend, garment, photo_data_uri, clock
    ):
        """Once the credit write has started the delivered image cannot be cancelled away."""
        profiles = SlowSaveProfileStore(MerchantProfile(name="Atelier Nord", credits=5))
        session = TryOnSession(
            config, make_pipeline(success_backend), CreditLedger(profiles), history, clock=clock,
        )
        session.select_garment(garment)
        task = session.submit_photo(photo_data_uri)
        clock.now += 11

        await profiles.saving.wait()
        assert session.state == SessionState.PROCESSING
        assert not session.can_cancel
        assert not session.cancel()

        await task
        assert session.state == SessionState.RESULT
        assert session.result.success
        assert (await profiles.get_profile()).credits == 4
        assert len(history.items()) == 1


class SlowSaveProfileStore(InMemoryProfileStore):
    """Profile store whose writes take a while to land."""

    def __init__(self, profile):
        super().__init__(profile)
        self.saving = asyncio.Event()

    async def save_profile(self, profile):
        self.saving.set()
        await asyncio.sleep(0.1)
        await super().save_profile(profile)


class BrokenHistory:
    def append(self, garment, result_image_url):
        raise ValueError("history backend rejected the entry")

    def items(self):
        return []


@pytest.mark.asyncio
async def test_history_failure_keeps_delivered_image(
    config, make_pipeline, ledger, success_backend, garment, photo_data_uri
):
    session = TryOnSession(config, make_pipeline(success_backend), ledger, BrokenHistory())
    session.select_garment(garment)

    session.submit_photo(photo_data_uri)
    result = await session.wait()

    assert result.success
    assert session.state == SessionState.RESULT
    assert await ledger.balance() == 4


class TestResultTransitions:
    """Retry, retake and try-another from the result screen."""

    @pytest_asyncio.fixture
    async def finished_session(self, make_session, fake_backend_cls, sdk_response, garment, photo_data_uri):
        backend = fake_backend_cls(response=sdk_response(text="I cannot find a person in this photo."))
        session = make_session(backend)
        session.select_garment(garment)
        session.submit_photo(photo_data_uri)
        await session.wait()
        return session, backend

    @pytest.mark.asyncio
    async def test_retry_reuses_photo(self, finished_session, sdk_response, minimal_png_bytes, ledger):
        session, backend = finished_session
        assert session.result.category == ErrorCategory.UNRECOGNIZABLE_SUBJECT

        backend.response = sdk_response(image=minimal_png_bytes)
        session.retry()
        assert session.state == SessionState.PROCESSING
        result = await session.wait()

        assert result.success
        assert len(backend.calls) == 2
        assert backend.calls[0].request.images[0].data == backend.calls[1].request.images[0].data
        assert await ledger.balance() == 4

    @pytest.mark.asyncio
    async def test_retake_keeps_garment(self, finished_session, garment):
        session, _ = finished_session

        session.retake()

        assert session.state == SessionState.IDLE
        assert session.garment is garment
        assert session.photo is None
        assert session.result is None

    @pytest.mark.asyncio
    async def test_try_another_clears_garment(self, finished_session):
        session, _ = finished_session
        session.deep_link_id = "g1"

        session.try_another()

        assert session.state == SessionState.IDLE
        assert session.garment is None
        assert session.deep_link_id is None

    @pytest.mark.asyncio
    async def test_result_actions_need_result_state(self, make_session, success_backend):
        session = make_session(success_backend)

        for action in (session.retry, session.retake, session.try_another):
            with pytest.raises(InvalidTransition):
                action()
