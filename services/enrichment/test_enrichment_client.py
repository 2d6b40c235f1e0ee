"""
Unit tests for EnrichmentClient

Tests retry and backoff behaviour, error classification, and parsing and
normalization of model output, with the HTTP layer mocked.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from services.enrichment.enrichment_client import (
    EnrichmentClient,
    clean_content,
    normalize_verdict,
    parse_verdict,
)
from shared.errors import (
    EnrichmentAPIError,
    EnrichmentFormatError,
    HostResourceError,
    RetriesExhaustedError,
)
from shared.models import CANONICAL_ASPECTS


def chat_body(content: str) -> str:
    """Wrap model output the way the chat-completion API does."""
    return json.dumps({"choices": [{"message": {"content": content}}]})


VALID_VERDICT = {
    "primary_sentiment": {"label": "positive", "score": 0.8},
    "aspects": {
        "technological": {"sentiment": "Positive", "score": 0.9},
        "societal": {"sentiment": "NEUTRAL", "score": 0.5},
        "ethical": {"sentiment": "negative", "score": 0.3},
    },
    "overall_confidence": 0.85,
}


class MockAsyncContextManager:
    """Mock async context manager for aiohttp responses."""

    def __init__(self, response):
        self.response = response

    async def __aenter__(self):
        return self.response

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


class TestEnrichmentClient:
    """Test suite for EnrichmentClient.analyze."""

    @pytest.fixture
    def sleep(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def rate_limiter(self) -> MagicMock:
        limiter = MagicMock()
        limiter.acquire = AsyncMock()
        return limiter

    @pytest.fixture
    def client(self, rate_limiter: MagicMock, sleep: AsyncMock) -> EnrichmentClient:
        """Create a client with a 1 second base delay."""
        client = EnrichmentClient(
            api_key="test-key",
            rate_limiter=rate_limiter,
            max_retries=5,
            base_delay=1.0,
            max_delay=120.0,
            sleep=sleep,
        )
        client._post = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_success_first_attempt(
        self, client: EnrichmentClient, rate_limiter: MagicMock, sleep: AsyncMock
    ) -> None:
        """Test a successful call waits for a token and the pacing delay."""
        client._post.return_value = (200, chat_body(json.dumps(VALID_VERDICT)))

        verdict = await client.analyze("GPT-4 is impressive")

        assert verdict.primary_sentiment.label == "POSITIVE"
        assert verdict.overall_confidence == 0.85
        rate_limiter.acquire.assert_awaited_once()
        assert [c.args[0] for c in sleep.await_args_list] == [1.0]

    @pytest.mark.asyncio
    async def test_three_throttles_then_success(
        self, client: EnrichmentClient, rate_limiter: MagicMock, sleep: AsyncMock
    ) -> None:
        """Test backoff escalates min(base * 2^n, max) for each throttled retry."""
        client._post.side_effect = [
            (429, "rate limited"),
            (429, "rate limited"),
            (409, "conflict"),
            (200, chat_body(json.dumps(VALID_VERDICT))),
        ]

        verdict = await client.analyze("text")

        assert verdict.primary_sentiment.label == "POSITIVE"
        assert client._post.await_count == 4
        assert rate_limiter.acquire.await_count == 4
        delays = [c.args[0] for c in sleep.await_args_list]
        # pacing, then (throttle extra, backoff) per retry
        assert delays == [1.0, 8.0, 2.0, 16.0, 4.0, 32.0, 8.0]
        backoffs = delays[2::2]
        assert backoffs == [min(1.0 * 2 ** n, 120.0) for n in (1, 2, 3)]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, client: EnrichmentClient) -> None:
        """Test the backoff never exceeds max_delay."""
        client.base_delay = 8.0

        assert client.backoff_delay(1) == 16.0
        assert client.backoff_delay(4) == 120.0
        assert client.throttle_delay(1) == 64.0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client: EnrichmentClient) -> None:
        """Test persistent throttling raises RetriesExhaustedError."""
        client._post.return_value = (429, "rate limited")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await client.analyze("text")

        assert exc_info.value.attempts == 5
        assert client._post.await_count == 5

    @pytest.mark.asyncio
    async def test_other_status_fails_immediately(self, client: EnrichmentClient) -> None:
        """Test a non-throttling error status is not retried."""
        client._post.return_value = (500, "boom")

        with pytest.raises(EnrichmentAPIError) as exc_info:
            await client.analyze("text")

        assert exc_info.value.status_code == 500
        assert client._post.await_count == 1

    @pytest.mark.asyncio
    async def test_control_characters_cleaned_once(self, client: EnrichmentClient) -> None:
        """Test output that is valid only after cleanup is accepted."""
        raw = json.dumps(VALID_VERDICT)
        broken = raw.replace('"label": "positive"', '"label": "posi\ntive"')
        client._post.return_value = (200, chat_body(broken))

        verdict = await client.analyze("text")

        assert verdict.primary_sentiment.label == "POSITIVE"

    @pytest.mark.asyncio
    async def test_unparseable_output(self, client: EnrichmentClient) -> None:
        """Test output invalid even after cleanup raises EnrichmentFormatError."""
        client._post.return_value = (200, chat_body("I think it is positive"))

        with pytest.raises(EnrichmentFormatError):
            await client.analyze("text")
        assert client._post.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_envelope(self, client: EnrichmentClient) -> None:
        """Test a body without choices raises EnrichmentFormatError."""
        client._post.return_value = (200, json.dumps({"choices": []}))

        with pytest.raises(EnrichmentFormatError, match="Invalid API response format"):
            await client.analyze("text")

    def test_build_payload(self, client: EnrichmentClient) -> None:
        """Test the request asks for low-temperature JSON output."""
        payload = client.build_payload('he said "hi"')

        assert payload["model"] == "mistral-small"
        assert payload["temperature"] == 0.1
        assert payload["max_tokens"] == 500
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["messages"][0]["role"] == "system"
        assert '"he said \\"hi\\""' in payload["messages"][1]["content"]


class TestEnrichmentTransport:
    """Test the aiohttp layer."""

    @pytest.fixture
    def client(self) -> EnrichmentClient:
        client = EnrichmentClient(api_key="test-key", sleep=AsyncMock())
        session = MagicMock()
        session.closed = False
        session.close = AsyncMock()
        client._session = session
        return client

    @pytest.mark.asyncio
    async def test_post_returns_status_and_body(self, client: EnrichmentClient) -> None:
        """Test status and body are read from the response."""
        response = MagicMock()
        response.status = 200
        response.text = AsyncMock(return_value="{}")
        client._session.post.return_value = MockAsyncContextManager(response)

        status, body = await client._post({"model": "m"})

        assert (status, body) == (200, "{}")
        client._session.post.assert_called_once_with(client.url, json={"model": "m"})

    @pytest.mark.asyncio
    async def test_connection_error_is_host_resource_error(self, client: EnrichmentClient) -> None:
        """Test transport failures are classified as HostResourceError."""
        client._session.post.side_effect = aiohttp.ClientConnectionError("pool exhausted")

        with pytest.raises(HostResourceError):
            await client._post({})

    @pytest.mark.asyncio
    async def test_close(self, client: EnrichmentClient) -> None:
        """Test close releases the session."""
        session = client._session

        await client.close()

        session.close.assert_awaited_once()
        assert client._session is None


class TestVerdictNormalization:
    """Test normalize_verdict and parse_verdict."""

    def test_missing_aspects_are_filled(self) -> None:
        """Test missing canonical aspects default to neutral 0.5."""
        data = dict(VALID_VERDICT, aspects={"technological": {"sentiment": "positive", "score": 0.7}})

        verdict = normalize_verdict(data)

        assert set(verdict.aspects) == set(CANONICAL_ASPECTS)
        assert verdict.aspects["societal"].sentiment == "neutral"
        assert verdict.aspects["societal"].score == 0.5

    def test_extra_aspects_are_dropped(self) -> None:
        """Test aspects outside the canonical set are discarded."""
        aspects = dict(VALID_VERDICT["aspects"], economic={"sentiment": "positive", "score": 1.0})

        verdict = normalize_verdict(dict(VALID_VERDICT, aspects=aspects))

        assert set(verdict.aspects) == set(CANONICAL_ASPECTS)

    def test_labels_are_normalized(self) -> None:
        """Test label uppercasing and aspect lowercasing."""
        data = dict(VALID_VERDICT, primary_sentiment={"label": "very positive", "score": 0.9})

        verdict = normalize_verdict(data)

        assert verdict.primary_sentiment.label == "VERY_POSITIVE"
        assert verdict.aspects["technological"].sentiment == "positive"
        assert verdict.aspects["societal"].sentiment == "neutral"

    def test_unknown_label_is_rejected(self) -> None:
        """Test a label outside the five sentiment labels fails the verdict."""
        content = json.dumps({
            "primary_sentiment": {"label": "mixed"},
            "aspects": {"technological": {"sentiment": "positive", "score": 0.6}},
            "overall_confidence": 0.7,
        })

        with pytest.raises(EnrichmentFormatError, match="Unknown sentiment label"):
            parse_verdict(content)

    def test_unknown_aspect_sentiment_gets_default(self) -> None:
        """Test an unrecognised aspect sentiment falls back to neutral 0.5."""
        aspects = dict(VALID_VERDICT["aspects"], technological={"sentiment": "ambivalent", "score": 0.9})

        verdict = normalize_verdict(dict(VALID_VERDICT, aspects=aspects))

        assert verdict.aspects["technological"].sentiment == "neutral"
        assert verdict.aspects["technological"].score == 0.5
        assert verdict.aspects["ethical"].sentiment == "negative"

    def test_scores_are_clamped(self) -> None:
        """Test out-of-range scores are clamped to [0, 1]."""
        data = dict(VALID_VERDICT, overall_confidence=1.7)

        assert normalize_verdict(data).overall_confidence == 1.0

    @pytest.mark.parametrize("missing", ["primary_sentiment", "aspects", "overall_confidence"])
    def test_required_fields(self, missing: str) -> None:
        """Test each required field is enforced."""
        data = {k: v for k, v in VALID_VERDICT.items() if k != missing}

        with pytest.raises(EnrichmentFormatError):
            parse_verdict(json.dumps(data))

    def test_clean_content(self) -> None:
        """Test control characters and outer whitespace are removed."""
        assert clean_content('  {"a":\t1}\n ') == '{"a":1}'
