"""
HTTP Adapter Tests.

============================================================
PURPOSE
============================================================
Tests for the REST API transport, store and submitter.

TEST CATEGORIES:
- Error mapping: status codes to typed exceptions
- Retry: GET only, retryable errors only
- Store: endpoint paths and payload parsing
- Submitter: rejection handling
- Logging: credential masking

============================================================
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from donation_verification.adapters.base import BulkEntity
from donation_verification.adapters.http import (
    ApiChainSubmitter,
    ApiDonationStore,
    ApiTransport,
)
from donation_verification.adapters.logging_utils import mask_headers, mask_params, mask_value
from donation_verification.config import RetryConfig
from donation_verification.queries import VerificationQuery
from donation_verification.service import DonationStatsService
from donation_verification.types import (
    Donation,
    NetworkError,
    NotFoundError,
    PaymentStatus,
    PlatformStatsSnapshot,
    RemoteError,
    VerificationEngineError,
    VerificationRecord,
)


def fast_transport(max_retries=2):
    return ApiTransport(retry_config=RetryConfig(max_retries=max_retries, initial_delay_seconds=0))


def fake_transport():
    transport = MagicMock(spec=ApiTransport)
    transport.get = AsyncMock()
    transport.post = AsyncMock()
    transport.put = AsyncMock()
    transport.delete = AsyncMock()
    return transport


class FakeResponse:
    """aiohttp response stand-in with a raw text body."""

    def __init__(self, status, text):
        self.status = status
        self._text = text

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """aiohttp session stand-in replaying canned responses."""

    closed = False

    def __init__(self, *responses):
        self._responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url))
        return FakeResponse(*self._responses.pop(0))


def session_transport(*responses, max_retries=2):
    transport = fast_transport(max_retries)
    transport._session = FakeSession(*responses)
    return transport


# ============================================================
# ERROR MAPPING
# ============================================================

class TestBuildError:
    """Tests for ApiTransport.build_error."""

    def test_not_found(self):
        """Test 404."""
        error = ApiTransport.build_error(404, {"message": "Donation not found"})

        assert isinstance(error, NotFoundError)
        assert error.message == "Donation not found"
        assert error.http_status == 404

    def test_server_error_retryable(self):
        """Test 5xx."""
        error = ApiTransport.build_error(502, None)

        assert isinstance(error, NetworkError)
        assert error.is_retryable
        assert error.message == "HTTP 502"

    def test_rate_limited(self):
        """Test 429."""
        error = ApiTransport.build_error(429, {"error": "slow down"})

        assert isinstance(error, NetworkError)
        assert error.code == "RTE_TOO_MANY_REQUESTS"

    @pytest.mark.parametrize("status,code", [
        (400, "REM_SERVICE_ERROR"),
        (401, "AUT_UNAUTHORIZED"),
        (403, "AUT_FORBIDDEN"),
        (409, "REM_CONFLICT"),
    ])
    def test_remote_errors(self, status, code):
        """Test domain errors."""
        error = ApiTransport.build_error(status, {})

        assert isinstance(error, RemoteError)
        assert error.code == code
        assert not error.is_retryable

    def test_decode_invalid_json(self):
        """Test non-JSON body."""
        with pytest.raises(NetworkError) as exc_info:
            ApiTransport._decode("<html>")

        assert exc_info.value.code == "NET_BAD_RESPONSE"

    def test_decode_empty(self):
        """Test empty body."""
        assert ApiTransport._decode("  ") is None


# ============================================================
# RETRY
# ============================================================

class TestRetry:
    """Tests for request retry policy."""

    @pytest.mark.asyncio
    async def test_get_retried_on_network_error(self):
        """Test idempotent GET retry."""
        transport = fast_transport()
        transport._send = AsyncMock(side_effect=[
            NetworkError("down", code="NET_CONNECTION_FAILED"),
            {"ok": True},
        ])

        assert await transport.get("/donations/1") == {"ok": True}
        assert transport._send.await_count == 2

    @pytest.mark.asyncio
    async def test_get_gives_up(self):
        """Test retry budget."""
        transport = fast_transport(max_retries=2)
        transport._send = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await transport.get("/donations/1")

        assert transport._send.await_count == 3

    @pytest.mark.asyncio
    async def test_post_never_retried(self):
        """Submissions are sent once."""
        transport = fast_transport()
        transport._send = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await transport.post("/donations/1/verify")

        assert transport._send.await_count == 1

    @pytest.mark.asyncio
    async def test_remote_error_not_retried(self):
        """Test domain errors are not retried."""
        transport = fast_transport()
        transport._send = AsyncMock(side_effect=RemoteError("bad", code="REM_CONFLICT"))

        with pytest.raises(RemoteError):
            await transport.get("/donations/1")

        assert transport._send.await_count == 1

    @pytest.mark.asyncio
    async def test_not_connected(self):
        """Test requests without a session."""
        with pytest.raises(NetworkError) as exc_info:
            await fast_transport().get("/donations/1")

        assert not exc_info.value.is_retryable

    def test_auth_header(self):
        """Test bearer token header."""
        transport = fast_transport()
        transport.set_auth_token("tok")

        assert transport._headers()["Authorization"] == "Bearer tok"


# ============================================================
# RAW RESPONSES
# ============================================================

class TestResponseBodies:
    """Tests for status and body handling in one request."""

    @pytest.mark.asyncio
    async def test_html_404_is_not_found(self):
        """An HTML error page still maps by status."""
        transport = session_transport((404, "<html>Cannot GET</html>"))

        assert await ApiDonationStore(transport).get_verification("1") is None
        assert len(transport._session.requests) == 1

    @pytest.mark.asyncio
    async def test_html_404_donation(self):
        """Test get_donation with a non-JSON 404."""
        transport = session_transport((404, "Not Found"))

        assert await ApiDonationStore(transport).get_donation("1") is None
        assert len(transport._session.requests) == 1

    @pytest.mark.asyncio
    async def test_plain_text_conflict_on_submit(self):
        """A plain-text 409 is a non-retryable RemoteError."""
        transport = session_transport((409, "Already submitted"))
        donation = Donation(donation_id="7", amount=Decimal("10"), payment_status=PaymentStatus.SUCCEEDED)

        with pytest.raises(RemoteError) as exc_info:
            await ApiChainSubmitter(transport).submit(donation)

        assert exc_info.value.code == "REM_CONFLICT"
        assert exc_info.value.http_status == 409
        assert not exc_info.value.is_retryable
        assert "Already submitted" in exc_info.value.message
        assert transport._session.requests == [("POST", "http://localhost:4700/donations/7/verify")]

    @pytest.mark.asyncio
    async def test_text_server_error_retried(self):
        """Test a text 503 on GET is retried by status."""
        transport = session_transport((503, "Service Unavailable"), (200, '{"data": {"id": 1}}'))

        assert await transport.get("/donations/1") == {"data": {"id": 1}}
        assert len(transport._session.requests) == 2

    @pytest.mark.asyncio
    async def test_undecodable_success_body(self):
        """Undecodable 2xx bodies are retryable only for GET."""
        get_transport = session_transport((200, "<html>"), (200, "<html>"), max_retries=1)
        post_transport = session_transport((200, "<html>"))

        with pytest.raises(NetworkError) as get_error:
            await get_transport.get("/donations/1")
        with pytest.raises(NetworkError) as post_error:
            await post_transport.post("/donations/1/verify")

        assert get_error.value.code == "NET_BAD_RESPONSE"
        assert get_error.value.is_retryable
        assert len(get_transport._session.requests) == 2
        assert post_error.value.code == "NET_BAD_RESPONSE"
        assert not post_error.value.is_retryable


# ============================================================
# STORE
# ============================================================

class TestApiDonationStore:
    """Tests for ApiDonationStore."""

    @pytest.mark.asyncio
    async def test_get_donation(self):
        """Test donation endpoint and parsing."""
        transport = fake_transport()
        transport.get.return_value = {"data": {
            "id": 1, "amount": 25, "paymentStatus": "SUCCEEDED", "donorId": 4,
        }}
        store = ApiDonationStore(transport)

        donation = await store.get_donation("1")

        transport.get.assert_awaited_once_with("/donations/1")
        assert donation.amount == Decimal("25")
        assert donation.payment_status == PaymentStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_get_donation_not_found(self):
        """Test 404 maps to None."""
        transport = fake_transport()
        transport.get.side_effect = NotFoundError("gone")

        assert await ApiDonationStore(transport).get_donation("1") is None

    @pytest.mark.asyncio
    async def test_malformed_donation(self):
        """Test unparsable payload."""
        transport = fake_transport()
        transport.get.return_value = {"id": 1, "paymentStatus": "WHAT"}

        with pytest.raises(VerificationEngineError) as exc_info:
            await ApiDonationStore(transport).get_donation("1")

        assert exc_info.value.code == "INT_SERIALIZATION_ERROR"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, {}, {"data": None}])
    async def test_get_verification_empty(self, payload):
        """Empty body means no record."""
        transport = fake_transport()
        transport.get.return_value = payload

        assert await ApiDonationStore(transport).get_verification("1") is None

    @pytest.mark.asyncio
    async def test_get_verification_nested(self):
        """Test {"verification": {...}} bodies."""
        transport = fake_transport()
        transport.get.return_value = {"verification": {
            "verified": True, "transactionHash": "0x1", "blockNumber": 3,
        }}

        record = await ApiDonationStore(transport).get_verification("9")

        transport.get.assert_awaited_once_with("/donations/9/verification")
        assert record.donation_id == "9"
        assert record.block_number == 3

    @pytest.mark.asyncio
    async def test_charity_stats_single_round_trip(self):
        """Test donations and flow from one request."""
        transport = fake_transport()
        transport.get.return_value = {
            "donations": [{"id": 1, "amount": 10, "paymentStatus": "SUCCEEDED"}],
            "flow": {"totalReceived": 100, "totalDisbursed": 40},
        }
        store = ApiDonationStore(transport)

        donations, flow = await store.get_charity_donations_and_flow("3")

        transport.get.assert_awaited_once_with("/donations/charity/3/stats")
        assert len(donations) == 1
        assert flow.total_disbursed == Decimal("40")

    @pytest.mark.asyncio
    async def test_platform_stats(self):
        """Test platform stats endpoint."""
        transport = fake_transport()
        transport.get.return_value = {"data": {"totalCount": 2, "verifiedCount": 1}}

        snapshot = await ApiDonationStore(transport).get_platform_stats()

        transport.get.assert_awaited_once_with("/donations/blockchain/stats")
        assert snapshot.transparency_score == 50.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"data": {}}, None])
    async def test_platform_stats_empty_body(self, payload):
        """An empty body is an empty platform, through the stats service too."""
        transport = fake_transport()
        transport.get.return_value = payload

        snapshot = await DonationStatsService(ApiDonationStore(transport)).platform_stats()

        assert snapshot == PlatformStatsSnapshot()
        assert snapshot.total_count == 0

    @pytest.mark.asyncio
    async def test_list_all_donations_unsupported(self):
        """Test the API has no platform-wide listing."""
        transport = fake_transport()

        with pytest.raises(RemoteError) as exc_info:
            await ApiDonationStore(transport).list_all_donations()

        assert exc_info.value.code == "REM_SERVICE_ERROR"
        transport.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_verifications_params(self):
        """Test listing query parameters."""
        transport = fake_transport()
        transport.get.return_value = {"verifications": [], "pagination": {"total": 0}}
        query = VerificationQuery(verified=True, search="0x")

        await ApiDonationStore(transport).list_verifications(query)

        transport.get.assert_awaited_once_with("/admin/verifications", params=query.to_params())

    @pytest.mark.asyncio
    async def test_update_verification_body(self):
        """Test change keys are sent in camelCase."""
        transport = fake_transport()
        transport.put.return_value = {"donationId": 1, "verified": True, "transactionHash": "0x1"}

        record = await ApiDonationStore(transport).update_verification(
            "1", {"verified": True, "block_number": 5}
        )

        transport.put.assert_awaited_once_with(
            "/admin/verifications/1", body={"verified": True, "blockNumber": 5}
        )
        assert record.verified is True

    @pytest.mark.asyncio
    async def test_update_verification_unknown_field(self):
        """Test unknown change keys."""
        with pytest.raises(ValueError):
            await ApiDonationStore(fake_transport()).update_verification("1", {"amount": 5})

    @pytest.mark.asyncio
    async def test_delete_verification(self):
        """Test delete and 404."""
        transport = fake_transport()
        store = ApiDonationStore(transport)

        assert await store.delete_verification("1") is True
        transport.delete.side_effect = NotFoundError("gone")
        assert await store.delete_verification("1") is False

    @pytest.mark.asyncio
    async def test_bulk_delete(self):
        """Test bulk endpoint body."""
        transport = fake_transport()

        result = await ApiDonationStore(transport).bulk_delete(BulkEntity.USERS, ["1", "2"])

        transport.delete.assert_awaited_once_with("/admin/users/bulk", body={"userIds": ["1", "2"]})
        assert result.successful == 2

    @pytest.mark.asyncio
    async def test_bulk_delete_failure_shared(self):
        """Every id shares a failed batch outcome."""
        transport = fake_transport()
        transport.delete.side_effect = RemoteError("forbidden", code="AUT_FORBIDDEN")

        result = await ApiDonationStore(transport).bulk_delete(BulkEntity.CHARITIES, ["1", "2"])

        assert (result.successful, result.failed) == (0, 2)
        assert {item.error_code for item in result.per_item} == {"AUT_FORBIDDEN"}


# ============================================================
# SUBMITTER
# ============================================================

class TestApiChainSubmitter:
    """Tests for ApiChainSubmitter."""

    def donation(self):
        return Donation(donation_id="7", amount=Decimal("10"), payment_status=PaymentStatus.SUCCEEDED)

    @pytest.mark.asyncio
    async def test_submit(self):
        """Test verify endpoint."""
        transport = fake_transport()
        transport.post.return_value = {"data": {
            "verified": True, "transactionHash": "0xfeed", "blockNumber": 10,
        }}

        record = await ApiChainSubmitter(transport).submit(self.donation())

        transport.post.assert_awaited_once_with("/donations/7/verify")
        assert record == VerificationRecord(
            donation_id="7", verified=True, transaction_hash="0xfeed", block_number=10,
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"success": False, "message": "no"}, None])
    async def test_rejected(self, payload):
        """Test rejected or empty responses."""
        transport = fake_transport()
        transport.post.return_value = payload

        with pytest.raises(RemoteError) as exc_info:
            await ApiChainSubmitter(transport).submit(self.donation())

        assert exc_info.value.code == "REM_SUBMISSION_REJECTED"


# ============================================================
# LOGGING
# ============================================================

class TestCredentialMasking:
    """Tests for secure logging helpers."""

    def test_mask_value(self):
        """Test long values keep only a prefix."""
        masked = mask_value("abcdefghijklmnop")

        assert "ijkl" not in masked

    def test_mask_headers(self):
        """Test authorization header masking."""
        masked = mask_headers({"Authorization": "Bearer supersecrettoken", "Accept": "json"})

        assert "supersecrettoken" not in masked["Authorization"]
        assert masked["Accept"] == "json"

    def test_mask_params(self):
        """Test sensitive query parameters."""
        masked = mask_params({"token": "supersecrettoken", "page": "2"})

        assert "supersecrettoken" not in str(masked["token"])
        assert masked["page"] == "2"
