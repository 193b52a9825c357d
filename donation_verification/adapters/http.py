"""
Donation Verification - HTTP Adapters.

============================================================
PURPOSE
============================================================
DonationStore and ChainSubmissionService over the donation
platform's REST API (aiohttp).

TRANSPORT RULES:
- Bearer token auth on every request
- JSON in, JSON out, {"data": ...} envelopes unwrapped
- Connection errors / timeouts / 429 / 5xx -> NetworkError
- 404 -> NotFoundError, other 4xx -> RemoteError
- Only GET is retried, with exponential backoff
- POST /donations/{id}/verify is NEVER retried

============================================================
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from ..config import ApiConfig, RetryConfig, TimeoutConfig
from ..errors import error_from_code, map_http_status
from ..queries import VerificationPage, VerificationQuery
from ..types import (
    BulkItemResult,
    BulkResult,
    Donation,
    FundFlow,
    NetworkError,
    NotFoundError,
    PlatformStatsSnapshot,
    RemoteError,
    VerificationEngineError,
    VerificationRecord,
)
from .base import BulkEntity, ChainSubmissionService, DonationStore
from .logging_utils import TransportLogger
from .schemas import (
    CharityStatsPayload,
    DonationSchema,
    DonorStatsPayload,
    PlatformStatsSchema,
    VerificationListPayload,
    VerificationRecordSchema,
    record_to_payload,
    unwrap_envelope,
)


logger = logging.getLogger(__name__)


# ============================================================
# API TRANSPORT
# ============================================================

class ApiTransport:
    """
    aiohttp session wrapper for the donation API.

    Usage:
        async with ApiTransport(config.api, config.timeouts, config.retry) as transport:
            store = ApiDonationStore(transport)
    """

    def __init__(
        self,
        api_config: Optional[ApiConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._api_config = api_config or ApiConfig()
        self._timeout_config = timeout_config or TimeoutConfig()
        self._retry_config = retry_config or RetryConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._log = TransportLogger()

    @property
    def base_url(self) -> str:
        return self._api_config.base_url.rstrip("/")

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    def set_auth_token(self, token: Optional[str]) -> None:
        """Replace the session token (e.g. after login)."""
        self._api_config.auth_token = token

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is not None:
            await self.close()

        timeout = aiohttp.ClientTimeout(
            connect=self._timeout_config.connection_timeout_seconds,
            total=self._timeout_config.request_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)
        logger.info(f"Donation API session opened ({self.base_url})")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info("Donation API session closed")

    async def __aenter__(self) -> "ApiTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------------------------------------------------
    # REQUESTS
    # --------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = dict(self._api_config.default_headers)
        if self._api_config.auth_token:
            headers["Authorization"] = f"Bearer {self._api_config.auth_token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        """
        Send a request, retrying idempotent GETs on retryable errors.

        Returns:
            Decoded JSON body (None for an empty body)

        Raises:
            NetworkError, RemoteError, NotFoundError
        """
        method = method.upper()
        max_retries = self._retry_config.max_retries if method == "GET" else 0
        request_id = self._log.next_request_id()

        attempt = 0
        while True:
            try:
                return await self._send(request_id, method, path, params, body)
            except VerificationEngineError as e:
                will_retry = e.is_retryable and attempt < max_retries
                self._log.log_error(request_id, e, attempt, will_retry)
                if not will_retry:
                    raise
                await asyncio.sleep(self._retry_config.delay_for_attempt(attempt))
                attempt += 1

    async def _send(
        self,
        request_id: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]],
        body: Any,
    ) -> Any:
        """One attempt, no retry."""
        if not self._session:
            raise NetworkError("Not connected", code="NET_CONNECTION_FAILED", is_retryable=False)

        url = f"{self.base_url}{path}"
        headers = self._headers()
        self._log.log_request(request_id, method, path, headers, params, body)

        started = time.monotonic()
        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
            ) as response:
                text = await response.text()
                self._log.log_response(
                    request_id, response.status, (time.monotonic() - started) * 1000
                )
                if response.status >= 400:
                    raise self.build_error(response.status, self._decode_error_body(text))

                return self._decode(text, retryable=method == "GET")

        except asyncio.TimeoutError:
            raise NetworkError(
                "Request timeout",
                code="TMO_READ",
                is_retryable=True,
            )
        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error: {e}",
                code="NET_CONNECTION_FAILED",
                is_retryable=True,
            )

    @staticmethod
    def _decode(text: str, retryable: bool = True) -> Any:
        """Decode a success body. Undecodable bodies are retryable only for reads."""
        if not text or not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError:
            raise NetworkError(
                "Response body is not valid JSON",
                code="NET_BAD_RESPONSE",
                is_retryable=retryable,
                details={"preview": text[:200]},
            )

    @staticmethod
    def _decode_error_body(text: str) -> Any:
        """Error bodies may be HTML or plain text; keep them as text then."""
        if not text or not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text.strip()[:200]

    @staticmethod
    def build_error(status: int, payload: Any) -> VerificationEngineError:
        """
        Map an error response to a typed exception.

        Args:
            status: HTTP status (>= 400)
            payload: Decoded body, if any

        Returns:
            Exception instance (not raised)
        """
        message = f"HTTP {status}"
        if isinstance(payload, dict):
            message = str(payload.get("message") or payload.get("error") or message)
        elif isinstance(payload, str) and payload:
            message = f"{message}: {payload}"
        return error_from_code(
            map_http_status(status),
            message,
            http_status=status,
            details={"response": payload} if payload is not None else None,
        )

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, body=body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, body=body)

    async def delete(self, path: str, body: Any = None) -> Any:
        return await self.request("DELETE", path, body=body)


def _parse_failure(what: str, error: Exception) -> VerificationEngineError:
    return VerificationEngineError(
        f"Failed to parse {what}: {error}",
        code="INT_SERIALIZATION_ERROR",
    )


_CHANGE_FIELDS = {
    "verified": "verified",
    "transaction_hash": "transactionHash",
    "block_number": "blockNumber",
    "timestamp": "timestamp",
    "submitted_at": "submittedAt",
    "network": "network",
}


# ============================================================
# API DONATION STORE
# ============================================================

class ApiDonationStore(DonationStore):
    """DonationStore backed by the REST API."""

    def __init__(self, transport: ApiTransport):
        self._transport = transport

    # --------------------------------------------------------
    # DONATIONS
    # --------------------------------------------------------

    async def get_donation(self, donation_id: str) -> Optional[Donation]:
        try:
            payload = await self._transport.get(f"/donations/{donation_id}")
        except NotFoundError:
            return None

        body = unwrap_envelope(payload)
        if not body:
            return None
        try:
            return DonationSchema.model_validate(body).to_donation()
        except (ValidationError, ValueError) as e:
            raise _parse_failure(f"donation {donation_id}", e)

    async def list_donor_donations(self, donor_id: str) -> List[Donation]:
        payload = await self._transport.get(f"/donations/stats/{donor_id}")
        try:
            parsed = DonorStatsPayload.parse(payload)
            return [item.to_donation() for item in parsed.donations]
        except (ValidationError, ValueError) as e:
            raise _parse_failure(f"donor stats {donor_id}", e)

    async def get_charity_donations_and_flow(
        self,
        charity_id: str,
    ) -> Tuple[List[Donation], Optional[FundFlow]]:
        """One round trip for both halves of the charity stats payload."""
        payload = await self._transport.get(f"/donations/charity/{charity_id}/stats")
        try:
            parsed = CharityStatsPayload.parse(payload)
            donations = [item.to_donation() for item in parsed.donations]
        except (ValidationError, ValueError) as e:
            raise _parse_failure(f"charity stats {charity_id}", e)
        return donations, parsed.flow.to_flow() if parsed.flow else None

    async def list_charity_donations(self, charity_id: str) -> List[Donation]:
        donations, _ = await self.get_charity_donations_and_flow(charity_id)
        return donations

    async def get_fund_flow(self, charity_id: str) -> Optional[FundFlow]:
        _, flow = await self.get_charity_donations_and_flow(charity_id)
        return flow

    async def get_platform_stats(self) -> Optional[PlatformStatsSnapshot]:
        """Always server-side: an empty body is an empty platform."""
        payload = unwrap_envelope(await self._transport.get("/donations/blockchain/stats"))
        if not payload:
            return PlatformStatsSnapshot()
        try:
            return PlatformStatsSchema.model_validate(payload).to_snapshot()
        except ValidationError as e:
            raise _parse_failure("platform stats", e)

    async def list_all_donations(self) -> List[Donation]:
        # The API exposes no platform-wide donation listing
        raise RemoteError(
            "Donation API does not list all donations; use get_platform_stats",
            code="REM_SERVICE_ERROR",
        )

    # --------------------------------------------------------
    # VERIFICATION RECORDS
    # --------------------------------------------------------

    async def get_verification(self, donation_id: str) -> Optional[VerificationRecord]:
        try:
            payload = await self._transport.get(f"/donations/{donation_id}/verification")
        except NotFoundError:
            return None
        return self._parse_record(payload, donation_id)

    async def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        payload = await self._transport.put(
            f"/admin/verifications/{record.donation_id}",
            body=record_to_payload(record),
        )
        return self._parse_record(payload, record.donation_id) or record

    async def list_verifications(self, query: VerificationQuery) -> VerificationPage:
        payload = await self._transport.get("/admin/verifications", params=query.to_params())
        try:
            return VerificationListPayload.parse(payload).to_page(query)
        except (ValidationError, ValueError) as e:
            raise _parse_failure("verification list", e)

    async def update_verification(
        self,
        donation_id: str,
        changes: Dict[str, Any],
    ) -> VerificationRecord:
        body = {}
        for key, value in changes.items():
            if key not in _CHANGE_FIELDS:
                raise ValueError(f"Unknown verification field: {key}")
            body[_CHANGE_FIELDS[key]] = value.isoformat() if hasattr(value, "isoformat") else value

        payload = await self._transport.put(f"/admin/verifications/{donation_id}", body=body)
        record = self._parse_record(payload, donation_id)
        if record is None:
            record = await self.get_verification(donation_id)
        if record is None:
            raise NotFoundError(f"Verification for donation {donation_id} not found")
        return record

    async def delete_verification(self, donation_id: str) -> bool:
        try:
            await self._transport.delete(f"/admin/verifications/{donation_id}")
        except NotFoundError:
            return False
        return True

    @staticmethod
    def _parse_record(payload: Any, donation_id: str) -> Optional[VerificationRecord]:
        body = unwrap_envelope(payload)
        if isinstance(body, dict) and isinstance(body.get("verification"), dict):
            body = body["verification"]
        if not body or not isinstance(body, dict):
            return None
        try:
            return VerificationRecordSchema.model_validate(body).to_record(donation_id)
        except (ValidationError, ValueError) as e:
            raise _parse_failure(f"verification {donation_id}", e)

    # --------------------------------------------------------
    # BULK OPERATIONS
    # --------------------------------------------------------

    async def bulk_delete(self, entity: BulkEntity, ids: Iterable[str]) -> BulkResult:
        """
        The endpoint reports success for the batch as a whole, so
        every id shares the batch outcome.
        """
        ids = list(dict.fromkeys(str(item) for item in ids))
        if not ids:
            return BulkResult()

        id_field = "userIds" if entity == BulkEntity.USERS else "charityIds"
        try:
            await self._transport.delete(f"/admin/{entity.value}/bulk", body={id_field: ids})
        except VerificationEngineError as e:
            logger.warning(f"Bulk delete of {len(ids)} {entity.value} failed: {e}")
            return BulkResult.from_items([
                BulkItemResult(item_id=item, success=False, error=e.message, error_code=e.code)
                for item in ids
            ])

        return BulkResult.from_items([BulkItemResult(item_id=item, success=True) for item in ids])


# ============================================================
# API CHAIN SUBMITTER
# ============================================================

class ApiChainSubmitter(ChainSubmissionService):
    """ChainSubmissionService backed by POST /donations/{id}/verify."""

    def __init__(self, transport: ApiTransport):
        self._transport = transport

    async def submit(self, donation: Donation) -> VerificationRecord:
        payload = await self._transport.post(f"/donations/{donation.donation_id}/verify")

        if isinstance(payload, dict) and payload.get("success") is False:
            raise RemoteError(
                str(payload.get("message") or "Verification submission rejected"),
                code="REM_SUBMISSION_REJECTED",
                details={"response": payload},
            )

        record = ApiDonationStore._parse_record(payload, donation.donation_id)
        if record is None:
            raise RemoteError(
                f"Verification submission for {donation.donation_id} returned no record",
                code="REM_SUBMISSION_REJECTED",
            )
        return record
