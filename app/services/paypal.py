"""PayPal Orders v2 client.

Every call carries the configured timeout. Failures are normalized into the
processor error kinds so callers can tell a decline (ProcessorRejected) from
a timeout (ProcessorTimeout) or an unreachable gateway (ProcessorUnavailable).
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import httpx

from app.core.config import Settings, get_settings
from app.core.exceptions import ProcessorRejected, ProcessorTimeout, ProcessorUnavailable
from app.core.metrics import track_processor_call

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"


@dataclass
class ProcessorOrder:
    id: str
    status: str
    approve_url: Optional[str] = None


@dataclass
class CaptureResult:
    order_id: str
    status: str
    capture_id: Optional[str] = None
    capture_status: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reference_id: Optional[str] = None
    payer_email: Optional[str] = None
    raw: dict = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return (
            self.status == COMPLETED
            and self.capture_id is not None
            and self.capture_status in (None, COMPLETED)
        )


def parse_capture(body: dict) -> CaptureResult:
    units = body.get("purchase_units") or [{}]
    unit = units[0]
    captures = (unit.get("payments") or {}).get("captures") or []
    capture = captures[0] if captures else {}
    amount = capture.get("amount") or {}
    return CaptureResult(
        order_id=body.get("id", ""),
        status=body.get("status", ""),
        capture_id=capture.get("id"),
        capture_status=capture.get("status"),
        amount=Decimal(amount["value"]) if amount.get("value") else None,
        currency=amount.get("currency_code"),
        reference_id=unit.get("reference_id"),
        payer_email=(body.get("payer") or {}).get("email_address"),
        raw=body,
    )


class PayPalClient:
    def __init__(self, settings: Optional[Settings] = None, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.http = http or httpx.AsyncClient(
            base_url=self.settings.PAYPAL_BASE_URL,
            timeout=self.settings.PAYPAL_TIMEOUT,
        )
        self._token: Optional[str] = None

    async def aclose(self):
        await self.http.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"PayPal {method} {path} timed out: {e}")
            raise ProcessorTimeout("Payment processor timed out")
        except httpx.HTTPError as e:
            logger.error(f"PayPal {method} {path} failed: {e}")
            raise ProcessorUnavailable("Payment processor is unreachable")

    async def access_token(self) -> str:
        if self._token:
            return self._token
        response = await self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self.settings.PAYPAL_CLIENT_ID, self.settings.PAYPAL_CLIENT_SECRET),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            logger.error(f"PayPal token request failed with status {response.status_code}")
            raise ProcessorUnavailable("Could not authenticate with the payment processor")
        self._token = response.json()["access_token"]
        return self._token

    async def _call(self, method: str, path: str, request_id: Optional[str] = None, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {await self.access_token()}"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        response = await self._send(method, path, headers=headers, **kwargs)

        if 200 <= response.status_code < 300:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        issue = body.get("name") or (body.get("details") or [{}])[0].get("issue")
        message = body.get("message") or f"Processor returned {response.status_code}"
        logger.warning(f"PayPal {method} {path} -> {response.status_code} {issue}: {message}")
        if response.status_code >= 500 or response.status_code == 401:
            raise ProcessorUnavailable(message, processor_status=issue)
        raise ProcessorRejected(message, processor_status=issue)

    @track_processor_call("create_order")
    async def create_order(self, purchase_unit: dict, request_id: Optional[str] = None) -> ProcessorOrder:
        body = await self._call(
            "POST",
            "/v2/checkout/orders",
            request_id=request_id,
            json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
        )
        approve_url = next(
            (link["href"] for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return ProcessorOrder(id=body["id"], status=body.get("status", ""), approve_url=approve_url)

    @track_processor_call("capture_order")
    async def capture_order(self, order_id: str) -> CaptureResult:
        body = await self._call(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            request_id=f"capture-{order_id}",
            json={},
        )
        return parse_capture(body)


async def get_processor():
    client = PayPalClient()
    try:
        yield client
    finally:
        await client.aclose()
