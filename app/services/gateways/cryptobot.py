"""
Crypto Pay (Telegram CryptoBot) wallet driver

Non-card driver. Both buy and subscribe create a one-off invoice; the payer
completes it in the wallet and Crypto Pay posts an `invoice_paid` update to
the process endpoint.

EXTERNAL DEPENDENCY ISOLATION:
- 401/403 → CryptoBotAuthError (NOT retried)
- other 4xx → CryptoBotInvalidResponseError (NOT retried)
- 5xx / timeout / network → retried by retry_async, then surfaced

Configuration: token / API URL / fiat / assets resolved via config.py only.
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

import httpx

import config
from app.services.gateways.base import CallbackRequest, GatewayDriver
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "crypto-pay-api-signature"
PAYLOAD_PREFIX = "payment:"
HTTP_TIMEOUT = 30.0


class CryptoBotError(Exception):
    """Base class for Crypto Pay API errors"""
    pass


class CryptoBotAuthError(CryptoBotError):
    """Authentication error (401, 403)"""
    pass


class CryptoBotInvalidResponseError(CryptoBotError):
    """Invalid request or response (4xx, ok=false, missing fields)"""
    pass


def minor_to_fiat(amount: int) -> str:
    """Integer minor units → Crypto Pay fiat amount string ("4.00")"""
    return f"{amount // 100}.{amount % 100:02d}"


def parse_payment_id(payload: Any) -> Optional[int]:
    """Extract the payment id from an invoice payload ("payment:{id}")"""
    if not isinstance(payload, str) or not payload.startswith(PAYLOAD_PREFIX):
        return None
    raw_id = payload[len(PAYLOAD_PREFIX):].strip()
    if not raw_id.isdigit():
        return None
    return int(raw_id)


class CryptoBotDriver(GatewayDriver):
    id = "cryptobot"
    name = "Crypto Bot"
    is_card = False

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        fiat: Optional[str] = None,
        assets: Optional[list] = None,
    ):
        self.token = token if token is not None else config.CRYPTOBOT_TOKEN
        self.api_url = (api_url or config.CRYPTOBOT_API_URL).rstrip("/")
        self.fiat = fiat or config.CRYPTOBOT_FIAT
        self.assets = assets if assets is not None else config.CRYPTOBOT_ALLOWED_ASSETS

    def is_configured(self) -> bool:
        if not self.token:
            logger.warning("CRYPTOBOT_DISABLED_NO_TOKEN")
            return False
        if not self.assets:
            logger.warning("CRYPTOBOT_DISABLED_NO_ASSETS")
            return False
        return True

    def _get_auth_headers(self) -> Dict[str, str]:
        return {
            "Crypto-Pay-API-Token": self.token,
            "Content-Type": "application/json",
        }

    def verify_signature(self, body: bytes, signature: str) -> bool:
        """
        Verify the update signature.

        HMAC-SHA256 over the raw body, keyed with SHA256(api token).
        """
        if not self.token or not signature:
            return False
        secret = hashlib.sha256(self.token.encode()).digest()
        expected = hmac.new(secret, body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    async def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        async def _make_request():
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
                response = await client.post(
                    f"{self.api_url}/{method}",
                    headers=self._get_auth_headers(),
                    json=body,
                )
                if response.status_code in (401, 403):
                    error_msg = f"Authentication error: status={response.status_code}, response={response.text[:200]}"
                    logger.error(f"CryptoBot API error: {error_msg}")
                    raise CryptoBotAuthError(error_msg)
                if 400 <= response.status_code < 500:
                    error_msg = f"Client error: status={response.status_code}, response={response.text[:200]}"
                    logger.error(f"CryptoBot API error: {error_msg}")
                    raise CryptoBotInvalidResponseError(error_msg)
                # 5xx raises HTTPStatusError, which is retried
                response.raise_for_status()
                return response

        response = await retry_async(
            _make_request,
            retries=2,
            base_delay=1.0,
            max_delay=5.0,
            retry_on=(httpx.TransportError, httpx.HTTPStatusError),
        )

        data = response.json()
        if not data.get("ok"):
            error_name = data.get("error", {}).get("name", "Unknown error")
            logger.error(f"CryptoBot API error: {error_name}")
            raise CryptoBotInvalidResponseError(f"CryptoBot API error: {error_name}")
        return data.get("result", {})

    async def _create_invoice(self, payment: Dict[str, Any], description: str) -> Dict[str, Any]:
        request_body = {
            "currency_type": "fiat",
            "fiat": self.fiat,
            "amount": minor_to_fiat(payment["amount"]),
            "accepted_assets": ",".join(self.assets),
            "payload": f"{PAYLOAD_PREFIX}{payment['id']}",
            "description": description[:1024],
            "allow_comments": False,
            "allow_anonymous": False,
        }
        result = await self._call("createInvoice", request_body)
        pay_url = result.get("bot_invoice_url") or result.get("pay_url")
        if not result.get("invoice_id") or not pay_url:
            raise CryptoBotInvalidResponseError("Invalid response from CryptoBot API: missing invoice_id or pay_url")

        logger.info(
            f"CryptoBot invoice created: invoice_id={result['invoice_id']}, "
            f"payment_id={payment['id']}, amount={payment['amount']}"
        )
        return {
            "gateway": self.id,
            "invoice_id": result["invoice_id"],
            "pay_url": pay_url,
        }

    async def buy(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        return await self._create_invoice(payment, f"{payment['type']} #{payment['id']}")

    async def subscribe(
        self,
        payment: Dict[str, Any],
        target_user: Dict[str, Any],
        bundle: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        # Crypto Pay has no recurring billing: one invoice covers the whole term
        months = bundle["months"] if bundle else 1
        description = f"Subscription to user #{target_user['id']} for {months} month(s)"
        return await self._create_invoice(payment, description)

    async def validate_callback(self, request: CallbackRequest) -> Optional[int]:
        signature = request.header(SIGNATURE_HEADER)
        if not self.verify_signature(request.body, signature):
            logger.warning("CryptoBot callback: invalid or missing signature")
            return None

        try:
            update = json.loads(request.body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"CryptoBot callback: invalid JSON: {e}")
            return None

        if not isinstance(update, dict) or update.get("update_type") != "invoice_paid":
            logger.info("CryptoBot callback: ignored update_type=%s", update.get("update_type") if isinstance(update, dict) else None)
            return None

        invoice = update.get("payload")
        if not isinstance(invoice, dict):
            logger.warning("CryptoBot callback: invoice_paid update without invoice object")
            return None
        if invoice.get("status") != "paid":
            logger.info(f"CryptoBot callback: invoice not paid, status={invoice.get('status')}")
            return None

        payment_id = parse_payment_id(invoice.get("payload"))
        if payment_id is None:
            logger.warning(f"CryptoBot callback: no payment id in invoice_id={invoice.get('invoice_id')}")
        return payment_id

    async def process_payment(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        # Funds were captured when the invoice was paid; nothing else moves
        return {"gateway": self.id, "payment_id": payment["id"]}
