"""
SSLCommerz Payment Gateway Connector
Session init, transaction validation, refunds and IPN verification

Author: Platform Team
Date: 2025-11-20
"""
import hashlib
import logging
import secrets
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import PaymentError

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.sslcommerz.com"
LIVE_URL = "https://securepay.sslcommerz.com"

INIT_ENDPOINT = "/gwprocess/v4/api.php"
VALIDATION_ENDPOINT = "/validator/api/validationserverAPI.php"
MERCHANT_ENDPOINT = "/validator/api/merchantTransIDvalidationAPI.php"

VALID_STATUSES = ("VALID", "VALIDATED")


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def verify_ipn_signature(payload: Dict[str, str], store_password: str) -> bool:
    """
    Check verify_sign on an IPN / redirect payload.

    The hash input is every field except verify_sign and verify_key,
    sorted by name, joined as k=v with '&', followed by
    '&store_passwd=<md5(password)>'.
    """
    verify_sign = payload.get("verify_sign")
    if not verify_sign or not store_password:
        return False

    fields = {
        key: value for key, value in payload.items()
        if key not in ("verify_sign", "verify_key")
    }
    pairs = "&".join(f"{key}={fields[key]}" for key in sorted(fields))
    hash_input = f"{pairs}&store_passwd={_md5(store_password)}"

    return secrets.compare_digest(_md5(hash_input), verify_sign)


def _amount_matches(reported, expected) -> bool:
    try:
        return Decimal(str(reported)).quantize(Decimal("0.01")) == Decimal(str(expected)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return False


class SSLCommerzConnector:
    """
    Connector for the SSLCommerz gateway (Bangladesh)

    Handles:
    - Payment session initialization (hosted gateway page)
    - Server-side validation of a completed transaction
    - Refund initiation and transaction status queries
    """

    def __init__(self, store_id: str = None, store_password: str = None, is_sandbox: bool = None):
        self.store_id = store_id or settings.SSLCOMMERZ_STORE_ID
        self.store_password = store_password or settings.SSLCOMMERZ_STORE_PASSWORD
        self.is_sandbox = settings.SSLCOMMERZ_IS_SANDBOX if is_sandbox is None else is_sandbox

        if not self.store_id or not self.store_password:
            raise ValueError("SSLCommerz not configured. Set SSLCOMMERZ_STORE_ID and SSLCOMMERZ_STORE_PASSWORD")

        self.base_url = SANDBOX_URL if self.is_sandbox else LIVE_URL

    def _credentials(self) -> Dict[str, str]:
        return {"store_id": self.store_id, "store_passwd": self.store_password}

    async def init_session(
        self,
        total_amount,
        currency: str,
        transaction_id: str,
        customer: Dict,
        success_url: str,
        fail_url: str,
        cancel_url: str,
        ipn_url: Optional[str] = None,
        product_name: str = "Order",
        product_category: str = "general",
        num_of_items: int = 1
    ) -> Dict:
        """
        Create a gateway session.

        Returns:
            Gateway response with GatewayPageURL and sessionkey

        Raises:
            PaymentError: gateway answered anything but SUCCESS
        """
        payload = {
            **self._credentials(),
            "total_amount": f"{Decimal(str(total_amount)):.2f}",
            "currency": currency,
            "tran_id": transaction_id,
            "product_name": product_name,
            "product_category": product_category,
            "product_profile": "general",
            "cus_name": customer.get("name", ""),
            "cus_email": customer.get("email", ""),
            "cus_add1": customer.get("address", ""),
            "cus_city": customer.get("city", ""),
            "cus_country": customer.get("country", ""),
            "cus_phone": customer.get("phone", ""),
            "success_url": success_url,
            "fail_url": fail_url,
            "cancel_url": cancel_url,
            "shipping_method": "NO",
            "num_of_item": str(num_of_items),
        }
        if ipn_url:
            payload["ipn_url"] = ipn_url

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(f"{self.base_url}{INIT_ENDPOINT}", data=payload, timeout=30.0)
                response.raise_for_status()
                result = response.json()
            except httpx.HTTPError as e:
                logger.error(f"SSLCommerz session init failed for {transaction_id}: {e}")
                raise PaymentError("Failed to initialize payment")

        if result.get("status") != "SUCCESS":
            logger.warning(f"SSLCommerz rejected session {transaction_id}: {result.get('failedreason')}")
            raise PaymentError(result.get("failedreason") or "Payment initialization failed")

        return result

    async def validate_transaction(self, val_id: str, amount, currency: str) -> Dict:
        """
        Server-side validation of a completed payment.

        Returns:
            {"is_valid": bool, "status": str, "data": dict}
        """
        params = {**self._credentials(), "val_id": val_id, "format": "json"}

        async with httpx.AsyncClient() as client:
            try:
                response = await client.get(f"{self.base_url}{VALIDATION_ENDPOINT}", params=params, timeout=30.0)
                response.raise_for_status()
                result = response.json()
            except httpx.HTTPError as e:
                logger.error(f"SSLCommerz validation failed for {val_id}: {e}")
                return {"is_valid": False, "status": "ERROR", "data": None}

        status = result.get("status")
        is_valid = (
            status in VALID_STATUSES
            and _amount_matches(result.get("amount"), amount)
            and result.get("currency_type") == currency
        )
        return {"is_valid": is_valid, "status": status, "data": result}

    async def refund(self, bank_transaction_id: str, refund_amount,
                     remarks: str = "Customer requested refund") -> Dict:
        payload = {
            **self._credentials(),
            "bank_tran_id": bank_transaction_id,
            "refund_amount": f"{Decimal(str(refund_amount)):.2f}",
            "refund_remarks": remarks,
            "refe_id": secrets.token_hex(16),
        }

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(f"{self.base_url}{MERCHANT_ENDPOINT}", data=payload, timeout=30.0)
                response.raise_for_status()
                result = response.json()
            except httpx.HTTPError as e:
                logger.error(f"SSLCommerz refund failed for {bank_transaction_id}: {e}")
                raise PaymentError("Failed to initiate refund")

        return {
            "status": result.get("status") or "FAILED",
            "message": result.get("errorReason") or "Refund processed",
            "data": result,
        }

    async def query_status(self, transaction_id: str) -> Dict:
        params = {**self._credentials(), "tran_id": transaction_id}

        async with httpx.AsyncClient() as client:
            try:
                response = await client.get(f"{self.base_url}{MERCHANT_ENDPOINT}", params=params, timeout=30.0)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                logger.error(f"SSLCommerz status query failed for {transaction_id}: {e}")
                raise PaymentError("Failed to query transaction status")

    def verify_ipn(self, payload: Dict[str, str]) -> bool:
        return verify_ipn_signature(payload, self.store_password)
