"""
Unit tests for SSLCommerz IPN verification and transaction validation
"""
import asyncio
import hashlib
from decimal import Decimal

import httpx
import pytest
from unittest.mock import patch

from app.connectors.sslcommerz_connector import SSLCommerzConnector, verify_ipn_signature
from app.core.errors import PaymentError

PASSWORD = "store-pass@ssl"


def md5(value: str) -> str:
    return hashlib.md5(value.encode()).hexdigest()


def signed_ipn(**fields) -> dict:
    payload = {"tran_id": "1-ORD-00042", "val_id": "VAL123", "status": "VALID", "amount": "48.87"}
    payload.update(fields)
    pairs = "&".join(f"{key}={payload[key]}" for key in sorted(payload))
    payload["verify_sign"] = md5(f"{pairs}&store_passwd={md5(PASSWORD)}")
    payload["verify_key"] = ",".join(sorted(payload))
    return payload


def mock_client(handler):
    real_client = httpx.AsyncClient
    return patch('app.connectors.sslcommerz_connector.httpx.AsyncClient',
                 lambda: real_client(transport=httpx.MockTransport(handler)))


class TestVerifyIpnSignature:

    def test_valid_signature(self):
        assert verify_ipn_signature(signed_ipn(), PASSWORD) is True

    def test_tampered_amount_is_rejected(self):
        payload = signed_ipn()
        payload["amount"] = "1.00"

        assert verify_ipn_signature(payload, PASSWORD) is False

    def test_missing_signature_is_rejected(self):
        payload = signed_ipn()
        del payload["verify_sign"]

        assert verify_ipn_signature(payload, PASSWORD) is False

    def test_wrong_password_is_rejected(self):
        assert verify_ipn_signature(signed_ipn(), "other-password") is False


class TestValidateTransaction:

    def _connector(self):
        return SSLCommerzConnector(store_id="teststore", store_password=PASSWORD, is_sandbox=True)

    def test_valid_when_status_amount_and_currency_match(self):
        def handler(request):
            assert request.url.host == "sandbox.sslcommerz.com"
            assert request.url.params["val_id"] == "VAL123"
            return httpx.Response(200, json={"status": "VALID", "amount": "48.87", "currency_type": "USD"})

        with mock_client(handler):
            result = asyncio.run(self._connector().validate_transaction("VAL123", Decimal("48.87"), "USD"))

        assert result["is_valid"] is True

    def test_amount_mismatch_is_invalid(self):
        def handler(request):
            return httpx.Response(200, json={"status": "VALID", "amount": "10.00", "currency_type": "USD"})

        with mock_client(handler):
            result = asyncio.run(self._connector().validate_transaction("VAL123", Decimal("48.87"), "USD"))

        assert result["is_valid"] is False
        assert result["status"] == "VALID"

    def test_gateway_error_is_invalid(self):
        def handler(request):
            return httpx.Response(500)

        with mock_client(handler):
            result = asyncio.run(self._connector().validate_transaction("VAL123", Decimal("48.87"), "USD"))

        assert result == {"is_valid": False, "status": "ERROR", "data": None}


class TestQueryStatus:

    def _connector(self):
        return SSLCommerzConnector(store_id="teststore", store_password=PASSWORD, is_sandbox=True)

    def test_queries_by_transaction_id(self):
        def handler(request):
            assert request.url.path.endswith("merchantTransIDvalidationAPI.php")
            assert request.url.params["tran_id"] == "1-ORD-00042"
            assert request.url.params["store_id"] == "teststore"
            return httpx.Response(200, json={"APIConnect": "DONE", "element": [{"status": "VALID"}]})

        with mock_client(handler):
            result = asyncio.run(self._connector().query_status("1-ORD-00042"))

        assert result["element"][0]["status"] == "VALID"

    def test_gateway_error_raises(self):
        with mock_client(lambda request: httpx.Response(502)):
            with pytest.raises(PaymentError):
                asyncio.run(self._connector().query_status("1-ORD-00042"))
