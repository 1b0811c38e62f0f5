from typing import Dict, Optional, Tuple

import requests
from flask import current_app

RAZORPAY_API_BASE_URL = "https://api.razorpay.com/v1"
SUCCESSFUL_PAYMENT_STATUSES = ("captured", "authorized")
FAILED_PAYMENT_STATUSES = ("failed",)


class PaymentGatewayError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_razorpay_credentials() -> Tuple[str, str]:
    key_id = (current_app.config.get("RAZORPAY_KEY_ID") or "").strip()
    key_secret = (current_app.config.get("RAZORPAY_KEY_SECRET") or "").strip()
    if not key_id or not key_secret:
        raise PaymentGatewayError(
            "Online payments are not configured. Please contact support.", 503
        )
    return key_id, key_secret


def fetch_razorpay_payment(payment_id: str) -> Dict:
    key_id, key_secret = get_razorpay_credentials()
    try:
        response = requests.get(
            f"{RAZORPAY_API_BASE_URL}/payments/{payment_id}",
            auth=(key_id, key_secret),
            timeout=current_app.config.get("PAYMENT_GATEWAY_TIMEOUT", 10),
        )
    except requests.RequestException as exc:
        current_app.logger.error("Razorpay request failed for %s: %s", payment_id, exc)
        raise PaymentGatewayError("Could not reach the payment provider.")

    if response.status_code == 404:
        raise PaymentGatewayError("Payment not found.", 404)
    if response.status_code != 200:
        current_app.logger.error(
            "Razorpay verification failed for %s: %s", payment_id, response.text
        )
        raise PaymentGatewayError("Payment verification failed.")

    return response.json()


def resolve_payment_status(gateway_payment: Dict, expected_amount: float) -> Optional[str]:
    """Map a gateway payment to an order payment status.

    Amounts come back from Razorpay in the smallest currency unit.
    """
    gateway_status = str(gateway_payment.get("status") or "").lower()
    if gateway_status in FAILED_PAYMENT_STATUSES:
        return "failed"
    if gateway_status not in SUCCESSFUL_PAYMENT_STATUSES:
        return None

    paid_amount = (gateway_payment.get("amount") or 0) / 100
    if round(paid_amount, 2) < round(expected_amount, 2):
        return "failed"
    return "completed"
