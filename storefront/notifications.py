from html import escape
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app

from .helpers import normalize_email, safe_float, safe_positive_int


def send_email_via_resend(payload: Dict[str, object], api_key: str) -> Tuple[bool, Optional[str]]:
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def normalize_order_email_items(items: List[Dict]) -> List[Dict]:
    normalized_items: List[Dict] = []
    for entry in items or []:
        if not isinstance(entry, dict):
            continue
        quantity = safe_positive_int(entry.get("quantity"), 1) or 1
        price_value = round(safe_float(entry.get("price"), 0.0), 2)
        normalized_items.append(
            {
                "name": str(entry.get("name") or "").strip() or "Item",
                "quantity": quantity,
                "size": entry.get("size", ""),
                "color": entry.get("color", ""),
                "price": price_value,
                "line_total": round(price_value * quantity, 2),
            }
        )
    return normalized_items


def build_order_email_html(order_document: Dict, items: List[Dict]) -> str:
    rows = "".join(
        f"<tr><td>{escape(item['name'])} ({escape(str(item['size']))}, {escape(str(item['color']))})</td>"
        f"<td>x{item['quantity']}</td><td>&#8377;{item['line_total']:.2f}</td></tr>"
        for item in items
    )
    return (
        f"<h2>Thank you for your order {escape(str(order_document.get('order_id', '')))}</h2>"
        f"<table>{rows}</table>"
        f"<p>Shipping: &#8377;{safe_float(order_document.get('shipping'), 0):.2f}</p>"
        f"<p>Pay online: &#8377;{safe_float(order_document.get('online_amount'), 0):.2f}<br>"
        f"Pay on delivery: &#8377;{safe_float(order_document.get('cod_amount'), 0):.2f}</p>"
        f"<p><strong>Total: &#8377;{safe_float(order_document.get('total'), 0):.2f}</strong></p>"
    )


def send_order_confirmation_email(order_document: Dict) -> Tuple[bool, Optional[str]]:
    customer = order_document.get("customer") or {}
    recipient_email = normalize_email(customer.get("email"))
    if not recipient_email:
        return False, "Missing customer email for the order receipt."

    items = normalize_order_email_items(order_document.get("items"))
    item_lines = ", ".join(f"{item['name']} x{item['quantity']}" for item in items)
    text_body = (
        f"Thank you for your purchase! Order {order_document.get('order_id')}.\n"
        f"Items: {item_lines}.\n"
        f"Total: INR {safe_float(order_document.get('total'), 0):.2f} "
        f"(online {safe_float(order_document.get('online_amount'), 0):.2f}, "
        f"on delivery {safe_float(order_document.get('cod_amount'), 0):.2f})."
    )

    payload: Dict[str, object] = {
        "from": current_app.config["ORDER_EMAIL_SENDER"],
        "to": [recipient_email],
        "subject": f"Order {order_document.get('order_id')} confirmed",
        "html": build_order_email_html(order_document, items),
        "text": text_body,
    }

    sent, error = send_email_via_resend(payload, current_app.config.get("RESEND_API_KEY", ""))
    if not sent:
        current_app.logger.warning(
            "Order confirmation email for %s not sent: %s",
            order_document.get("order_id"),
            error,
        )
    return sent, error
