from .handlers import check_pincode, create_order_shipment, quote_rates, receive_webhook, track
from .transport import RequestsTransport

__all__ = [
    "check_pincode",
    "create_order_shipment",
    "quote_rates",
    "receive_webhook",
    "track",
    "RequestsTransport",
]
