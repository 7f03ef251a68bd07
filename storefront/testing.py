"""Shared fixtures for the app test suites."""
from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from catalog.models import AudioFile, DocumentFile, Product
from downloads.models import DownloadToken
from orders.models import Order, OrderItem


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self):
        return self._payload


def make_product(name="CA Final Combo", documents=2, audio=0, url_base="https://drive.example.com/files"):
    product = Product.objects.create(name=name, price=Decimal("499.00"))
    for i in range(documents):
        DocumentFile.objects.create(product=product, file_name=f"Doc {i + 1}.pdf", file_url=f"{url_base}/doc{i + 1}.pdf", file_order=i)
    for i in range(audio):
        AudioFile.objects.create(product=product, file_name=f"Track {i + 1}.mp3", file_url=f"{url_base}/track{i + 1}.mp3", file_order=i)
    return product


def make_order(*products, number="SOA-1001", status="paid", **fields):
    values = {
        "customer_email": "asha@example.com",
        "customer_phone": "9876543210",
        "customer_name": "Asha",
        "razorpay_payment_id": "pay_123",
        "total_amount": Decimal("499.00"),
    }
    values.update(fields)
    order = Order.objects.create(order_number=number, status=status, **values)
    for product in products:
        OrderItem.objects.create(order=order, product=product, product_name=product.name, product_price=product.price)
    return order


def legacy_tokens(order, product, count):
    """Tokens as minted before explicit file references existed."""
    base = timezone.now()
    return [
        DownloadToken.objects.create(order=order, product=product, positional=True, created_at=base + timedelta(seconds=i))
        for i in range(count)
    ]
