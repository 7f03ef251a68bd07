from django.db import models


class Order(models.Model):
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("paid", "Paid"),
        ("completed", "Completed"),
        ("failed", "Failed"),
        ("refunded", "Refunded"),
    ]
    DELIVERY_STATUS_CHOICES = [
        ("pending", "Pending"),
        ("email_sent", "Email sent"),
        ("sent", "Sent"),
        ("delivered", "Delivered"),
        ("bounced", "Bounced"),
        ("complained", "Complained"),
        ("delayed", "Delayed"),
        ("failed", "Failed"),
        ("refunded", "Refunded"),
    ]
    REFUNDABLE_STATUSES = ("paid", "completed")
    DELIVERABLE_STATUSES = ("paid", "completed")

    order_number = models.CharField(max_length=32, unique=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="pending", db_index=True)
    delivery_status = models.CharField(max_length=16, choices=DELIVERY_STATUS_CHOICES, default="pending", db_index=True)
    delivery_attempts = models.PositiveIntegerField(default=0)

    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=20, blank=True, default="")
    customer_name = models.CharField(max_length=150, blank=True, default="")
    whatsapp_optin = models.BooleanField(default=False)

    razorpay_order_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    razorpay_payment_id = models.CharField(max_length=64, blank=True, default="", db_index=True)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @property
    def is_deliverable(self) -> bool:
        return self.status in self.DELIVERABLE_STATUSES

    @property
    def is_refundable(self) -> bool:
        return self.status in self.REFUNDABLE_STATUSES and bool(self.razorpay_payment_id)

    def __str__(self):
        return f"{self.order_number} ({self.status}/{self.delivery_status})"


class OrderItem(models.Model):
    """Line item; name and price are frozen at purchase time."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey("catalog.Product", on_delete=models.SET_NULL, null=True, blank=True, related_name="order_items")
    product_name = models.CharField(max_length=255)
    product_price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.product_name} x{self.quantity}"
