from django.db import models


class Refund(models.Model):
    """At most one per order; the one-to-one key is what stops duplicate bounce refunds."""

    REASON_CHOICES = [
        ("email_bounced", "Email bounced"),
        ("customer_request", "Customer request"),
    ]
    STATUS_CHOICES = [
        ("eligible", "Eligible"),
        ("processing", "Processing"),
        ("completed", "Completed"),
        ("failed", "Failed"),
    ]

    order = models.OneToOneField("orders.Order", on_delete=models.CASCADE, related_name="refund")
    razorpay_payment_id = models.CharField(max_length=64, blank=True, default="")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")
    reason = models.CharField(max_length=32, choices=REASON_CHOICES, default="email_bounced")
    failed_email = models.EmailField(blank=True, default="")
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="eligible", db_index=True)
    error_message = models.TextField(blank=True, default="")
    razorpay_refund_id = models.CharField(max_length=64, blank=True, default="")
    whatsapp_sent = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    processed_by = models.CharField(max_length=150, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"Refund {self.pk} for {self.order_id} ({self.status})"
