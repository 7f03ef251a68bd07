from django.db import models


class EmailDeliveryLog(models.Model):
    """One provider message; webhooks correlate back through ``resend_email_id``."""

    EMAIL_TYPE_CHOICES = [
        ("download", "Download links"),
        ("combo_part", "Combo pack part"),
    ]
    STATUS_CHOICES = [
        ("sent", "Sent"),
        ("delivered", "Delivered"),
        ("bounced", "Bounced"),
        ("complained", "Complained"),
        ("delayed", "Delayed"),
    ]

    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="email_logs")
    product = models.ForeignKey("catalog.Product", on_delete=models.SET_NULL, null=True, blank=True, related_name="email_logs")
    recipient_email = models.EmailField()
    email_type = models.CharField(max_length=16, choices=EMAIL_TYPE_CHOICES, default="download")
    resend_email_id = models.CharField(max_length=128, null=True, blank=True, db_index=True)
    part_number = models.PositiveIntegerField(null=True, blank=True)
    total_parts = models.PositiveIntegerField(null=True, blank=True)
    delivery_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="sent")
    error_message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        part = f" part {self.part_number}/{self.total_parts}" if self.part_number else ""
        return f"{self.recipient_email} [{self.delivery_status}]{part}"
