from django.contrib import admin
from .models import EmailDeliveryLog


@admin.register(EmailDeliveryLog)
class EmailDeliveryLogAdmin(admin.ModelAdmin):
    list_display = ("recipient_email", "order", "product", "email_type", "part_number", "total_parts", "delivery_status", "created_at")
    search_fields = ("recipient_email", "resend_email_id", "order__order_number")
    list_filter = ("delivery_status", "email_type", "created_at")
    raw_id_fields = ("order", "product")
    readonly_fields = ("resend_email_id", "created_at", "updated_at")
