from django.urls import path
from . import views, webhook

app_name = "delivery"

urlpatterns = [
    path("resend-webhook", webhook.resend_webhook, name="resend_webhook"),
    path("send-download-email", views.send_download_email_view, name="send_download_email"),
    path("resend-delivery", views.resend_delivery_view, name="resend_delivery"),
]
