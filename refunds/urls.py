from django.urls import path
from . import views

app_name = "refunds"

urlpatterns = [
    path("process-refund", views.process_refund_view, name="process_refund"),
    path("retry-refund", views.retry_refund_view, name="retry_refund"),
]
