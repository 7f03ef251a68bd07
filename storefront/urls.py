from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("", include("downloads.urls")),
    path("", include("delivery.urls")),
    path("", include("refunds.urls")),
]
