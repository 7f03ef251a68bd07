from django.urls import path

from . import views

app_name = "downloads"
urlpatterns = [
    path("download-file", views.download_file, name="download_file"),
]
