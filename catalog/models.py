from django.db import models


class Product(models.Model):
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=64, blank=True, default="")
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)
    download_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class DeliverableFile(models.Model):
    """A file a customer receives a download link for."""

    file_name = models.CharField(max_length=255)
    file_url = models.URLField(max_length=1024)
    file_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True
        ordering = ("file_order", "id")

    def __str__(self):
        return self.file_name


class DocumentFile(DeliverableFile):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="document_files")


class AudioFile(DeliverableFile):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="audio_files")
