from django.db import models


class Setting(models.Model):
    """Operational key/value override; wins over the environment."""

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("key",)

    def __str__(self):
        return self.key
