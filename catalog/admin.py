from django.contrib import admin
from .models import Product, DocumentFile, AudioFile


class DocumentFileInline(admin.TabularInline):
    model = DocumentFile
    extra = 0


class AudioFileInline(admin.TabularInline):
    model = AudioFile
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "category", "price", "is_active", "download_count", "created_at")
    search_fields = ("name",)
    list_filter = ("category", "is_active")
    readonly_fields = ("download_count", "created_at", "updated_at")
    inlines = [DocumentFileInline, AudioFileInline]
