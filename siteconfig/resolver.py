"""Layered configuration: ``settings`` table, then Django settings, then a default.

Django settings are populated from environment variables in
``storefront.settings.base``, so the effective precedence is
DB value -> environment -> default.
"""
import logging

from django.conf import settings
from django.db import DatabaseError

from .models import Setting

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKERS = ("dummy", "test", "placeholder")
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def is_placeholder(secret) -> bool:
    """True for credentials that must never reach a real provider."""
    if not secret:
        return True
    lowered = str(secret).lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


class ConfigResolver:
    def __init__(self, db_values: dict | None = None):
        self._db = dict(db_values or {})

    @classmethod
    def load(cls) -> "ConfigResolver":
        """Snapshot the settings table once; build one of these per request."""
        try:
            rows = Setting.objects.exclude(value__isnull=True).exclude(value="").values_list("key", "value")
            values = {k: v for k, v in rows}
        except DatabaseError:
            logger.exception("Could not read settings table; falling back to environment")
            values = {}
        return cls(values)

    def get(self, key: str, default=None):
        value = self._db.get(key)
        if value:
            return value
        value = getattr(settings, key.upper(), None)
        if value not in (None, ""):
            return value
        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        return default
