from django.test import TestCase, override_settings

from .models import Setting
from .resolver import ConfigResolver, is_placeholder


class ConfigResolverTests(TestCase):
    @override_settings(RAZORPAY_KEY_ID="env_key")
    def test_database_value_wins_over_environment(self):
        Setting.objects.create(key="razorpay_key_id", value="db_key")
        self.assertEqual(ConfigResolver.load().get("razorpay_key_id"), "db_key")

    @override_settings(RAZORPAY_KEY_ID="env_key")
    def test_empty_database_value_falls_back_to_environment(self):
        Setting.objects.create(key="razorpay_key_id", value="")
        self.assertEqual(ConfigResolver.load().get("razorpay_key_id"), "env_key")

    def test_default_when_nothing_configured(self):
        self.assertEqual(ConfigResolver.load().get("no_such_key", "fallback"), "fallback")

    @override_settings(WHATSAPP_ENABLED="true")
    def test_get_bool_reads_database_false(self):
        Setting.objects.create(key="whatsapp_enabled", value="false")
        self.assertFalse(ConfigResolver.load().get_bool("whatsapp_enabled", True))

    def test_get_bool_unknown_value_uses_default(self):
        resolver = ConfigResolver({"email_enabled": "maybe"})
        self.assertTrue(resolver.get_bool("email_enabled", True))


class PlaceholderTests(TestCase):
    def test_placeholder_markers(self):
        self.assertTrue(is_placeholder(""))
        self.assertTrue(is_placeholder(None))
        self.assertTrue(is_placeholder("re_test_dummy_key_123"))
        self.assertTrue(is_placeholder("dummy_whatsapp_token_123"))
        self.assertFalse(is_placeholder("re_live_9f8e7d"))
