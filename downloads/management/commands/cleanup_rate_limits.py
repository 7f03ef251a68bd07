from django.core.management.base import BaseCommand

from downloads.ratelimit import cleanup_rate_limits


class Command(BaseCommand):
    help = "Delete rate limit counters whose window started long ago"

    def add_arguments(self, parser):
        parser.add_argument("--older-than-hours", type=int, default=24)

    def handle(self, *args, **opts):
        deleted = cleanup_rate_limits(opts["older_than_hours"])
        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} rate limit rows."))
