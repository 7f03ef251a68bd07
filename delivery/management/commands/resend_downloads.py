from django.core.management.base import BaseCommand, CommandError

from delivery.services import OrderNotDeliverable, dispatch_order
from orders.models import Order
from siteconfig.resolver import ConfigResolver


class Command(BaseCommand):
    help = "Send the download links of one or more orders again"

    def add_arguments(self, parser):
        parser.add_argument("order_numbers", nargs="+")

    def handle(self, *args, **opts):
        config = ConfigResolver.load()
        sent = 0
        for number in opts["order_numbers"]:
            try:
                order = Order.objects.get(order_number=number)
            except Order.DoesNotExist:
                self.stdout.write(self.style.WARNING(f"{number}: order not found"))
                continue
            try:
                report = dispatch_order(order, config)
            except OrderNotDeliverable as e:
                self.stdout.write(self.style.WARNING(f"{number}: {e}"))
                continue
            if report.any_success:
                sent += 1
                self.stdout.write(self.style.SUCCESS(f"{number} -> {report.delivery_status}"))
            else:
                self.stdout.write(self.style.ERROR(f"{number} -> {report.delivery_status}"))
        if not sent:
            raise CommandError("No order was delivered.")
        self.stdout.write(self.style.SUCCESS(f"Delivered {sent} of {len(opts['order_numbers'])} orders."))
