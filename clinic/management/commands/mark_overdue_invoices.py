from django.core.management.base import BaseCommand

from clinic.services.billing import mark_overdue_invoices


class Command(BaseCommand):
    help = "Move PENDING/PARTIAL invoices past their due date to OVERDUE."

    def handle(self, *args, **options):
        count = mark_overdue_invoices()
        self.stdout.write(self.style.SUCCESS(f"Marked {count} invoice(s) overdue"))
