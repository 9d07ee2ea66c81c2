from django.core.management.base import BaseCommand

from clinic.services.permission_requests import cleanup_expired_requests
from clinic.services.temporary_permissions import cleanup_expired


class Command(BaseCommand):
    help = "Deactivate temporary permissions and pending permission requests whose expiry has passed."

    def handle(self, *args, **options):
        for result in (cleanup_expired(), cleanup_expired_requests()):
            self.stdout.write(self.style.SUCCESS(result['message']))
