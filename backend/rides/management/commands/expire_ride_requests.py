from django.core.management.base import BaseCommand
from rides.services.request_expiry import expire_stale_requests


class Command(BaseCommand):
    help = "Expire pending ride requests whose departure time has passed."

    def handle(self, *args, **options):
        expired_count = expire_stale_requests()

        self.stdout.write(
            self.style.SUCCESS(f"Expired {expired_count} ride request(s).")
        )
