from datetime import date

from django.core.management.base import BaseCommand, CommandError

from lab_core.inventory.services import expire_lots, expiring_lots


class Command(BaseCommand):
    help = "Mark AVAILABLE material lots past their expiry date as EXPIRED"

    def add_arguments(self, parser):
        parser.add_argument("--date", help="Run as of this date (YYYY-MM-DD). Defaults to today.")
        parser.add_argument(
            "--warn-days",
            type=int,
            default=None,
            help="Also list lots expiring within this many days.",
        )

    def handle(self, *args, **options):
        today = None
        if options.get("date"):
            try:
                today = date.fromisoformat(options["date"])
            except ValueError:
                raise CommandError(f"Invalid date: {options['date']}")

        count = expire_lots(today=today)
        self.stdout.write(self.style.SUCCESS(f"Expired lots: {count}"))

        if options.get("warn_days") is not None:
            for row in expiring_lots(days=options["warn_days"], today=today):
                self.stdout.write(
                    f"{row['severity'].upper():8} {row['material_code']} LOT {row['lot_number']} "
                    f"expires {row['expiry_date']} ({row['days_until_expiry']} days)"
                )
