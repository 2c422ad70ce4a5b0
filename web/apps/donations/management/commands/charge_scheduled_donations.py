from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.donations.providers import get_scheduled_charge_runner


class Command(BaseCommand):
    help = "Charge deferred one-off donations due on a given day (default: today, UTC)."

    def add_arguments(self, parser):
        parser.add_argument("--date", dest="day", help="YYYY-MM-DD")

    def handle(self, *args, **options):
        day = None
        if options.get("day"):
            try:
                day = date.fromisoformat(options["day"])
            except ValueError as e:
                raise CommandError(f"invalid --date: {options['day']}") from e
        result = get_scheduled_charge_runner().run(day)
        self.stdout.write(f"charged={result['charged']} failed={result['failed']}")
