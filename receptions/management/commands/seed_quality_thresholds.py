from django.core.management.base import BaseCommand, CommandError

from receptions.models import FruitType
from receptions.services.thresholds import seed_default_thresholds


class Command(BaseCommand):
    help = "Seed default quality thresholds for each fruit type; existing rows are kept."

    def add_arguments(self, parser):
        parser.add_argument("--fruit-type", dest="fruit_type", type=int, default=None)

    def handle(self, *args, **opts):
        fruit_types = FruitType.objects.filter(is_active=True)
        if opts.get("fruit_type"):
            fruit_types = FruitType.objects.filter(pk=opts["fruit_type"])
            if not fruit_types.exists():
                raise CommandError(f"Fruit type {opts['fruit_type']} not found")

        total = 0
        for fruit_type in fruit_types:
            if fruit_type.family is None:
                self.stdout.write(self.style.WARNING(f"{fruit_type}: no default schedule, skipped"))
                continue
            created = seed_default_thresholds(fruit_type)
            total += created
            self.stdout.write(f"{fruit_type}: {created} threshold(s) created")
        self.stdout.write(self.style.SUCCESS(f"Seeded {total} threshold(s)"))
