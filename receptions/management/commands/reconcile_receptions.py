from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand

from receptions.models import Reception
from receptions.services.reconciliation import preview_reconciliation, reconcile_many
from receptions.weights import q_weight


class Command(BaseCommand):
    help = (
        "Recompute discount and final weight for receptions. "
        "Runs as a dry run unless --commit is given."
    )

    def add_arguments(self, parser):
        parser.add_argument("--reception", dest="reception", type=int, default=None)
        parser.add_argument("--fruit-type", dest="fruit_type", type=int, default=None)
        parser.add_argument(
            "--commit",
            action="store_true",
            dest="commit",
            help="Apply changes. Without this flag the command runs in dry-run mode.",
        )

    def handle(self, *args, **opts):
        receptions = Reception.objects.order_by("id")
        if opts.get("reception"):
            receptions = receptions.filter(pk=opts["reception"])
        if opts.get("fruit_type"):
            receptions = receptions.filter(fruit_type_id=opts["fruit_type"])
        ids = list(receptions.values_list("id", flat=True))

        if not opts.get("commit"):
            changed = 0
            for reception_id in ids:
                try:
                    reception, plan = preview_reconciliation(reception_id)
                except ValidationError as exc:
                    self.stdout.write(self.style.ERROR(f"#{reception_id}: {' '.join(exc.messages)}"))
                    continue
                if q_weight(reception.final_weight) == plan.final_weight \
                        and q_weight(reception.discount_weight) == plan.total_deduction:
                    continue
                changed += 1
                note = " (over-deducted)" if plan.over_deducted else ""
                self.stdout.write(
                    f"{reception.reception_number}: discount {reception.discount_weight} -> "
                    f"{plan.total_deduction}, final {reception.final_weight} -> {plan.final_weight}{note}"
                )
            self.stdout.write(self.style.WARNING(
                f"Dry run: {changed} of {len(ids)} reception(s) would change. Use --commit to apply."
            ))
            return

        done, failures = reconcile_many(ids)
        for reception_id, exc in failures.items():
            self.stdout.write(self.style.ERROR(f"#{reception_id}: {exc}"))
        self.stdout.write(self.style.SUCCESS(
            f"Reconciled {len(done)} reception(s); {len(failures)} failed"
        ))
