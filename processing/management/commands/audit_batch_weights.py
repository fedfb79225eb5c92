import json

from django.core.management.base import BaseCommand

from processing.services.integrity import find_batch_anomalies


class Command(BaseCommand):
    help = "Report batches whose memberships or allocations disagree with the batch totals."

    def add_arguments(self, parser):
        parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")

    def handle(self, *args, **opts):
        report = find_batch_anomalies()
        alerts = report["alerts"]
        if opts.get("json"):
            self.stdout.write(json.dumps(report, indent=2, default=str))
        else:
            for alert in alerts:
                self.stdout.write(f"[{alert['severity']}] {alert['id']} {alert['entity']}: {alert['title']}")
        style = self.style.WARNING if alerts else self.style.SUCCESS
        self.stdout.write(style(f"{len(alerts)} anomaly(ies) found"))
