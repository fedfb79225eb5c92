import json

from django.core.management.base import BaseCommand

from receptions.services.integrity import find_weight_anomalies, record_anomaly_warnings


class Command(BaseCommand):
    help = "Report receptions whose stored weights break the aggregate invariants."

    def add_arguments(self, parser):
        parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")
        parser.add_argument(
            "--record",
            action="store_true",
            help="Open a reconciliation warning for every affected reception",
        )

    def handle(self, *args, **opts):
        report = find_weight_anomalies()
        alerts = report["alerts"]
        if opts.get("json"):
            self.stdout.write(json.dumps(report, indent=2, default=str))
        else:
            for alert in alerts:
                self.stdout.write(f"[{alert['severity']}] {alert['id']} {alert['entity']}: {alert['title']}")
        if opts.get("record"):
            created, resolved = record_anomaly_warnings(alerts)
            self.stdout.write(f"Opened {created} warning(s), resolved {resolved}")
        style = self.style.WARNING if alerts else self.style.SUCCESS
        self.stdout.write(style(f"{len(alerts)} anomaly(ies) found"))
