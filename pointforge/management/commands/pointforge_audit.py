"""Management command to audit balances, transfers and event pools."""

import json

from django.core.management.base import BaseCommand, CommandError

from pointforge.services.audit import run_audit


class Command(BaseCommand):
    help = "Re-derive balances and event pools from the transaction log and report mismatches"

    def add_arguments(self, parser):
        parser.add_argument(
            "--database",
            default="default",
            help="Database alias to audit",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print the report as JSON",
        )

    def handle(self, *args, **options):
        report = run_audit(using=options["database"])

        if options["json"]:
            self.stdout.write(json.dumps(report.as_dict(), indent=2))
        else:
            for issue in report.issues:
                self.stdout.write(self.style.WARNING(f"[{issue.check}] {issue.message}"))

        if not report.ok:
            raise CommandError(f"Audit found {len(report.issues)} issue(s).")
        if not options["json"]:
            self.stdout.write(self.style.SUCCESS("Ledger is consistent."))
