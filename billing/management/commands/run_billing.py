"""
Run the automated billing for every organization with automation enabled.

Usage:
    python manage.py run_billing
    python manage.py run_billing --organization acme-sda
    python manage.py run_billing --dry-run
    python manage.py run_billing --no-catch-up
"""
from django.core.management.base import BaseCommand, CommandError

from accounts.models import Organization
from billing.runner import run_automation


class Command(BaseCommand):
    help = "Generate due drawdown transactions for every organization with automation enabled"

    def add_arguments(self, parser):
        parser.add_argument(
            "--organization",
            help="Only run for the organization with this slug",
        )
        parser.add_argument(
            "--no-catch-up",
            action="store_true",
            help="Only bill contracts due exactly today, skip overdue ones",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview the drawdowns without creating transactions",
        )

    def handle(self, *args, **options):
        slug = options["organization"]
        if slug and not Organization.objects.filter(slug=slug).exists():
            raise CommandError(f"Organization '{slug}' does not exist")

        result = run_automation(
            organization_slug=slug,
            catch_up=not options["no_catch_up"],
            dry_run=options["dry_run"],
        )

        if not result["processed_organizations"]:
            self.stdout.write("No organizations have automation enabled.")
            return

        for org_result in result["organization_results"]:
            name = org_result["organization_name"]
            if org_result.get("dry_run"):
                self.stdout.write(
                    f"{name}: {org_result['eligible_contracts']} contract(s) due, "
                    f"${org_result['total_amount']:.2f} (dry run)"
                )
            elif org_result["success"]:
                self.stdout.write(self.style.SUCCESS(
                    f"{name}: {org_result['successful_transactions']} transaction(s) created, "
                    f"{org_result['failed_transactions']} failed, ${org_result['total_amount']:.2f}"
                ))
            else:
                message = org_result.get("error") or f"{org_result['failed_transactions']} failed"
                self.stdout.write(self.style.ERROR(f"{name}: {message}"))

        self.stdout.write(
            f"Processed {result['processed_organizations']} organization(s) "
            f"in {result['total_execution_time_ms']}ms"
        )
