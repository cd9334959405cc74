"""
Tests for the billing engine and transaction workflow.

Tests cover:
- Contract eligibility checks and catch-up mode
- Drawdown generation (balance deduction, duplicate prevention, failures)
- Catch-up billing for missed dates
- The per-organization run, its log, notification and summary email
- Cron endpoint authentication
- Manual transactions: create, edit, post, void, delete, bulk and export
- Contract automation and automation settings endpoints
- Upcoming drawdown preview and resident claim summaries
"""
import hashlib
import hmac
import io
from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from unittest import mock

import openpyxl
from django.core import mail
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import override_settings
from django.urls import reverse
from django.utils import timezone

from billing.catchup import MAX_CATCHUP_RUNS, generate_catchup_transactions, validate_catchup_generation
from billing.eligibility import check_contract_eligibility, get_eligible_contracts
from billing.generator import DUPLICATE_RESIDENT, generate_transactions
from billing.models import AutomationLog, AutomationSettings, Transaction
from billing.preview import preview_upcoming
from billing.runner import (
    _should_email, build_run_summary, organization_today, run_automation, run_for_organization,
)
from core.models import AuditLog, FundingContract, Notification, Resident
from core.tests import ApiTestBase


class BillingTestBase(ApiTestBase):

    def setUp(self):
        self.today = timezone.localdate()

    def automate(self, contract, frequency="weekly", next_run=None):
        contract.auto_billing_enabled = True
        contract.automated_drawdown_frequency = frequency
        contract.next_run_date = next_run or self.today
        contract.save()
        return contract

    def make_transaction(self, **kwargs):
        values = {
            "organization": self.org,
            "resident": self.resident,
            "contract": self.contract,
            "quantity": Decimal("1"),
            "unit_price": Decimal("100.00"),
            "amount": Decimal("100.00"),
            "description": "SDA accommodation",
        }
        values.update(kwargs)
        return Transaction.objects.create(**values)

    def refresh_balance(self):
        self.contract.refresh_from_db()
        return self.contract.current_balance


class EligibilityTests(BillingTestBase):

    def test_due_contract_is_eligible(self):
        self.automate(self.contract)
        result = check_contract_eligibility(self.contract, self.today)
        self.assertTrue(result["is_eligible"])
        self.assertEqual(result["reasons"], [])
        self.assertTrue(all(result["checks"].values()))

    def test_future_run_not_due(self):
        self.automate(self.contract, next_run=self.today + timedelta(days=2))
        result = check_contract_eligibility(self.contract, self.today)
        self.assertFalse(result["is_eligible"])
        self.assertFalse(result["checks"]["next_run_check"])

    def test_overdue_only_with_catch_up(self):
        self.automate(self.contract, next_run=self.today - timedelta(days=3))
        self.assertFalse(check_contract_eligibility(self.contract, self.today)["is_eligible"])
        self.assertTrue(check_contract_eligibility(self.contract, self.today, catch_up=True)["is_eligible"])
        self.assertEqual(get_eligible_contracts(self.org, self.today, catch_up=False), [])
        self.assertEqual(get_eligible_contracts(self.org, self.today, catch_up=True), [self.contract])

    def test_inactive_resident_blocks(self):
        self.automate(self.contract)
        Resident.objects.filter(pk=self.resident.pk).update(status=Resident.Status.DEACTIVATED)
        self.contract.refresh_from_db()
        result = check_contract_eligibility(self.contract, self.today)
        self.assertFalse(result["checks"]["status_check"])
        self.assertIn("Resident status is 'Deactivated', must be 'active'", result["reasons"])

    def test_balance_below_daily_cost_blocks(self):
        self.automate(self.contract)
        self.contract.current_balance = Decimal("50.00")
        result = check_contract_eligibility(self.contract, self.today)
        self.assertFalse(result["checks"]["balance_check"])

    def test_contract_past_end_date_blocks(self):
        self.automate(self.contract)
        self.contract.end_date = self.today - timedelta(days=1)
        result = check_contract_eligibility(self.contract, self.today)
        self.assertFalse(result["checks"]["date_check"])

    def test_other_organization_never_included(self):
        self.automate(self.other_contract)
        self.assertEqual(get_eligible_contracts(self.org, self.today), [])


class GeneratorTests(BillingTestBase):

    def test_creates_draft_and_deducts_balance(self):
        self.automate(self.contract, frequency="weekly")
        result = generate_transactions(self.org, today=self.today)
        self.assertEqual(result["successful"], 1)
        self.assertEqual(result["summary"]["total_amount"], Decimal("700.00"))
        self.assertEqual(result["summary"]["frequency_breakdown"], {"weekly": 1})

        txn = Transaction.objects.get()
        self.assertEqual(txn.status, Transaction.Status.DRAFT)
        self.assertEqual(txn.drawdown_status, Transaction.DrawdownStatus.PENDING)
        self.assertTrue(txn.is_automated)
        self.assertTrue(txn.balance_applied)
        self.assertEqual(txn.amount, Decimal("700.00"))
        self.assertTrue(txn.txn_id.startswith(f"TXN-{self.org.id_prefix}-A"))

        self.contract.refresh_from_db()
        self.assertEqual(self.contract.current_balance, Decimal("35800.00"))
        self.assertEqual(self.contract.next_run_date, self.today + timedelta(days=7))
        self.assertIsNotNone(self.contract.last_drawdown_date)
        self.assertTrue(AuditLog.objects.filter(
            action=AuditLog.Action.AUTOMATED_TRANSACTION, affected_object_id=str(self.contract.pk),
        ).exists())

    def test_second_run_same_day_does_nothing(self):
        self.automate(self.contract)
        generate_transactions(self.org, today=self.today)
        result = generate_transactions(self.org, today=self.today)
        self.assertEqual(result["processed_contracts"], 0)
        self.assertEqual(Transaction.objects.count(), 1)

    def test_existing_automated_transaction_today_prevents_duplicate(self):
        self.automate(self.contract)
        self.make_transaction(is_automated=True, balance_applied=True)
        result = generate_transactions(self.org, today=self.today)
        self.assertEqual(result["failed"], 1)
        self.assertTrue(result["errors"][0]["error"].startswith("Duplicate prevented"))
        self.assertEqual(self.refresh_balance(), Decimal("36500.00"))

    def test_one_contract_per_resident_per_run(self):
        self.automate(self.contract)
        second = self.make_contract(status=FundingContract.Status.ACTIVE, daily_support_item_cost=Decimal("10.00"))
        self.automate(second)
        result = generate_transactions(self.org, today=self.today)
        self.assertEqual(result["successful"], 1)
        self.assertEqual(result["skipped"], 1)
        self.assertEqual(result["errors"][0]["error"], DUPLICATE_RESIDENT)

    def test_insufficient_balance_is_reported(self):
        self.automate(self.contract)
        FundingContract.objects.filter(pk=self.contract.pk).update(current_balance=Decimal("500.00"))
        result = generate_transactions(self.org, today=self.today)
        self.assertEqual(result["failed"], 1)
        self.assertEqual(result["errors"][0]["error"], "Insufficient contract balance")
        self.assertFalse(Transaction.objects.exists())

    def test_summary_text(self):
        self.automate(self.contract)
        result = generate_transactions(self.org, today=self.today)
        summary = build_run_summary(result, timezone.localtime(), self.org.name)
        self.assertIn("Automated Billing Run - Harbour Living SDA", summary)
        self.assertIn("• Successful Transactions: 1", summary)
        self.assertIn("• weekly: 1 transaction\n", summary)
        self.assertIn("✅ No errors encountered", summary)

    def test_stop_on_error_skips_remaining_contracts(self):
        other_resident = Resident.objects.create(
            organization=self.org, house=self.house, first_name="Quinn", last_name="Lee",
            status=Resident.Status.ACTIVE,
        )
        poor = self.make_contract(
            resident=other_resident, status=FundingContract.Status.ACTIVE,
            current_balance=Decimal("150.00"), daily_support_item_cost=Decimal("100.00"),
        )
        self.automate(poor, next_run=self.today - timedelta(days=1))
        self.automate(self.contract)
        result = generate_transactions(self.org, today=self.today, stop_on_error=True)
        self.assertEqual(result["failed"], 1)
        self.assertEqual(result["skipped"], 1)
        self.assertEqual(result["successful"], 0)
        self.assertTrue(result["stopped_early"])
        self.assertFalse(Transaction.objects.exists())
        self.assertEqual(self.refresh_balance(), Decimal("36500.00"))

    def test_txn_id_letter_advances_after_999999(self):
        prefix = f"TXN-{self.org.id_prefix}-"
        self.assertEqual(Transaction.format_txn_id(self.org, 1), prefix + "A000001")
        self.assertEqual(Transaction.format_txn_id(self.org, 999999), prefix + "A999999")
        self.assertEqual(Transaction.format_txn_id(self.org, 1000000), prefix + "B000001")
        self.assertEqual(Transaction.format_txn_id(self.org, 1999998), prefix + "B999999")
        self.assertEqual(Transaction.format_txn_id(self.org, 1999999), prefix + "C000001")


class CatchUpTests(BillingTestBase):

    def test_validation_counts_missed_dates(self):
        self.automate(self.contract, next_run=self.today - timedelta(days=21))
        check = validate_catchup_generation(self.contract, self.today)
        self.assertTrue(check["valid"])
        self.assertEqual(check["count"], 4)

    def test_not_in_past_is_a_warning(self):
        self.automate(self.contract, next_run=self.today)
        check = validate_catchup_generation(self.contract, self.today)
        self.assertTrue(check["valid"])
        self.assertEqual(check["count"], 0)
        self.assertIn("warning", check)

    def test_too_many_runs_rejected(self):
        contract = self.make_contract(
            status=FundingContract.Status.ACTIVE,
            start_date=self.today - timedelta(days=100),
            daily_support_item_cost=Decimal("10.00"),
        )
        self.automate(contract, frequency="daily", next_run=self.today - timedelta(days=60))
        check = validate_catchup_generation(contract, self.today)
        self.assertFalse(check["valid"])
        self.assertEqual(check["count"], 61)
        self.assertIn(f"Maximum is {MAX_CATCHUP_RUNS}", check["error"])

    def test_generates_one_draft_per_missed_date(self):
        self.automate(self.contract, next_run=self.today - timedelta(days=21))
        result = generate_catchup_transactions(self.contract, self.today)
        self.assertTrue(result["success"])
        self.assertEqual(result["transactions_created"], 4)
        dates = [t["date"] for t in result["transactions"]]
        self.assertEqual(dates, [self.today - timedelta(days=d) for d in (21, 14, 7, 0)])
        self.contract.refresh_from_db()
        self.assertEqual(self.contract.current_balance, Decimal("33700.00"))
        self.assertEqual(self.contract.next_run_date, self.today + timedelta(days=7))
        self.assertTrue(all(t.balance_applied for t in Transaction.objects.all()))

    def test_stops_when_balance_runs_out(self):
        self.automate(self.contract, next_run=self.today - timedelta(days=21))
        FundingContract.objects.filter(pk=self.contract.pk).update(current_balance=Decimal("1500.00"))
        self.contract.refresh_from_db()
        result = generate_catchup_transactions(self.contract, self.today)
        self.assertEqual(result["transactions_created"], 2)
        self.assertTrue(any("insufficient contract balance" in w for w in result["warnings"]))
        self.contract.refresh_from_db()
        self.assertEqual(self.contract.current_balance, Decimal("100.00"))
        self.assertEqual(self.contract.next_run_date, self.today - timedelta(days=7))


class RunnerTests(BillingTestBase):

    def setUp(self):
        super().setUp()
        self.settings_row = AutomationSettings.objects.create(
            organization=self.org, enabled=True, timezone="Australia/Sydney",
        )

    def test_run_writes_log_notification_and_email(self):
        self.automate(self.contract)
        result = run_for_organization(self.settings_row)
        self.assertEqual(result["status"], AutomationLog.Status.SUCCESS)
        self.assertEqual(result["successful_transactions"], 1)
        self.assertTrue(result["email_sent"])

        log = AutomationLog.objects.get(pk=result["automation_log_id"])
        self.assertEqual(log.contracts_processed, 1)
        self.assertIn("Automated Billing Run", log.summary)

        notification = Notification.objects.get(organization=self.org)
        self.assertEqual(notification.category, Notification.Category.AUTOMATION)
        self.assertEqual(notification.priority, Notification.Priority.LOW)

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["admin@harbourliving.com.au"])
        self.assertEqual(
            mail.outbox[0].subject, "Automation Run Completed Successfully - 1 Transactions Created",
        )

    def test_failures_make_partial_run(self):
        self.automate(self.contract)
        other_resident = Resident.objects.create(
            organization=self.org, house=self.house, first_name="Quinn", last_name="Lee",
            status=Resident.Status.ACTIVE,
        )
        poor = self.make_contract(
            resident=other_resident, status=FundingContract.Status.ACTIVE,
            current_balance=Decimal("150.00"), daily_support_item_cost=Decimal("100.00"),
        )
        self.automate(poor)
        result = run_for_organization(self.settings_row)
        self.assertEqual(result["status"], AutomationLog.Status.PARTIAL)
        self.assertTrue(mail.outbox[0].subject.startswith("Automation Run Completed with Errors - 1 Success, 1 Failed"))

    def test_notifications_off_sends_no_email(self):
        self.settings_row.notification_settings = {"frequency": "off", "includeLogs": False}
        self.settings_row.save()
        run_for_organization(self.settings_row)
        self.assertEqual(len(mail.outbox), 0)

    def test_dry_run_writes_nothing(self):
        self.automate(self.contract)
        result = run_for_organization(self.settings_row, dry_run=True)
        self.assertTrue(result["dry_run"])
        self.assertEqual(result["eligible_contracts"], 1)
        self.assertEqual(result["total_amount"], Decimal("700.00"))
        self.assertFalse(Transaction.objects.exists())
        self.assertFalse(AutomationLog.objects.exists())

    def test_run_expires_lapsed_contracts(self):
        lapsed = self.make_contract(
            status=FundingContract.Status.ACTIVE,
            start_date=self.today - timedelta(days=400),
            end_date=self.today - timedelta(days=2),
        )
        result = run_for_organization(self.settings_row)
        self.assertEqual(result["expired_contracts"], 1)
        lapsed.refresh_from_db()
        self.assertEqual(lapsed.status, FundingContract.Status.EXPIRED)

    def test_run_automation_skips_disabled_organizations(self):
        AutomationSettings.objects.create(organization=self.other_org, enabled=False)
        result = run_automation()
        self.assertEqual(result["processed_organizations"], 1)
        self.assertEqual(result["organization_results"][0]["organization_name"], "Harbour Living SDA")

    def test_management_command(self):
        self.automate(self.contract)
        out = io.StringIO()
        call_command("run_billing", stdout=out)
        self.assertIn("Harbour Living SDA: 1 transaction(s) created, 0 failed, $700.00", out.getvalue())

        with self.assertRaises(CommandError):
            call_command("run_billing", organization="no-such-org", stdout=io.StringIO())

    def test_continue_on_error_off_stops_the_run(self):
        self.settings_row.error_handling = {"continueOnError": False}
        self.settings_row.save()
        other_resident = Resident.objects.create(
            organization=self.org, house=self.house, first_name="Quinn", last_name="Lee",
            status=Resident.Status.ACTIVE,
        )
        poor = self.make_contract(
            resident=other_resident, status=FundingContract.Status.ACTIVE,
            current_balance=Decimal("150.00"), daily_support_item_cost=Decimal("100.00"),
        )
        self.automate(poor, next_run=self.today - timedelta(days=1))
        self.automate(self.contract)
        result = run_for_organization(self.settings_row)
        self.assertEqual(result["status"], AutomationLog.Status.FAILED)
        self.assertEqual(result["successful_transactions"], 0)
        log = AutomationLog.objects.get(pk=result["automation_log_id"])
        self.assertEqual(log.contracts_skipped, 1)
        self.assertIn("Run stopped after the first failure", log.summary)

    def test_end_of_week_emails_only_on_sunday(self):
        self.settings_row.notification_settings = {"frequency": "endOfWeek", "includeLogs": False}
        self.assertTrue(_should_email(self.settings_row, date(2026, 10, 18)))
        self.assertFalse(_should_email(self.settings_row, date(2026, 10, 17)))
        self.assertFalse(_should_email(self.settings_row, date(2026, 10, 19)))

        self.settings_row.notification_settings = {"frequency": "endOfRun", "includeLogs": False}
        self.assertTrue(_should_email(self.settings_row, date(2026, 10, 17)))

    def test_summary_lists_first_ten_errors(self):
        result = {
            "processed_contracts": 12,
            "successful": 0,
            "failed": 12,
            "summary": {"total_amount": Decimal("0"), "frequency_breakdown": {}},
            "errors": [
                {"contract_id": f"contract-{n}", "error": "Insufficient contract balance"}
                for n in range(1, 13)
            ],
        }
        summary = build_run_summary(result, timezone.localtime(), self.org.name)
        self.assertIn("⚠️ ERRORS (12)", summary)
        self.assertIn("10. Contract contract-10: Insufficient contract balance", summary)
        self.assertNotIn("contract-11", summary)
        self.assertIn("... and 2 more errors", summary)

    def test_organization_today_follows_settings_timezone(self):
        # 14:00 UTC is already the next morning in Sydney
        fixed = datetime(2026, 10, 17, 14, 0, tzinfo=dt_timezone.utc)
        with mock.patch("django.utils.timezone.now", return_value=fixed):
            self.assertEqual(organization_today(self.org), date(2026, 10, 18))
            self.settings_row.timezone = "America/Los_Angeles"
            self.settings_row.save()
            self.assertEqual(organization_today(self.org), date(2026, 10, 17))

    def test_failure_while_recording_a_failed_run_does_not_stop_the_loop(self):
        AutomationSettings.objects.create(organization=self.other_org, enabled=True)
        self.automate(self.contract)
        real_run = run_for_organization

        def run_or_fail(automation_settings, **kwargs):
            if automation_settings.organization == self.other_org:
                raise RuntimeError("database went away")
            return real_run(automation_settings, **kwargs)

        with mock.patch("billing.runner.run_for_organization", side_effect=run_or_fail), \
                mock.patch("billing.runner._record_fatal_error", side_effect=RuntimeError("mail server down")):
            result = run_automation()

        self.assertEqual(result["processed_organizations"], 2)
        failed, succeeded = result["organization_results"]
        self.assertEqual(failed["organization_name"], self.other_org.name)
        self.assertFalse(failed["success"])
        self.assertEqual(failed["error"], "database went away")
        self.assertEqual(succeeded["organization_name"], "Harbour Living SDA")
        self.assertEqual(succeeded["successful_transactions"], 1)


class PreviewTests(BillingTestBase):

    def setUp(self):
        super().setUp()
        self.second_resident = Resident.objects.create(
            organization=self.org, house=self.house, first_name="Quinn", last_name="Lee",
            status=Resident.Status.ACTIVE,
        )
        self.second_contract = self.make_contract(
            resident=self.second_resident, status=FundingContract.Status.ACTIVE,
            daily_support_item_cost=Decimal("10.00"),
        )

    def test_weekly_and_fortnightly_only_on_their_run_date(self):
        self.automate(self.contract, frequency="weekly", next_run=self.today + timedelta(days=1))
        self.automate(self.second_contract, frequency="fortnightly", next_run=self.today + timedelta(days=2))
        preview = preview_upcoming(self.org, today=self.today)
        days = [preview["contracts_by_day"][(self.today + timedelta(days=n)).isoformat()] for n in range(3)]
        self.assertEqual(days[0], [])
        self.assertEqual([item["contract_id"] for item in days[1]], [str(self.contract.pk)])
        self.assertEqual([item["contract_id"] for item in days[2]], [str(self.second_contract.pk)])
        self.assertEqual(days[2][0]["transaction_amount"], Decimal("140.00"))
        self.assertEqual(preview["summary"]["total_scheduled_runs"], 2)

    def test_overdue_weekly_contract_not_previewed(self):
        self.automate(self.contract, frequency="weekly", next_run=self.today - timedelta(days=1))
        preview = preview_upcoming(self.org, today=self.today)
        self.assertEqual(preview["summary"]["total_scheduled_runs"], 0)

    def test_daily_appears_every_day_from_next_run(self):
        self.automate(self.contract, frequency="daily", next_run=self.today + timedelta(days=1))
        preview = preview_upcoming(self.org, today=self.today)
        counts = [len(items) for items in preview["contracts_by_day"].values()]
        self.assertEqual(counts, [0, 1, 1])
        self.assertEqual(preview["summary"]["unique_contracts"], 1)
        self.assertEqual(preview["summary"]["total_amount"], Decimal("200.00"))


class CronEndpointTests(BillingTestBase):

    def setUp(self):
        super().setUp()
        AutomationSettings.objects.create(organization=self.org, enabled=True)
        self.url = reverse("billing:automation_cron")

    def test_missing_credentials(self):
        response = self.client.post(self.url)
        self.assertEqual(response.status_code, 401)

    def test_wrong_bearer_token(self):
        response = self.client.post(self.url, headers={"Authorization": "Bearer nope"})
        self.assertEqual(response.status_code, 403)

    def test_bearer_token_runs_billing(self):
        self.automate(self.contract)
        response = self.client.post(self.url, headers={"Authorization": "Bearer test-cron-secret"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["processed_organizations"], 1)
        self.assertEqual(body["organization_results"][0]["successful_transactions"], 1)

    def test_hmac_signature(self):
        body = b'{"source": "scheduler"}'
        signature = hmac.new(b"test-cron-secret", body, hashlib.sha256).hexdigest()
        response = self.client.post(
            self.url, body, content_type="application/json", headers={"X-Cron-Signature": signature},
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.post(
            self.url, body, content_type="application/json", headers={"X-Cron-Signature": "0" * 64},
        )
        self.assertEqual(response.status_code, 403)

    @override_settings(CRON_SECRET="")
    def test_unconfigured_secret_refuses(self):
        response = self.client.post(self.url, headers={"Authorization": "Bearer anything"})
        self.assertEqual(response.status_code, 503)

    def test_session_login_is_not_enough(self):
        self.login_as(self.admin)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 401)


class TransactionApiTests(BillingTestBase):

    def test_create_manual_draft(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("billing:transaction_list"), {
            "resident": str(self.resident.pk),
            "contract": str(self.contract.pk),
            "occurred_at": timezone.now().isoformat(),
            "quantity": "2",
            "unit_price": "50.00",
            "description": "Respite night",
        })
        self.assertEqual(response.status_code, 201)
        txn = response.json()["transaction"]
        self.assertEqual(txn["amount"], 100.0)
        self.assertEqual(txn["status"], "draft")
        self.assertFalse(txn["balance_applied"])
        self.assertEqual(self.refresh_balance(), Decimal("36500.00"))

    def test_create_with_defaults_for_quantity_and_date(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("billing:transaction_list"), {
            "resident": str(self.resident.pk),
            "contract": str(self.contract.pk),
            "unit_price": "85.00",
        })
        self.assertEqual(response.status_code, 201)
        txn = response.json()["transaction"]
        self.assertEqual(txn["amount"], 85.0)
        self.assertEqual(txn["quantity"], 1.0)

    def test_malformed_id_filters_rejected(self):
        self.login_as(self.staff)
        for param in ("resident_ids", "contract_ids", "house_ids"):
            response = self.client.get(reverse("billing:transaction_list"), {param: "abc"})
            self.assertEqual(response.status_code, 400, param)
            self.assertEqual(response.json()["message"], f"Invalid {param}: expected a UUID")

    def test_id_filters_accept_comma_separated_uuids(self):
        txn = self.make_transaction()
        self.login_as(self.staff)
        response = self.client.get(
            reverse("billing:transaction_list"),
            {"resident_ids": f"{self.resident.pk},{self.other_resident.pk}"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual([t["id"] for t in response.json()["transactions"]], [str(txn.pk)])

    def test_bulk_with_malformed_ids_rejected(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:transaction_bulk"), {"action": "post", "ids": ["nope"]})
        self.assertEqual(response.status_code, 400)

    def test_contract_must_belong_to_resident(self):
        other_resident = Resident.objects.create(organization=self.org, first_name="Quinn", last_name="Lee")
        self.login_as(self.staff)
        response = self.post_json(reverse("billing:transaction_list"), {
            "resident": str(other_resident.pk),
            "contract": str(self.contract.pk),
            "occurred_at": timezone.now().isoformat(),
            "quantity": "1",
            "unit_price": "10.00",
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn("contract", response.json()["errors"])

    def test_post_deducts_balance(self):
        txn = self.make_transaction()
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:transaction_post", args=[txn.pk]))
        self.assertEqual(response.status_code, 200)
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.POSTED)
        self.assertTrue(txn.balance_applied)
        self.assertEqual(txn.posted_by, self.manager)
        self.assertEqual(self.refresh_balance(), Decimal("36400.00"))

    def test_post_rejects_overdraw(self):
        txn = self.make_transaction(amount=Decimal("40000.00"), unit_price=Decimal("40000.00"))
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:transaction_post", args=[txn.pk]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Insufficient balance. Would exceed by $3500.00")
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.DRAFT)

    def test_staff_cannot_post(self):
        txn = self.make_transaction()
        self.login_as(self.staff)
        response = self.post_json(reverse("billing:transaction_post", args=[txn.pk]))
        self.assertEqual(response.status_code, 403)

    def test_void_requires_reason_and_restores_balance(self):
        txn = self.make_transaction(
            status=Transaction.Status.POSTED, balance_applied=True,
        )
        FundingContract.objects.filter(pk=self.contract.pk).update(current_balance=Decimal("36400.00"))
        self.login_as(self.manager)
        url = reverse("billing:transaction_void", args=[txn.pk])
        response = self.post_json(url, {"reason": "  "})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Reason is required for voiding transactions")

        response = self.post_json(url, {"reason": "Entered twice"})
        self.assertEqual(response.status_code, 200)
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.VOIDED)
        self.assertFalse(txn.balance_applied)
        self.assertEqual(self.refresh_balance(), Decimal("36500.00"))

    def test_cannot_void_draft(self):
        txn = self.make_transaction()
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:transaction_void", args=[txn.pk]), {"reason": "x"})
        self.assertEqual(response.status_code, 400)

    def test_delete_applied_draft_restores_balance(self):
        self.automate(self.contract)
        generate_transactions(self.org, today=self.today)
        txn = Transaction.objects.get()
        self.login_as(self.manager)
        response = self.client.delete(reverse("billing:transaction_detail", args=[txn.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Transaction.objects.exists())
        self.assertEqual(self.refresh_balance(), Decimal("36500.00"))

    def test_edit_applied_draft_moves_balance_by_difference(self):
        txn = self.make_transaction(balance_applied=True)
        FundingContract.objects.filter(pk=self.contract.pk).update(current_balance=Decimal("36400.00"))
        self.login_as(self.staff)
        response = self.patch_json(
            reverse("billing:transaction_detail", args=[txn.pk]), {"quantity": "3"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["transaction"]["amount"], 300.0)
        self.assertEqual(self.refresh_balance(), Decimal("36200.00"))

    def test_posted_transaction_cannot_be_edited(self):
        txn = self.make_transaction(status=Transaction.Status.POSTED, balance_applied=True)
        self.login_as(self.manager)
        response = self.patch_json(reverse("billing:transaction_detail", args=[txn.pk]), {"note": "late"})
        self.assertEqual(response.status_code, 400)

    def test_bulk_post_reports_each_result(self):
        first = self.make_transaction()
        second = self.make_transaction(status=Transaction.Status.POSTED, balance_applied=True)
        missing = "00000000-0000-0000-0000-000000000000"
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:transaction_bulk"), {
            "action": "post", "ids": [str(first.pk), str(second.pk), missing],
        })
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["succeeded"], 1)
        self.assertEqual(body["failed"], 2)
        self.assertEqual(body["results"][1]["error"], "Can only post draft transactions")
        self.assertEqual(body["results"][2]["error"], "Transaction not found")

    def test_list_filters_by_status(self):
        self.make_transaction()
        self.make_transaction(status=Transaction.Status.POSTED, balance_applied=True)
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:transaction_list"), {"statuses": "posted"})
        self.assertEqual(response.json()["pagination"]["total"], 1)

    def test_csv_export(self):
        txn = self.make_transaction()
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:transaction_export"), {"format": "csv"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response["Content-Type"].startswith("text/csv"))
        self.assertIn("transactions-", response["Content-Disposition"])
        lines = response.content.decode().splitlines()
        self.assertTrue(lines[0].startswith("Transaction ID,Date,Resident,House"))
        self.assertTrue(lines[1].startswith(f"{txn.txn_id},"))

    def test_xlsx_export(self):
        self.make_transaction()
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:transaction_export"), {"format": "xlsx"})
        self.assertEqual(response.status_code, 200)
        ws = openpyxl.load_workbook(io.BytesIO(response.content)).active
        self.assertEqual(ws.cell(row=1, column=1).value, "Transaction ID")
        self.assertEqual(ws.cell(row=2, column=10).value, 100.0)

    def test_other_organization_transaction_not_found(self):
        txn = self.make_transaction(
            organization=self.other_org, resident=self.other_resident, contract=self.other_contract,
        )
        self.login_as(self.admin)
        response = self.client.get(reverse("billing:transaction_detail", args=[txn.pk]))
        self.assertEqual(response.status_code, 404)


class AutomationApiTests(BillingTestBase):

    def test_enable_automation_sets_rate_and_next_run(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:contract_automation", args=[self.contract.pk]), {
            "enabled": True, "frequency": "fortnightly", "first_run_date": self.today.isoformat(),
        })
        self.assertEqual(response.status_code, 200)
        self.contract.refresh_from_db()
        self.assertTrue(self.contract.auto_billing_enabled)
        self.assertEqual(self.contract.daily_support_item_cost, Decimal("100.00"))
        self.assertEqual(self.contract.next_run_date, self.today)

    def test_enable_with_catch_up(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:contract_automation", args=[self.contract.pk]), {
            "enabled": True,
            "frequency": "weekly",
            "first_run_date": (self.today - timedelta(days=14)).isoformat(),
            "generate_catch_up": True,
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["catch_up"]["transactions_created"], 3)
        self.assertEqual(self.refresh_balance(), Decimal("34400.00"))

    def test_refused_catch_up_leaves_automation_disabled(self):
        FundingContract.objects.filter(pk=self.contract.pk).update(start_date=self.today - timedelta(days=200))
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:contract_automation", args=[self.contract.pk]), {
            "enabled": True,
            "frequency": "daily",
            "first_run_date": (self.today - timedelta(days=100)).isoformat(),
            "generate_catch_up": True,
        })
        self.assertEqual(response.status_code, 400)
        self.assertTrue(response.json()["message"].startswith("Too many catch-up transactions required (101)"))
        self.assertFalse(response.json()["automation"]["enabled"])
        self.contract.refresh_from_db()
        self.assertFalse(self.contract.auto_billing_enabled)
        self.assertIsNone(self.contract.next_run_date)
        self.assertFalse(Transaction.objects.filter(contract=self.contract).exists())
        self.assertEqual(self.refresh_balance(), Decimal("36500.00"))

    def test_frequency_required(self):
        self.login_as(self.manager)
        response = self.post_json(
            reverse("billing:contract_automation", args=[self.contract.pk]), {"enabled": True},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("frequency", response.json()["errors"])

    def test_staff_cannot_change_automation(self):
        self.login_as(self.staff)
        response = self.post_json(
            reverse("billing:contract_automation", args=[self.contract.pk]),
            {"enabled": True, "frequency": "weekly"},
        )
        self.assertEqual(response.status_code, 403)

    def test_settings_created_with_defaults(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:automation_settings"))
        settings_json = response.json()["settings"]
        self.assertFalse(settings_json["enabled"])
        self.assertEqual(settings_json["timezone"], "Australia/Sydney")
        self.assertEqual(settings_json["notification_settings"], {"frequency": "endOfRun", "includeLogs": False})

    def test_admin_updates_settings(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("billing:automation_settings"), {
            "enabled": True,
            "timezone": "Australia/Perth",
            "admin_emails": ["ops@harbourliving.com.au"],
        })
        self.assertEqual(response.status_code, 200)
        row = AutomationSettings.objects.get(organization=self.org)
        self.assertTrue(row.enabled)
        self.assertEqual(row.timezone, "Australia/Perth")
        self.assertEqual(row.admin_emails, ["ops@harbourliving.com.au"])

    def test_invalid_timezone_rejected(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("billing:automation_settings"), {"timezone": "Mars/Olympus"})
        self.assertEqual(response.status_code, 400)

    def test_manager_cannot_update_settings(self):
        self.login_as(self.manager)
        response = self.patch_json(reverse("billing:automation_settings"), {"enabled": True})
        self.assertEqual(response.status_code, 403)

    def test_eligible_contracts_report(self):
        self.automate(self.contract)
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:eligible_contracts"))
        body = response.json()
        self.assertEqual(body["summary"], {"total": 1, "eligible": 1, "ineligible": 0})
        self.assertEqual(body["contracts"][0]["resident_name"], "Jordan Taylor")

    def test_preview_three_days(self):
        self.automate(self.contract, frequency="daily")
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:preview_three_days"))
        body = response.json()
        self.assertEqual(len(body["contracts_by_day"]), 3)
        self.assertEqual(body["summary"]["total_scheduled_runs"], 3)
        self.assertEqual(body["summary"]["unique_contracts"], 1)

    def test_manual_generate_run(self):
        self.automate(self.contract)
        self.login_as(self.manager)
        response = self.post_json(reverse("billing:automation_generate"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"]["successful_transactions"], 1)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.GENERATE, user=self.manager).exists())

        response = self.client.get(reverse("billing:automation_logs"))
        self.assertEqual(len(response.json()["logs"]), 1)


class ClaimSummaryTests(BillingTestBase):

    def setUp(self):
        super().setUp()
        self.current_month = self.today.replace(day=1)
        self.last_month = (self.current_month - timedelta(days=1)).replace(day=1)
        self.two_months_ago = (self.last_month - timedelta(days=1)).replace(day=1)
        self.url = reverse("billing:resident_claim_summary", args=[self.resident.pk])

    def at_noon(self, day):
        return timezone.make_aware(datetime(day.year, day.month, day.day, 12, 0))

    def test_months_run_from_move_in_to_current_month(self):
        Resident.objects.filter(pk=self.resident.pk).update(move_in_date=self.two_months_ago.replace(day=20))
        self.make_transaction(occurred_at=self.at_noon(self.last_month.replace(day=10)))
        self.make_transaction(occurred_at=self.at_noon(self.today), amount=Decimal("250.00"))
        self.make_transaction(occurred_at=self.at_noon(self.today), status=Transaction.Status.REJECTED)
        self.make_transaction(occurred_at=self.at_noon(self.today), status=Transaction.Status.VOIDED)

        self.login_as(self.staff)
        body = self.client.get(self.url).json()
        self.assertEqual([m["month"] for m in body["months"]], [
            self.two_months_ago.strftime("%Y-%m"),
            self.last_month.strftime("%Y-%m"),
            self.current_month.strftime("%Y-%m"),
        ])
        self.assertEqual(body["months"][0]["count"], 0)
        self.assertEqual(body["months"][1]["amount"], 100.0)
        self.assertEqual(body["months"][2], {
            "month": self.current_month.strftime("%Y-%m"),
            "label": self.current_month.strftime("%B %Y"),
            "short_label": self.current_month.strftime("%b %y"),
            "amount": 250.0,
            "count": 1,
        })
        self.assertEqual(body["totals"], {"total_amount": 350.0, "total_claims": 2})

    def test_house_go_live_is_the_fallback_start(self):
        self.house.go_live_date = self.last_month.replace(day=5)
        self.house.save()
        self.login_as(self.staff)
        body = self.client.get(self.url).json()
        self.assertEqual(body["months"][0]["month"], self.last_month.strftime("%Y-%m"))
        self.assertEqual(len(body["months"]), 2)

    def test_period_limits_range(self):
        Resident.objects.filter(pk=self.resident.pk).update(move_in_date=date(2020, 1, 1))
        self.login_as(self.staff)
        body = self.client.get(self.url, {"months": 3}).json()
        self.assertEqual(len(body["months"]), 4)
        self.assertEqual(body["months"][-1]["month"], self.current_month.strftime("%Y-%m"))

    def test_no_start_and_no_transactions_is_empty(self):
        self.login_as(self.staff)
        body = self.client.get(self.url).json()
        self.assertEqual(body["months"], [])
        self.assertEqual(body["totals"], {"total_amount": 0.0, "total_claims": 0})

    def test_unsupported_period_rejected(self):
        self.login_as(self.staff)
        response = self.client.get(self.url, {"months": 5})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "months must be one of 0, 3, 6 or 12")

    def test_other_organization_resident_not_found(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("billing:resident_claim_summary", args=[self.other_resident.pk]))
        self.assertEqual(response.status_code, 404)
