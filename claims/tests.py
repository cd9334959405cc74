"""
Tests for claims: creation from eligible transactions, claim file export,
response file reconciliation, history and simulated completion.
"""
from datetime import timedelta
from decimal import Decimal

from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.urls import reverse
from django.utils import timezone

from billing.models import Transaction
from claims.models import Claim, ClaimReconciliation
from claims.services import UNMATCHED_NOTE, claimable_transactions
from core.models import AuditLog, Resident
from core.tests import ApiTestBase


class ClaimTestBase(ApiTestBase):

    def make_transaction(self, **kwargs):
        values = {
            "organization": self.org,
            "resident": self.resident,
            "contract": self.contract,
            "quantity": Decimal("1"),
            "unit_price": Decimal("700.00"),
            "amount": Decimal("700.00"),
            "description": "Automated weekly drawdown - Draw Down",
            "balance_applied": True,
        }
        values.update(kwargs)
        return Transaction.objects.create(**values)

    def create_claim(self, data=None):
        self.login_as(self.manager)
        return self.post_json(reverse("claims:claim_list"), data or {"include_all": True})

    def response_file(self, rows, name="response.csv"):
        lines = ["Transaction ID,Status,Amount"] + [",".join(row) for row in rows]
        return SimpleUploadedFile(name, ("\n".join(lines) + "\n").encode("utf-8"), content_type="text/csv")

    def upload(self, claim, upload_file):
        return self.client.post(
            reverse("claims:claim_upload_response", args=[claim.pk]), {"file": upload_file},
        )


class EligibleTransactionTests(ClaimTestBase):

    def test_only_applied_unclaimed_transactions(self):
        included = self.make_transaction()
        posted = self.make_transaction(status=Transaction.Status.POSTED)
        self.make_transaction(balance_applied=False)
        self.make_transaction(status=Transaction.Status.VOIDED, balance_applied=False)
        self.make_transaction(status=Transaction.Status.PAID)
        ids = {t.pk for t in claimable_transactions(self.org)}
        self.assertEqual(ids, {included.pk, posted.pk})

    def test_date_to_covers_the_whole_day(self):
        txn = self.make_transaction(occurred_at=timezone.now())
        self.make_transaction(occurred_at=timezone.now() - timedelta(days=10))
        self.login_as(self.staff)
        today = timezone.localdate().isoformat()
        response = self.client.get(
            reverse("claims:eligible_transactions"), {"date_from": today, "date_to": today},
        )
        body = response.json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["transactions"][0]["id"], str(txn.pk))
        self.assertEqual(body["total_amount"], 700.0)

    def test_other_organization_excluded(self):
        self.make_transaction(
            organization=self.other_org, resident=self.other_resident, contract=self.other_contract,
        )
        self.assertFalse(claimable_transactions(self.org).exists())


class CreateClaimTests(ClaimTestBase):

    def test_create_picks_up_transactions(self):
        first = self.make_transaction()
        second = self.make_transaction(status=Transaction.Status.POSTED, amount=Decimal("300.00"))
        response = self.create_claim()
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["message"], "Claim CLM-0000001 created with 2 transactions")
        self.assertEqual(body["claim"]["transaction_count"], 2)
        self.assertEqual(body["claim"]["total_amount"], 1000.0)
        self.assertEqual(body["claim"]["status"], "draft")

        claim = Claim.objects.get()
        for txn in (first, second):
            txn.refresh_from_db()
            self.assertEqual(txn.status, Transaction.Status.PICKED_UP)
            self.assertEqual(txn.claim, claim)

    def test_single_transaction_message(self):
        self.make_transaction()
        response = self.create_claim()
        self.assertEqual(response.json()["message"], "Claim CLM-0000001 created with 1 transaction")

    def test_filters_by_resident_and_date(self):
        other_resident = Resident.objects.create(organization=self.org, first_name="Quinn", last_name="Lee")
        self.make_transaction()
        self.make_transaction(occurred_at=timezone.now() - timedelta(days=20))
        self.make_transaction(resident=other_resident)
        response = self.create_claim({
            "resident_id": str(self.resident.pk),
            "date_from": (timezone.localdate() - timedelta(days=5)).isoformat(),
        })
        self.assertEqual(response.json()["claim"]["transaction_count"], 1)

    def test_no_eligible_transactions(self):
        response = self.create_claim()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "No eligible transactions found for the selected filters")
        self.assertFalse(Claim.objects.exists())

    def test_reversed_date_range(self):
        self.make_transaction()
        response = self.create_claim({"date_from": "2026-03-10", "date_to": "2026-03-01"})
        self.assertEqual(response.status_code, 400)

    def test_malformed_resident_id_rejected(self):
        self.make_transaction()
        response = self.create_claim({"resident_id": "not-a-uuid"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Invalid resident_id: expected a UUID")
        self.assertFalse(Claim.objects.exists())

    def test_malformed_resident_filter_on_eligible_list(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("claims:eligible_transactions"), {"resident_id": "42"})
        self.assertEqual(response.status_code, 400)

    def test_staff_cannot_create(self):
        self.make_transaction()
        self.login_as(self.staff)
        response = self.post_json(reverse("claims:claim_list"), {"include_all": True})
        self.assertEqual(response.status_code, 403)

    def test_transactions_only_claimed_once(self):
        self.make_transaction()
        self.create_claim()
        response = self.create_claim()
        self.assertEqual(response.status_code, 400)


class ClaimWorkflowTests(ClaimTestBase):

    def setUp(self):
        self.paid = self.make_transaction()
        self.rejected = self.make_transaction(amount=Decimal("300.00"))
        self.missing = self.make_transaction(amount=Decimal("100.00"))
        self.create_claim()
        self.claim = Claim.objects.get()
        for txn in (self.paid, self.rejected, self.missing):
            txn.refresh_from_db()

    def test_export_stores_file_and_marks_in_progress(self):
        response = self.post_json(reverse("claims:claim_export", args=[self.claim.pk]))
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["filename"].startswith("CLAIM-CLM-0000001-"))
        self.assertEqual(body["transaction_count"], 3)
        self.assertIn("download_url", body)

        self.claim.refresh_from_db()
        self.assertEqual(self.claim.status, Claim.Status.IN_PROGRESS)
        self.assertTrue(self.claim.file_path.startswith("exports/claims/CLM-0000001/"))
        with default_storage.open(self.claim.file_path) as f:
            lines = f.read().decode("utf-8").splitlines()
        self.assertTrue(lines[0].startswith("Claim ID,Transaction ID,Resident Name"))
        self.assertEqual(len(lines), 4)
        self.assertIn(self.paid.txn_id, lines[1])
        self.assertTrue(AuditLog.objects.filter(
            action=AuditLog.Action.CLAIM_EXPORT, affected_object_id=str(self.claim.pk),
        ).exists())

        download = self.client.get(body["download_url"])
        self.assertEqual(download.status_code, 200)
        download.close()

    def test_export_requires_picked_up_transactions(self):
        Transaction.objects.filter(pk=self.paid.pk).update(status=Transaction.Status.PAID)
        response = self.post_json(reverse("claims:claim_export", args=[self.claim.pk]))
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertIn("1 transaction(s) have invalid status", body["message"])
        self.assertEqual(body["details"], [{"id": self.paid.txn_id, "status": "paid"}])

    def test_response_reconciles_each_transaction(self):
        upload = self.response_file([
            (self.paid.txn_id, "Paid", "700.00"),
            (self.rejected.txn_id, "rejected", "300.00"),
            ("TXN-UNKNOWN-A000999", "paid", "50.00"),
        ])
        response = self.upload(self.claim, upload)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["message"], "Response processed: 1 paid, 1 rejected, 1 errors")
        self.assertEqual(body["results"]["total_unmatched"], 1)
        self.assertEqual(body["results"]["unmatched_ids"], ["TXN-UNKNOWN-A000999"])
        self.assertEqual(body["claim"]["status"], "partially_paid")

        self.paid.refresh_from_db()
        self.rejected.refresh_from_db()
        self.missing.refresh_from_db()
        self.assertEqual(self.paid.status, Transaction.Status.PAID)
        self.assertEqual(self.rejected.status, Transaction.Status.REJECTED)
        self.assertEqual(self.missing.status, Transaction.Status.ERROR)
        self.assertIn(UNMATCHED_NOTE, self.missing.note)

        reconciliation = ClaimReconciliation.objects.get(claim=self.claim)
        self.assertEqual(reconciliation.file_name, "response.csv")
        self.assertEqual(reconciliation.total_processed, 3)
        self.assertTrue(default_storage.exists(reconciliation.file_path))

    def test_all_paid_marks_claim_paid(self):
        upload = self.response_file([
            (txn.txn_id, status, "") for txn, status in (
                (self.paid, "success"), (self.rejected, "approved"), (self.missing, "paid"),
            )
        ])
        response = self.upload(self.claim, upload)
        self.assertEqual(response.json()["claim"]["status"], "paid")

    def test_all_rejected_marks_claim_rejected(self):
        upload = self.response_file([
            (txn.txn_id, "denied", "") for txn in (self.paid, self.rejected, self.missing)
        ])
        response = self.upload(self.claim, upload)
        self.assertEqual(response.json()["claim"]["status"], "rejected")

    def test_amount_mismatch_noted(self):
        upload = self.response_file([
            (self.paid.txn_id, "paid", "650.00"),
            (self.rejected.txn_id, "paid", "300.00"),
            (self.missing.txn_id, "paid", "100.00"),
        ])
        response = self.upload(self.claim, upload)
        mismatches = response.json()["results"]["amount_mismatches"]
        self.assertEqual(len(mismatches), 1)
        self.assertEqual(mismatches[0]["transaction_id"], self.paid.txn_id)
        self.paid.refresh_from_db()
        self.assertIn("Amount mismatch - Expected: $700.00, Response: $650.00", self.paid.note)

    def test_unknown_status_is_error(self):
        upload = self.response_file([
            (self.paid.txn_id, "pending", ""),
            (self.rejected.txn_id, "paid", ""),
            (self.missing.txn_id, "paid", ""),
        ])
        body = self.upload(self.claim, upload).json()
        self.assertEqual(body["results"]["errors"], [
            {"transaction_id": self.paid.txn_id, "error": "Unknown status: pending"},
        ])
        self.assertEqual(body["claim"]["status"], "partially_paid")

    def test_rejects_non_csv(self):
        upload = SimpleUploadedFile("response.xlsx", b"not a csv")
        response = self.upload(self.claim, upload)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Only CSV files are supported")

    def test_rejects_missing_columns(self):
        upload = SimpleUploadedFile("response.csv", b"Reference,Outcome\nX,paid\n", content_type="text/csv")
        response = self.upload(self.claim, upload)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], 'CSV must contain "Transaction ID" and "Status" columns')

    def test_missing_file(self):
        response = self.client.post(reverse("claims:claim_upload_response", args=[self.claim.pk]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "No file provided")

    def test_history(self):
        self.post_json(reverse("claims:claim_export", args=[self.claim.pk]))
        self.upload(self.claim, self.response_file([(self.paid.txn_id, "paid", "700.00")]))
        response = self.client.get(reverse("claims:claim_history", args=[self.claim.pk]))
        body = response.json()
        actions = {entry["action"] for entry in body["audit_log"]}
        self.assertEqual(actions, {"create", "claim_export", "claim_reconcile"})
        self.assertEqual(len(body["reconciliations"]), 1)
        self.assertTrue(body["export"]["file_name"].startswith("CLAIM-CLM-0000001-"))

    def test_simulate_completion(self):
        url = reverse("claims:claim_simulate_completion", args=[self.claim.pk])
        response = self.post_json(url)
        self.assertEqual(response.json()["updated"], 3)
        self.assertFalse(self.claim.transactions.exclude(status=Transaction.Status.PAID).exists())

        response = self.post_json(url)
        self.assertEqual(response.json()["message"], "No transactions to update")

    def test_detail_lists_transactions(self):
        response = self.client.get(reverse("claims:claim_detail", args=[self.claim.pk]))
        body = response.json()
        self.assertEqual(len(body["transactions"]), 3)
        self.assertEqual(body["claim"]["claim_number"], "CLM-0000001")

    def test_other_organization_cannot_see_claim(self):
        self.login_as(self.other_admin)
        response = self.client.get(reverse("claims:claim_detail", args=[self.claim.pk]))
        self.assertEqual(response.status_code, 404)
        response = self.post_json(reverse("claims:claim_export", args=[self.claim.pk]))
        self.assertEqual(response.status_code, 404)

    def test_list_filters_by_status(self):
        response = self.client.get(reverse("claims:claim_list"), {"status": "draft"})
        self.assertEqual(len(response.json()["claims"]), 1)
        response = self.client.get(reverse("claims:claim_list"), {"status": "paid"})
        self.assertEqual(response.json()["claims"], [])
