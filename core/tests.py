"""
Tests for the SDA Back Office core API.

Tests cover:
- Tenant isolation (records of another organization read as missing)
- Role checks (staff cannot approve, delete or view the audit log)
- House, resident and funding contract CRUD and validation
- Moving residents into and out of houses, and house occupancy
- Plan managers and resident contacts
- Contract lifecycle transitions and renewal
- Rate calculator
- Dashboard statistics and notifications
- Service agreement PDF generation and signed downloads
"""
import io
import logging
import shutil
import tempfile
from datetime import date, timedelta
from decimal import Decimal

import pdfplumber
from cryptography.fernet import Fernet
from django.core.files.storage import default_storage
from django.db import connection
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from accounts.models import Organization, User
from config.encryption import decrypt_value, encrypt_value, reencrypt_value
from config.log_filters import SensitiveDataFilter
from core.contract_rates import (
    ContractRateError, calculate_contract_rates, get_transaction_amount,
)
from core.dashboard import trend_percentage
from core.funding import mark_expired_contracts
from core.occupancy import current_occupancy, occupancy_history
from core.models import (
    AuditLog, Contact, FundingContract, House, Notification, PlanManager, RenderedDocument, Resident,
)

PASSWORD = "Str0ng-Passphrase-2026"

# Override static files storage for tests (no manifest needed)
STORAGES_OVERRIDE = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

TEST_MEDIA_ROOT = tempfile.mkdtemp(prefix="sda-test-media-")


@override_settings(
    STORAGES=STORAGES_OVERRIDE,
    MEDIA_ROOT=TEST_MEDIA_ROOT,
    SECURE_SSL_REDIRECT=False,
    RATELIMIT_ENABLE=False,
    CRON_SECRET="test-cron-secret",
)
class ApiTestBase(TestCase):
    """Two organizations with users of every role, one house, resident and active contract."""

    @classmethod
    def setUpTestData(cls):
        cls.org = Organization.objects.create(
            name="Harbour Living SDA",
            abn="51824753556",
            email="office@harbourliving.com.au",
            phone="02 9000 1234",
            address_line1="1 Macquarie Place",
            suburb="Sydney",
            state="NSW",
            postcode="2000",
        )
        cls.other_org = Organization.objects.create(name="Coastal Homes SDA")

        cls.admin = User.objects.create_user(
            username="admin",
            password=PASSWORD,
            email="admin@harbourliving.com.au",
            first_name="Alex",
            last_name="Admin",
            organization=cls.org,
            role=User.Role.ADMIN,
        )
        cls.manager = User.objects.create_user(
            username="manager",
            password=PASSWORD,
            email="manager@harbourliving.com.au",
            first_name="Morgan",
            last_name="Manager",
            organization=cls.org,
            role=User.Role.MANAGER,
        )
        cls.staff = User.objects.create_user(
            username="staff",
            password=PASSWORD,
            email="staff@harbourliving.com.au",
            first_name="Sam",
            last_name="Staff",
            organization=cls.org,
            role=User.Role.STAFF,
        )
        cls.other_admin = User.objects.create_user(
            username="other_admin",
            password=PASSWORD,
            email="admin@coastalhomes.com.au",
            organization=cls.other_org,
            role=User.Role.ADMIN,
        )

        cls.house = House.objects.create(
            organization=cls.org,
            descriptor="Banksia House",
            address1="12 Wattle Street",
            suburb="Parramatta",
            state="NSW",
            postcode="2150",
            bedroom_count=4,
        )
        cls.resident = Resident.objects.create(
            organization=cls.org,
            house=cls.house,
            first_name="Jordan",
            last_name="Taylor",
            status=Resident.Status.ACTIVE,
            ndis_id="430123456",
            email="jordan.taylor@example.com",
        )
        today = timezone.localdate()
        cls.contract = FundingContract.objects.create(
            organization=cls.org,
            resident=cls.resident,
            status=FundingContract.Status.ACTIVE,
            original_amount=Decimal("36500.00"),
            current_balance=Decimal("36500.00"),
            start_date=today - timedelta(days=30),
            end_date=today - timedelta(days=30) + timedelta(days=364),
            daily_support_item_cost=Decimal("100.00"),
            support_item_code="06_431_0131_1_1",
        )

        cls.other_house = House.objects.create(
            organization=cls.other_org,
            address1="3 Ocean Parade",
            suburb="Coogee",
            state="NSW",
            postcode="2034",
        )
        cls.other_resident = Resident.objects.create(
            organization=cls.other_org,
            house=cls.other_house,
            first_name="Riley",
            last_name="Nguyen",
            status=Resident.Status.ACTIVE,
        )
        cls.other_contract = FundingContract.objects.create(
            organization=cls.other_org,
            resident=cls.other_resident,
            status=FundingContract.Status.ACTIVE,
            original_amount=Decimal("1000.00"),
            current_balance=Decimal("1000.00"),
            start_date=today - timedelta(days=10),
            end_date=today + timedelta(days=100),
        )

    @classmethod
    def tearDownClass(cls):
        super().tearDownClass()
        shutil.rmtree(TEST_MEDIA_ROOT, ignore_errors=True)

    def login_as(self, user):
        self.client.force_login(user)

    def post_json(self, url, data=None):
        return self.client.post(url, data or {}, content_type="application/json")

    def patch_json(self, url, data):
        return self.client.patch(url, data, content_type="application/json")

    def make_contract(self, **kwargs):
        today = timezone.localdate()
        values = {
            "organization": self.org,
            "resident": self.resident,
            "status": FundingContract.Status.DRAFT,
            "original_amount": Decimal("3650.00"),
            "current_balance": Decimal("3650.00"),
            "start_date": today,
            "end_date": today + timedelta(days=364),
        }
        values.update(kwargs)
        return FundingContract.objects.create(**values)


class TenantIsolationTests(ApiTestBase):
    """Records of another organization must be indistinguishable from missing ones."""

    def test_house_list_only_shows_own_organization(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:house_list"))
        self.assertEqual(response.status_code, 200)
        ids = [h["id"] for h in response.json()["houses"]]
        self.assertEqual(ids, [str(self.house.pk)])

    def test_other_organization_house_is_not_found(self):
        self.login_as(self.admin)
        response = self.client.get(reverse("core:house_detail", args=[self.other_house.pk]))
        self.assertEqual(response.status_code, 404)

    def test_other_organization_contract_cannot_be_activated(self):
        self.login_as(self.admin)
        response = self.post_json(reverse("core:contract_activate", args=[self.other_contract.pk]))
        self.assertEqual(response.status_code, 404)

    def test_resident_cannot_be_assigned_to_other_organization_house(self):
        self.login_as(self.admin)
        response = self.post_json(reverse("core:resident_list"), {
            "first_name": "Casey",
            "last_name": "Brown",
            "status": "Prospect",
            "house": str(self.other_house.pk),
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn("house", response.json()["errors"])

    def test_anonymous_request_is_unauthorized(self):
        response = self.client.get(reverse("core:house_list"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"status": "error", "message": "Authentication required"})

    def test_other_organization_contract_is_json_not_found(self):
        self.login_as(self.admin)
        response = self.client.get(reverse("core:contract_detail", args=[self.other_contract.pk]))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response["Content-Type"], "application/json")
        self.assertEqual(response.json()["status"], "error")

    def test_role_violation_is_json_forbidden(self):
        self.login_as(self.staff)
        response = self.client.delete(reverse("core:house_detail", args=[self.house.pk]))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response["Content-Type"], "application/json")
        self.assertEqual(response.json()["message"], "Only organization administrators can do this.")

    def test_unknown_route_is_json_not_found(self):
        self.login_as(self.admin)
        response = self.client.get("/api/no-such-endpoint/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["status"], "error")


class HouseTests(ApiTestBase):

    def test_create_house(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_list"), {
            "descriptor": "Grevillea Villa",
            "address1": "45 Bottlebrush Avenue",
            "unit": "2",
            "suburb": "Penrith",
            "state": "NSW",
            "postcode": "2750",
            "bedroom_count": 3,
        })
        self.assertEqual(response.status_code, 201)
        house = response.json()["house"]
        self.assertEqual(house["full_address"], "2/45 Bottlebrush Avenue, Penrith NSW 2750")
        self.assertEqual(house["status"], "Active")
        self.assertTrue(
            AuditLog.objects.filter(action=AuditLog.Action.CREATE, affected_object_id=house["id"]).exists()
        )

    def test_create_house_with_address_only(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_list"), {
            "address1": "7 Lilly Pilly Close", "suburb": "Blacktown", "state": "NSW", "postcode": "2148",
        })
        self.assertEqual(response.status_code, 201)
        house = response.json()["house"]
        self.assertEqual(house["country"], "Australia")
        self.assertEqual(house["status"], "Active")
        self.assertEqual(house["bedroom_count"], 0)

    def test_blank_status_falls_back_to_default(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_list"), {
            "address1": "8 Lilly Pilly Close", "suburb": "Blacktown", "state": "NSW", "postcode": "2148",
            "status": "", "country": "",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["house"]["status"], "Active")
        self.assertEqual(response.json()["house"]["country"], "Australia")

    def test_postcode_must_be_four_digits(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_list"), {
            "address1": "1 Short Street", "suburb": "Ryde", "state": "NSW", "postcode": "21",
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn("postcode", response.json()["errors"])

    def test_plan_limit_blocks_new_house(self):
        Organization.objects.filter(pk=self.org.pk).update(max_houses=1)
        self.login_as(self.admin)
        response = self.post_json(reverse("core:house_list"), {
            "address1": "9 Limit Lane", "suburb": "Ryde", "state": "NSW", "postcode": "2112",
        })
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["message"], "Your plan allows 1 houses. Upgrade to add more.")

    def test_partial_update_keeps_other_fields(self):
        self.login_as(self.staff)
        response = self.patch_json(reverse("core:house_detail", args=[self.house.pk]), {"status": "Vacant"})
        self.assertEqual(response.status_code, 200)
        self.house.refresh_from_db()
        self.assertEqual(self.house.status, House.Status.VACANT)
        self.assertEqual(self.house.suburb, "Parramatta")

    def test_staff_cannot_delete_house(self):
        self.login_as(self.staff)
        response = self.client.delete(reverse("core:house_detail", args=[self.house.pk]))
        self.assertEqual(response.status_code, 403)
        self.assertTrue(House.objects.filter(pk=self.house.pk).exists())

    def test_search_filters_houses(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:house_list"), {"search": "parramatta"})
        self.assertEqual(response.json()["pagination"]["total"], 1)
        response = self.client.get(reverse("core:house_list"), {"search": "nowhere"})
        self.assertEqual(response.json()["pagination"]["total"], 0)

    def test_occupancy_rate(self):
        self.assertEqual(self.house.occupancy_rate, 25.0)


class ResidentTests(ApiTestBase):

    def test_ndis_number_is_encrypted_at_rest(self):
        pk = Resident._meta.get_field("id").get_db_prep_value(self.resident.pk, connection)
        with connection.cursor() as cursor:
            cursor.execute("SELECT ndis_id FROM core_resident WHERE id = %s", [pk])
            stored = cursor.fetchone()[0]
        self.assertNotEqual(stored, "430123456")
        self.assertEqual(decrypt_value(stored), "430123456")
        self.assertEqual(Resident.objects.get(pk=self.resident.pk).ndis_id, "430123456")

    def test_plaintext_legacy_value_is_returned_unchanged(self):
        self.assertEqual(decrypt_value("430999999"), "430999999")
        self.assertEqual(encrypt_value(""), "")

    def test_key_rotation(self):
        old_key = Fernet.generate_key().decode()
        new_key = Fernet.generate_key().decode()
        with self.settings(FIELD_ENCRYPTION_KEY=old_key):
            token = encrypt_value("430123456")
        with self.settings(FIELD_ENCRYPTION_KEY=f"{new_key},{old_key}"):
            self.assertEqual(decrypt_value(token), "430123456")
            rotated = reencrypt_value(token)
        with self.settings(FIELD_ENCRYPTION_KEY=new_key):
            self.assertEqual(decrypt_value(rotated), "430123456")
            self.assertEqual(decrypt_value(token), token)

    def test_invalid_ndis_number_rejected(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:resident_list"), {
            "first_name": "Casey", "last_name": "Brown", "status": "Prospect", "ndis_id": "12345",
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn("ndis_id", response.json()["errors"])

    def test_create_resident_defaults_to_prospect(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:resident_list"), {"first_name": "Riley", "last_name": "Nguyen"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["resident"]["status"], "Prospect")
        self.assertEqual(response.json()["resident"]["funding_management_type"], "unknown")

    def test_status_change_is_audited(self):
        self.login_as(self.staff)
        response = self.patch_json(
            reverse("core:resident_detail", args=[self.resident.pk]), {"status": "Deactivated"},
        )
        self.assertEqual(response.status_code, 200)
        entry = AuditLog.objects.filter(
            action=AuditLog.Action.STATUS_CHANGE, affected_object_id=str(self.resident.pk),
        ).get()
        self.assertEqual(entry.description, "Resident status changed from Active to Deactivated")
        self.assertEqual(entry.user, self.staff)

    def test_funding_summary(self):
        self.make_contract(original_amount=Decimal("1000.00"), current_balance=Decimal("1000.00"))
        self.login_as(self.staff)
        response = self.client.get(reverse("core:resident_funding", args=[self.resident.pk]))
        self.assertEqual(response.status_code, 200)
        summary = response.json()["summary"]
        self.assertEqual(summary["total_original"], 37500.0)
        self.assertEqual(summary["active_contracts"], 1)
        self.assertEqual(len(response.json()["contracts"]), 2)

    def test_billing_status_reasons(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:resident_billing_status", args=[self.resident.pk]))
        self.assertTrue(response.json()["billing_status"]["ready"])

        Resident.objects.filter(pk=self.resident.pk).update(house=None, status=Resident.Status.PROSPECT)
        response = self.client.get(reverse("core:resident_billing_status", args=[self.resident.pk]))
        status = response.json()["billing_status"]
        self.assertFalse(status["ready"])
        self.assertIn("Resident is not assigned to a house", status["reasons"])
        self.assertIn("Resident status is Prospect", status["reasons"])


class HousePlacementTests(ApiTestBase):

    def setUp(self):
        self.newcomer = Resident.objects.create(
            organization=self.org, first_name="Casey", last_name="Brown", status=Resident.Status.PROSPECT,
        )

    def test_assign_resident_to_house(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_assign", args=[self.house.pk]), {
            "resident_id": str(self.newcomer.pk), "room_label": "Room 2", "move_in_date": "2026-11-01",
        })
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["message"], "Resident Casey Brown assigned to house successfully")
        self.assertEqual(body["resident"]["house_id"], str(self.house.pk))
        self.assertEqual(body["resident"]["room_label"], "Room 2")
        self.newcomer.refresh_from_db()
        self.assertEqual(self.newcomer.house, self.house)
        self.assertEqual(self.newcomer.move_in_date, date(2026, 11, 1))

    def test_resident_already_in_a_house_must_be_unassigned_first(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_assign", args=[self.house.pk]), {
            "resident_id": str(self.resident.pk),
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["message"], "Resident is already assigned to a house. Please unassign them first.",
        )

    def test_resident_id_required(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_assign", args=[self.house.pk]), {"room_label": "Room 1"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("resident_id", response.json()["errors"])

    def test_other_organization_resident_not_found(self):
        self.login_as(self.admin)
        response = self.post_json(reverse("core:house_assign", args=[self.house.pk]), {
            "resident_id": str(self.other_resident.pk),
        })
        self.assertEqual(response.status_code, 404)

    def test_unassign_resident(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_unassign", args=[self.house.pk]), {
            "resident_id": str(self.resident.pk),
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Resident Jordan Taylor removed from house successfully")
        self.resident.refresh_from_db()
        self.assertIsNone(self.resident.house)

    def test_unassign_from_wrong_house_rejected(self):
        second_house = House.objects.create(
            organization=self.org, address1="8 Acacia Road", suburb="Blacktown", state="NSW", postcode="2148",
        )
        self.login_as(self.staff)
        response = self.post_json(reverse("core:house_unassign", args=[second_house.pk]), {
            "resident_id": str(self.resident.pk),
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Resident is not assigned to this house")


class OccupancyTests(ApiTestBase):

    def setUp(self):
        self.today = timezone.localdate()

    def test_current_occupancy_counts_residents_with_active_contracts(self):
        self.assertEqual(current_occupancy(self.house, self.today), {
            "occupied_bedrooms": 1, "total_bedrooms": 4, "occupancy_rate": 25.0,
        })

        # A resident without a funding contract does not occupy a bedroom
        Resident.objects.create(
            organization=self.org, house=self.house, first_name="Casey", last_name="Brown",
            status=Resident.Status.ACTIVE,
        )
        self.assertEqual(current_occupancy(self.house, self.today)["occupied_bedrooms"], 1)

        FundingContract.objects.filter(pk=self.contract.pk).update(status=FundingContract.Status.EXPIRED)
        self.assertEqual(current_occupancy(self.house, self.today)["occupied_bedrooms"], 0)

    def test_rate_rounds_to_two_places(self):
        House.objects.filter(pk=self.house.pk).update(bedroom_count=3)
        self.house.refresh_from_db()
        self.assertEqual(current_occupancy(self.house, self.today)["occupancy_rate"], 33.33)

    def test_history_takes_mid_month_snapshots(self):
        history = occupancy_history(self.house, self.today)
        self.assertEqual(len(history), 12)
        self.assertEqual(history[-1]["month_name"], self.today.strftime("%b %Y"))
        self.assertEqual(history[-1]["month_start"], self.today.replace(day=1))
        self.assertEqual(history[-1]["occupied_bedrooms"], 1)
        # The contract started a month ago, so a year back the house was empty
        self.assertEqual(history[0]["occupied_bedrooms"], 0)

        # Expired contracts still count for past months
        FundingContract.objects.filter(pk=self.contract.pk).update(status=FundingContract.Status.EXPIRED)
        self.assertEqual(occupancy_history(self.house, self.today)[-1]["occupied_bedrooms"], 1)

    def test_history_respects_move_out_date(self):
        Resident.objects.filter(pk=self.resident.pk).update(move_out_date=self.today.replace(day=14))
        self.assertEqual(occupancy_history(self.house, self.today)[-1]["occupied_bedrooms"], 0)

    def test_house_occupancy_endpoint(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:house_occupancy", args=[self.house.pk]))
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["current"]["occupancy_rate"], 25.0)
        self.assertEqual(len(body["history"]), 12)

    def test_all_houses_occupancy_is_keyed_by_house(self):
        empty = House.objects.create(
            organization=self.org, address1="8 Acacia Road", suburb="Blacktown", state="NSW", postcode="2148",
        )
        self.login_as(self.staff)
        response = self.client.get(reverse("core:house_occupancy_all"))
        occupancy = response.json()["occupancy"]
        self.assertEqual(set(occupancy), {str(self.house.pk), str(empty.pk)})
        self.assertEqual(occupancy[str(self.house.pk)], {
            "occupied_bedrooms": 1, "total_bedrooms": 4, "occupancy_rate": 25.0,
        })
        self.assertEqual(occupancy[str(empty.pk)]["occupancy_rate"], 0.0)


class PlanManagerTests(ApiTestBase):

    def setUp(self):
        self.plan_manager = PlanManager.objects.create(
            organization=self.org, name="Leap in! Plan Management", email="claims@leapin.example",
        )

    def test_create_plan_manager(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("core:plan_manager_list"), {
            "name": "My Plan Manager", "billing_email": "invoices@myplan.example", "phone": "1300 000 000",
        })
        self.assertEqual(response.status_code, 201)
        body = response.json()["plan_manager"]
        self.assertEqual(body["billing_email"], "invoices@myplan.example")
        self.assertEqual(body["resident_count"], 0)
        self.assertEqual(PlanManager.objects.get(pk=body["id"]).organization, self.org)

    def test_name_is_required(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("core:plan_manager_list"), {"email": "x@example.com"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_resident_linked_to_plan_manager(self):
        self.login_as(self.staff)
        response = self.patch_json(reverse("core:resident_detail", args=[self.resident.pk]), {
            "funding_management_type": "plan_managed", "plan_manager": str(self.plan_manager.pk),
        })
        self.assertEqual(response.status_code, 200)
        resident = response.json()["resident"]
        self.assertEqual(resident["funding_management_type"], "plan_managed")
        self.assertEqual(resident["plan_manager_name"], "Leap in! Plan Management")

        response = self.client.get(reverse("core:plan_manager_list"))
        self.assertEqual(response.json()["plan_managers"][0]["resident_count"], 1)

    def test_other_organization_plan_manager_cannot_be_linked(self):
        foreign = PlanManager.objects.create(organization=self.other_org, name="Coastal Plans")
        self.login_as(self.staff)
        response = self.patch_json(reverse("core:resident_detail", args=[self.resident.pk]), {
            "plan_manager": str(foreign.pk),
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn("plan_manager", response.json()["errors"])

    def test_delete_clears_residents_plan_manager(self):
        Resident.objects.filter(pk=self.resident.pk).update(plan_manager=self.plan_manager)
        self.login_as(self.staff)
        response = self.client.delete(reverse("core:plan_manager_detail", args=[self.plan_manager.pk]))
        self.assertEqual(response.status_code, 403)

        self.login_as(self.admin)
        response = self.client.delete(reverse("core:plan_manager_detail", args=[self.plan_manager.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["unlinked_residents"], 1)
        self.resident.refresh_from_db()
        self.assertIsNone(self.resident.plan_manager)

    def test_other_organization_plan_manager_not_found(self):
        foreign = PlanManager.objects.create(organization=self.other_org, name="Coastal Plans")
        self.login_as(self.admin)
        response = self.client.get(reverse("core:plan_manager_detail", args=[foreign.pk]))
        self.assertEqual(response.status_code, 404)


class ResidentContactTests(ApiTestBase):

    def setUp(self):
        self.housemate = Resident.objects.create(
            organization=self.org, house=self.house, first_name="Casey", last_name="Brown",
            status=Resident.Status.ACTIVE,
        )

    def add_contact(self, resident, data):
        return self.post_json(reverse("core:resident_contacts", args=[resident.pk]), data)

    def test_create_and_list_contact(self):
        self.login_as(self.staff)
        response = self.add_contact(self.resident, {
            "name": "Pat Taylor", "role": "Guardian", "phone": "0400 111 222", "email": "pat@example.com",
        })
        self.assertEqual(response.status_code, 201)
        contact = response.json()["contact"]
        self.assertEqual(contact["resident_count"], 1)
        self.assertIn("link_id", contact)

        response = self.client.get(reverse("core:resident_contacts", args=[self.resident.pk]))
        contacts = response.json()["contacts"]
        self.assertEqual([c["name"] for c in contacts], ["Pat Taylor"])
        self.assertEqual(contacts[0]["link_id"], contact["link_id"])

    def test_contact_name_required(self):
        self.login_as(self.staff)
        response = self.add_contact(self.resident, {"role": "Guardian"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_link_existing_contact_to_second_resident(self):
        self.login_as(self.staff)
        contact_id = self.add_contact(self.resident, {"name": "Pat Taylor"}).json()["contact"]["id"]
        response = self.add_contact(self.housemate, {"contact_id": contact_id})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["contact"]["resident_count"], 2)

        response = self.add_contact(self.housemate, {"contact_id": contact_id})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Contact is already linked to this resident")

    def test_removing_last_link_deletes_contact(self):
        self.login_as(self.staff)
        first = self.add_contact(self.resident, {"name": "Pat Taylor"}).json()["contact"]
        second = self.add_contact(self.housemate, {"contact_id": first["id"]}).json()["contact"]

        url = reverse("core:resident_contacts", args=[self.resident.pk])
        response = self.client.delete(f"{url}?link_id={first['link_id']}")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["deleted_contact"])
        self.assertTrue(Contact.objects.filter(pk=first["id"]).exists())

        url = reverse("core:resident_contacts", args=[self.housemate.pk])
        response = self.client.delete(f"{url}?link_id={second['link_id']}")
        self.assertTrue(response.json()["deleted_contact"])
        self.assertFalse(Contact.objects.filter(pk=first["id"]).exists())

    def test_malformed_link_id_rejected(self):
        self.login_as(self.staff)
        url = reverse("core:resident_contacts", args=[self.resident.pk])
        response = self.client.delete(f"{url}?link_id=not-a-uuid")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Invalid link_id: expected a UUID")

    def test_update_contact(self):
        self.login_as(self.staff)
        contact = self.add_contact(self.resident, {"name": "Pat Taylor"}).json()["contact"]
        response = self.patch_json(reverse("core:contact_detail", args=[contact["id"]]), {"phone": "0400 999 888"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["contact"]["phone"], "0400 999 888")
        self.assertEqual(response.json()["contact"]["name"], "Pat Taylor")

    def test_search_needs_two_characters_and_stays_in_organization(self):
        Contact.objects.create(organization=self.org, name="Sam Support", email="sam@coord.example")
        Contact.objects.create(organization=self.other_org, name="Sam Elsewhere")
        self.login_as(self.staff)
        response = self.client.get(reverse("core:contact_search"), {"q": "S"})
        self.assertEqual(response.json()["contacts"], [])

        response = self.client.get(reverse("core:contact_search"), {"q": "sam"})
        self.assertEqual([c["name"] for c in response.json()["contacts"]], ["Sam Support"])

        response = self.client.get(reverse("core:contact_search"), {"q": "coord.example"})
        self.assertEqual(len(response.json()["contacts"]), 1)


class FundingContractTests(ApiTestBase):

    def test_create_contract_starts_as_draft_with_full_balance(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_list"), {
            "resident": str(self.resident.pk),
            "contract_type": "Draw Down",
            "original_amount": "7300.00",
            "start_date": "2026-07-01",
            "end_date": "2027-06-30",
        })
        self.assertEqual(response.status_code, 201)
        contract = response.json()["contract"]
        self.assertEqual(contract["status"], "Draft")
        self.assertEqual(contract["current_balance"], 7300.0)
        self.assertEqual(contract["duration_days"], 365)

    def test_contract_type_defaults_to_draw_down(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_list"), {
            "resident": str(self.resident.pk),
            "original_amount": "5000.00",
            "start_date": "2026-07-01",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["contract"]["contract_type"], "Draw Down")

    def test_end_date_before_start_date_rejected(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_list"), {
            "resident": str(self.resident.pk),
            "contract_type": "Draw Down",
            "original_amount": "100.00",
            "start_date": "2026-07-01",
            "end_date": "2026-06-30",
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn("end_date", response.json()["errors"])

    def test_amount_above_maximum_rejected(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_list"), {
            "resident": str(self.resident.pk),
            "contract_type": "Draw Down",
            "original_amount": "1000000.00",
            "start_date": "2026-07-01",
        })
        self.assertEqual(response.status_code, 400)

    def test_staff_cannot_activate(self):
        draft = self.make_contract()
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_activate", args=[draft.pk]))
        self.assertEqual(response.status_code, 403)

    def test_manager_activates_draft(self):
        draft = self.make_contract(current_balance=Decimal("0"))
        self.login_as(self.manager)
        response = self.post_json(reverse("core:contract_activate", args=[draft.pk]))
        self.assertEqual(response.status_code, 200)
        draft.refresh_from_db()
        self.assertEqual(draft.status, FundingContract.Status.ACTIVE)
        self.assertEqual(draft.current_balance, Decimal("3650.00"))

    def test_invalid_transition_rejected(self):
        draft = self.make_contract()
        self.login_as(self.manager)
        response = self.post_json(reverse("core:contract_status", args=[draft.pk]), {"status": "Expired"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cannot change contract status from Draft to Expired")

    def test_expiring_clears_balance(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("core:contract_status", args=[self.contract.pk]), {"status": "Expired"})
        self.assertEqual(response.status_code, 200)
        self.contract.refresh_from_db()
        self.assertEqual(self.contract.current_balance, Decimal("0"))

    def test_renew_creates_draft_successor(self):
        expired = self.make_contract(status=FundingContract.Status.EXPIRED, current_balance=Decimal("0"))
        self.login_as(self.manager)
        response = self.post_json(reverse("core:contract_renew", args=[expired.pk]))
        self.assertEqual(response.status_code, 201)
        renewal = FundingContract.objects.get(pk=response.json()["contract"]["id"])
        self.assertEqual(renewal.status, FundingContract.Status.DRAFT)
        self.assertEqual(renewal.parent_contract, expired)
        self.assertEqual(renewal.current_balance, Decimal("3650.00"))
        expired.refresh_from_db()
        self.assertEqual(expired.status, FundingContract.Status.RENEWED)

    def test_only_expired_contracts_renew(self):
        self.login_as(self.manager)
        response = self.post_json(reverse("core:contract_renew", args=[self.contract.pk]))
        self.assertEqual(response.status_code, 400)

    def test_active_contract_cannot_be_deleted(self):
        self.login_as(self.admin)
        response = self.client.delete(reverse("core:contract_detail", args=[self.contract.pk]))
        self.assertEqual(response.status_code, 400)
        self.assertTrue(FundingContract.objects.filter(pk=self.contract.pk).exists())

    def test_draft_contract_deleted_by_admin(self):
        draft = self.make_contract()
        self.login_as(self.admin)
        response = self.client.delete(reverse("core:contract_detail", args=[draft.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(FundingContract.objects.filter(pk=draft.pk).exists())

    def test_amount_locked_once_active(self):
        self.login_as(self.staff)
        response = self.patch_json(
            reverse("core:contract_detail", args=[self.contract.pk]), {"original_amount": "50000.00"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("original_amount", response.json()["errors"])

    def test_mark_expired_contracts(self):
        today = timezone.localdate()
        lapsed = self.make_contract(
            status=FundingContract.Status.ACTIVE,
            start_date=today - timedelta(days=60),
            end_date=today - timedelta(days=1),
        )
        self.assertEqual(mark_expired_contracts(self.org, today=today), 1)
        lapsed.refresh_from_db()
        self.assertEqual(lapsed.status, FundingContract.Status.EXPIRED)
        self.assertEqual(lapsed.current_balance, Decimal("0"))
        self.contract.refresh_from_db()
        self.assertEqual(self.contract.status, FundingContract.Status.ACTIVE)


class ContractRateTests(ApiTestBase):

    def test_rates_for_full_year(self):
        rates = calculate_contract_rates(Decimal("36500"), date(2026, 1, 1), date(2026, 12, 31))
        self.assertEqual(rates["total_days"], 365)
        self.assertEqual(rates["daily_rate"], Decimal("100.00"))
        self.assertEqual(rates["weekly_rate"], Decimal("700.00"))
        self.assertEqual(rates["fortnightly_rate"], Decimal("1400.00"))

    def test_rates_round_to_cents(self):
        rates = calculate_contract_rates(Decimal("1000"), date(2026, 1, 1), date(2026, 1, 3))
        self.assertEqual(rates["daily_rate"], Decimal("333.33"))
        self.assertEqual(rates["weekly_rate"], Decimal("2333.33"))

    def test_end_date_required(self):
        with self.assertRaisesMessage(ContractRateError, "Contract end date is required for automatic calculation"):
            calculate_contract_rates(Decimal("1000"), date(2026, 1, 1), None)

    def test_transaction_amount_by_frequency(self):
        self.assertEqual(get_transaction_amount("fortnightly", Decimal("100.00")), Decimal("1400.00"))
        with self.assertRaises(ContractRateError):
            get_transaction_amount("monthly", Decimal("100.00"))

    def test_calculate_rates_endpoint(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:calculate_rates"), {
            "amount": "36500", "start_date": "2026-01-01", "end_date": "2026-12-31",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["rates"]["weekly_rate"], 700.0)

        response = self.post_json(reverse("core:calculate_rates"), {"amount": "0", "start_date": "2026-01-01"})
        self.assertEqual(response.status_code, 400)


class DashboardTests(ApiTestBase):

    def test_trend_percentage(self):
        self.assertEqual(trend_percentage(5, 0), 100.0)
        self.assertEqual(trend_percentage(0, 0), 0.0)
        self.assertEqual(trend_percentage(15, 10), 50.0)
        self.assertEqual(trend_percentage(5, 10), -50.0)

    def test_dashboard_stats(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:dashboard_stats"))
        self.assertEqual(response.status_code, 200)
        stats = response.json()["stats"]
        self.assertEqual(stats["portfolio"]["total_houses"], 1)
        self.assertEqual(stats["portfolio"]["active_residents"], 1)
        self.assertEqual(stats["portfolio"]["active_contracts"], 1)
        self.assertEqual(stats["portfolio"]["total_balance"], 36500.0)
        self.assertEqual(len(stats["monthly_trends"]), 6)
        self.assertEqual(set(stats["periods"]), {"7d", "30d", "12m"})
        self.assertEqual(stats["house_performance"][0]["occupancy_rate"], 25.0)


class NotificationTests(ApiTestBase):

    @classmethod
    def setUpTestData(cls):
        super().setUpTestData()
        cls.broadcast = Notification.objects.create(organization=cls.org, title="Billing run completed")
        cls.personal = Notification.objects.create(organization=cls.org, user=cls.staff, title="Welcome")
        cls.for_manager = Notification.objects.create(organization=cls.org, user=cls.manager, title="Manager only")
        Notification.objects.create(organization=cls.other_org, title="Other organization")

    def test_list_shows_own_and_organization_wide(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:notification_list"))
        self.assertEqual(response.status_code, 200)
        titles = {n["title"] for n in response.json()["notifications"]}
        self.assertEqual(titles, {"Billing run completed", "Welcome"})
        self.assertEqual(response.json()["unread_count"], 2)

    def test_cannot_mark_another_users_notification(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:notification_mark_read", args=[self.for_manager.pk]))
        self.assertEqual(response.status_code, 404)

    def test_mark_all_read(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:notification_read_all"))
        self.assertEqual(response.status_code, 200)
        self.personal.refresh_from_db()
        self.assertTrue(self.personal.is_read)
        self.for_manager.refresh_from_db()
        self.assertFalse(self.for_manager.is_read)


class AuditLogTests(ApiTestBase):

    def test_staff_cannot_view_audit_log(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("core:audit_log"))
        self.assertEqual(response.status_code, 403)

    def test_manager_views_own_organization_entries(self):
        AuditLog.objects.create(organization=self.org, action=AuditLog.Action.UPDATE, description="Mine")
        AuditLog.objects.create(organization=self.other_org, action=AuditLog.Action.UPDATE, description="Theirs")
        self.login_as(self.manager)
        response = self.client.get(reverse("core:audit_log"), {"action": "update"})
        self.assertEqual(response.status_code, 200)
        descriptions = [e["description"] for e in response.json()["entries"]]
        self.assertEqual(descriptions, ["Mine"])


class ContractPdfTests(ApiTestBase):

    def test_generates_three_page_agreement(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_pdf", args=[self.contract.pk]))
        self.assertEqual(response.status_code, 200)
        body = response.json()
        document = RenderedDocument.objects.get(pk=body["document_id"])
        self.assertEqual(document.template_id, "ndis_service_agreement")
        self.assertEqual(document.template_version, "v1")
        self.assertEqual(len(document.data_hash_sha256), 64)
        self.assertEqual(document.rendered_by, self.staff)
        self.assertTrue(document.storage_path.startswith(f"contracts/{self.contract.pk}/ndis_service_agreement-v1-"))
        self.assertTrue(default_storage.exists(document.storage_path))

        with default_storage.open(document.storage_path, "rb") as f:
            pdf_bytes = f.read()
        self.assertEqual(document.file_size_bytes, len(pdf_bytes))
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            self.assertGreaterEqual(len(pdf.pages), 3)
            first_page = pdf.pages[0].extract_text()
            full_text = "\n".join(page.extract_text() or "" for page in pdf.pages)
        self.assertIn("NDIS Service Agreement", first_page)
        self.assertIn("Jordan Taylor", first_page)
        self.assertIn("Banksia House", full_text)
        self.assertIn("Financial Summary", full_text)

        self.assertTrue(AuditLog.objects.filter(
            action=AuditLog.Action.GENERATE, affected_object_id=str(self.contract.pk),
        ).exists())

    def test_signed_url_downloads_document(self):
        self.login_as(self.staff)
        body = self.post_json(reverse("core:contract_pdf", args=[self.contract.pk])).json()
        self.client.logout()
        response = self.client.get(body["signed_url"])
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertTrue(b"".join(response.streaming_content).startswith(b"%PDF"))

    def test_tampered_signed_url_is_not_found(self):
        response = self.client.get(reverse("signed_file", args=["not-a-valid-token"]))
        self.assertEqual(response.status_code, 404)

    def test_missing_daily_rate_is_validation_error(self):
        FundingContract.objects.filter(pk=self.contract.pk).update(daily_support_item_cost=None)
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_pdf", args=[self.contract.pk]))
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertIn("agreement.daily_rate", [issue["field"] for issue in body["issues"]])
        self.assertFalse(RenderedDocument.objects.exists())

    def test_other_organization_contract_not_found(self):
        self.login_as(self.staff)
        response = self.post_json(reverse("core:contract_pdf", args=[self.other_contract.pk]))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "NOT_FOUND")


class SensitiveDataFilterTests(TestCase):

    def test_redacts_contact_details_and_ndis_numbers(self):
        record = logging.LogRecord(
            "core", logging.INFO, __file__, 1,
            "Invite sent to %s for participant %s (phone %s)",
            ("jordan.taylor@example.com", "430 123 456", "0412 345 678"), None,
        )
        self.assertTrue(SensitiveDataFilter().filter(record))
        self.assertEqual(record.getMessage(), "Invite sent to [EMAIL] for participant [NDIS] (phone [PHONE])")

    def test_plain_message_untouched(self):
        record = logging.LogRecord("billing", logging.INFO, __file__, 1, "Processed %d contract(s)", (3,), None)
        SensitiveDataFilter().filter(record)
        self.assertEqual(record.getMessage(), "Processed 3 contract(s)")
