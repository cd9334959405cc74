"""
Tests for organization signup, sessions, user management and invitations.
"""
from datetime import timedelta

from django.core import mail
from django.urls import reverse
from django.utils import timezone

from accounts.models import Invitation, Organization, User
from core.models import AuditLog
from core.tests import PASSWORD, ApiTestBase


class SignupTests(ApiTestBase):

    def signup_payload(self, **overrides):
        payload = {
            "organization_name": "Bluegum Supported Living",
            "first_name": "Pat",
            "last_name": "Owner",
            "email": "pat@bluegum.com.au",
            "username": "pat.owner",
            "password1": PASSWORD,
            "password2": PASSWORD,
        }
        payload.update(overrides)
        return payload

    def test_signup_creates_organization_and_admin(self):
        response = self.post_json(reverse("accounts:signup"), self.signup_payload())
        self.assertEqual(response.status_code, 201)
        org = Organization.objects.get(name="Bluegum Supported Living")
        self.assertEqual(org.slug, "bluegum-supported-living")
        self.assertEqual(org.subscription_plan, Organization.Plan.FREE)
        self.assertEqual(org.max_houses, 5)
        user = User.objects.get(username="pat.owner")
        self.assertEqual(user.organization, org)
        self.assertEqual(user.role, User.Role.ADMIN)

        # Logged in straight away
        session = self.client.get(reverse("accounts:session"))
        self.assertEqual(session.json()["organization"]["id"], str(org.pk))

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, "Welcome to SDA Back Office, Pat")
        self.assertEqual(mail.outbox[0].to, ["pat@bluegum.com.au"])

    def test_plan_sets_limits(self):
        response = self.post_json(reverse("accounts:signup"), self.signup_payload(subscription_plan="pro"))
        self.assertEqual(response.status_code, 201)
        org = Organization.objects.get(name="Bluegum Supported Living")
        self.assertEqual((org.max_houses, org.max_residents, org.max_users), (100, 500, 20))

    def test_duplicate_slug_gets_suffix(self):
        Organization.objects.create(name="Bluegum Supported Living")
        self.post_json(reverse("accounts:signup"), self.signup_payload())
        slugs = set(Organization.objects.filter(name="Bluegum Supported Living").values_list("slug", flat=True))
        self.assertEqual(slugs, {"bluegum-supported-living", "bluegum-supported-living-2"})

    def test_weak_password_rejected(self):
        response = self.post_json(
            reverse("accounts:signup"), self.signup_payload(password1="short", password2="short"),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("password1", response.json()["errors"])
        self.assertFalse(Organization.objects.filter(name="Bluegum Supported Living").exists())

    def test_existing_email_rejected(self):
        response = self.post_json(
            reverse("accounts:signup"), self.signup_payload(email="ADMIN@harbourliving.com.au"),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("email", response.json()["errors"])


class SessionTests(ApiTestBase):

    def test_login_and_logout(self):
        response = self.post_json(reverse("accounts:login"), {"username": "staff", "password": PASSWORD})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["role"], "staff")
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.LOGIN, user=self.staff).exists())

        response = self.post_json(reverse("accounts:logout"))
        self.assertEqual(response.status_code, 200)
        response = self.client.get(reverse("accounts:session"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["status"], "error")

    def test_wrong_password(self):
        response = self.post_json(reverse("accounts:login"), {"username": "staff", "password": "wrong"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid username or password")

    def test_limits(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("accounts:organization_limits"))
        limits = response.json()["limits"]
        self.assertEqual(limits["houses"], {"allowed": True, "current": 1, "max": 5, "limit_type": "houses"})
        self.assertFalse(limits["users"]["allowed"])


class OrganizationSettingsTests(ApiTestBase):

    def test_admin_updates_provider_details(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:organization_settings"), {"abn": "51 824 753 556", "phone": "02 9111 2222"})
        self.assertEqual(response.status_code, 200)
        self.org.refresh_from_db()
        self.assertEqual(self.org.abn, "51824753556")
        self.assertEqual(self.org.phone, "02 9111 2222")
        self.assertEqual(self.org.name, "Harbour Living SDA")

    def test_invalid_abn(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:organization_settings"), {"abn": "1234"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("abn", response.json()["errors"])

    def test_abn_checksum(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:organization_settings"), {"abn": "51 824 753 557"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"]["abn"], ["This is not a valid ABN."])
        self.org.refresh_from_db()
        self.assertEqual(self.org.abn, "51824753556")

    def test_abn_can_be_cleared(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:organization_settings"), {"abn": ""})
        self.assertEqual(response.status_code, 200)
        self.org.refresh_from_db()
        self.assertEqual(self.org.abn, "")

    def test_manager_cannot_update(self):
        self.login_as(self.manager)
        response = self.patch_json(reverse("accounts:organization_settings"), {"phone": "0400 000 000"})
        self.assertEqual(response.status_code, 403)


class UserManagementTests(ApiTestBase):

    def test_user_list_is_scoped(self):
        self.login_as(self.staff)
        response = self.client.get(reverse("accounts:user_list"))
        usernames = {u["username"] for u in response.json()["users"]}
        self.assertEqual(usernames, {"admin", "manager", "staff"})

    def test_admin_changes_role(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:user_edit", args=[self.staff.pk]), {"role": "manager"})
        self.assertEqual(response.status_code, 200)
        self.staff.refresh_from_db()
        self.assertEqual(self.staff.role, User.Role.MANAGER)

    def test_admin_cannot_demote_self(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:user_edit", args=[self.admin.pk]), {"role": "staff"})
        self.assertEqual(response.status_code, 400)
        self.admin.refresh_from_db()
        self.assertEqual(self.admin.role, User.Role.ADMIN)

    def test_cannot_edit_user_of_other_organization(self):
        self.login_as(self.admin)
        response = self.patch_json(reverse("accounts:user_edit", args=[self.other_admin.pk]), {"role": "staff"})
        self.assertEqual(response.status_code, 404)

    def test_manager_cannot_edit_users(self):
        self.login_as(self.manager)
        response = self.patch_json(reverse("accounts:user_edit", args=[self.staff.pk]), {"role": "admin"})
        self.assertEqual(response.status_code, 403)


class InvitationTests(ApiTestBase):

    def setUp(self):
        Organization.objects.filter(pk=self.org.pk).update(max_users=10)

    def invite(self, email="new.starter@harbourliving.com.au"):
        return self.post_json(reverse("accounts:invitation_list"), {
            "email": email, "first_name": "Nova", "last_name": "Starter", "role": "staff",
        })

    def test_invite_sends_email(self):
        self.login_as(self.admin)
        response = self.invite()
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["email_sent"])
        invitation = Invitation.objects.get(email="new.starter@harbourliving.com.au")
        self.assertEqual(invitation.invited_by, self.admin)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(invitation.token, mail.outbox[0].body)

    def test_duplicate_pending_invitation_rejected(self):
        self.login_as(self.admin)
        self.invite()
        response = self.invite()
        self.assertEqual(response.status_code, 400)

    def test_user_limit_blocks_invitation(self):
        Organization.objects.filter(pk=self.org.pk).update(max_users=3)
        self.login_as(self.admin)
        response = self.invite()
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["limit"]["current"], 3)

    def test_accept_creates_user_in_organization(self):
        invitation = Invitation.objects.create(
            organization=self.org, email="nova@harbourliving.com.au",
            first_name="Nova", last_name="Starter", role=User.Role.MANAGER,
        )
        url = reverse("accounts:invitation_accept", args=[invitation.token])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["organization"]["name"], "Harbour Living SDA")

        response = self.post_json(url, {"username": "nova", "password1": PASSWORD, "password2": PASSWORD})
        self.assertEqual(response.status_code, 201)
        user = User.objects.get(username="nova")
        self.assertEqual(user.organization, self.org)
        self.assertEqual(user.role, User.Role.MANAGER)
        invitation.refresh_from_db()
        self.assertEqual(invitation.status, Invitation.Status.ACCEPTED)
        self.assertEqual(invitation.created_user, user)

    def test_expired_invitation_rejected(self):
        invitation = Invitation.objects.create(
            organization=self.org, email="late@harbourliving.com.au",
            first_name="Late", last_name="Comer",
            expires_at=timezone.now() - timedelta(hours=1),
        )
        response = self.client.get(reverse("accounts:invitation_accept", args=[invitation.token]))
        self.assertEqual(response.status_code, 410)
        self.assertEqual(response.json()["message"], "This invitation is expired.")

    def test_revoke_and_resend(self):
        invitation = Invitation.objects.create(
            organization=self.org, email="maybe@harbourliving.com.au", first_name="May", last_name="Be",
        )
        self.login_as(self.admin)
        response = self.post_json(reverse("accounts:invitation_revoke", args=[invitation.pk]))
        self.assertEqual(response.json()["invitation"]["status"], "revoked")
        response = self.post_json(reverse("accounts:invitation_resend", args=[invitation.pk]))
        self.assertEqual(response.status_code, 400)
