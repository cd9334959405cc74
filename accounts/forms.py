"""SDA Back Office - Account Forms"""
from django import forms
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError

from .models import PLAN_LIMITS, Invitation, Organization, User


ABN_WEIGHTS = (10, 1, 3, 5, 7, 9, 11, 13, 15, 17, 19)


def abn_checksum_valid(abn):
    """ATO check: subtract 1 from the first digit, weight the digits, and the sum divides by 89."""
    digits = [int(d) for d in abn]
    digits[0] -= 1
    return sum(d * w for d, w in zip(digits, ABN_WEIGHTS)) % 89 == 0


class _PasswordPairMixin:
    """Shared password confirmation and strength validation."""

    def _clean_password_pair(self, cleaned_data, user=None):
        p1 = cleaned_data.get("password1")
        p2 = cleaned_data.get("password2")
        if p1 and p2 and p1 != p2:
            self.add_error("password2", "Passwords do not match.")
        if p1:
            try:
                validate_password(p1, user=user)
            except ValidationError as e:
                self.add_error("password1", e)
        return cleaned_data


class LoginForm(forms.Form):
    username = forms.CharField(max_length=150)
    password = forms.CharField()


class OrganizationSignupForm(_PasswordPairMixin, forms.Form):
    """Create a new organization together with its first administrator."""

    organization_name = forms.CharField(max_length=255)
    subscription_plan = forms.ChoiceField(
        choices=Organization.Plan.choices, required=False,
    )
    first_name = forms.CharField(max_length=150)
    last_name = forms.CharField(max_length=150)
    email = forms.EmailField()
    username = forms.CharField(max_length=150)
    password1 = forms.CharField(label="Password")
    password2 = forms.CharField(label="Confirm Password")

    def clean_email(self):
        email = self.cleaned_data["email"].lower().strip()
        if User.objects.filter(email__iexact=email).exists():
            raise ValidationError("A user with this email address already exists.")
        return email

    def clean_username(self):
        username = self.cleaned_data["username"].strip()
        if User.objects.filter(username=username).exists():
            raise ValidationError("This username is already taken.")
        return username

    def clean_subscription_plan(self):
        plan = self.cleaned_data.get("subscription_plan") or Organization.Plan.FREE
        if plan not in PLAN_LIMITS:
            raise ValidationError("Unknown subscription plan.")
        return plan

    def clean(self):
        cleaned_data = super().clean()
        candidate = User(
            username=cleaned_data.get("username", ""),
            email=cleaned_data.get("email", ""),
            first_name=cleaned_data.get("first_name", ""),
            last_name=cleaned_data.get("last_name", ""),
        )
        return self._clean_password_pair(cleaned_data, user=candidate)


class InvitationForm(forms.ModelForm):
    """Form for creating a new invitation."""

    class Meta:
        model = Invitation
        fields = ("email", "first_name", "last_name", "role")

    def __init__(self, *args, organization=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.organization = organization

    def clean_email(self):
        email = self.cleaned_data["email"].lower().strip()
        if User.objects.filter(email__iexact=email).exists():
            raise ValidationError("A user with this email address already exists.")
        pending = Invitation.objects.filter(
            organization=self.organization,
            email=email,
            status=Invitation.Status.PENDING,
        ).exists()
        if pending:
            raise ValidationError("A pending invitation already exists for this email address.")
        return email


class InvitationAcceptForm(_PasswordPairMixin, forms.Form):
    """Form for accepting an invitation and setting up the account."""

    username = forms.CharField(max_length=150)
    password1 = forms.CharField(label="Password")
    password2 = forms.CharField(label="Confirm Password")

    def clean_username(self):
        username = self.cleaned_data["username"].strip()
        if User.objects.filter(username=username).exists():
            raise ValidationError("This username is already taken.")
        return username

    def clean(self):
        cleaned_data = super().clean()
        return self._clean_password_pair(cleaned_data)


class OrganizationSettingsForm(forms.ModelForm):
    """Provider details printed on service agreements."""

    # Wider than the column so that a spaced ABN reaches clean_abn
    abn = forms.CharField(max_length=14, required=False)

    class Meta:
        model = Organization
        fields = (
            "name", "abn", "email", "phone",
            "address_line1", "address_line2", "suburb", "state", "postcode", "country",
        )

    def clean_abn(self):
        abn = self.cleaned_data.get("abn", "").replace(" ", "")
        if not abn:
            return abn
        if len(abn) != 11 or not abn.isdigit():
            raise ValidationError("ABN must be 11 digits.")
        if not abn_checksum_valid(abn):
            raise ValidationError("This is not a valid ABN.")
        return abn


class UserEditForm(forms.ModelForm):
    class Meta:
        model = User
        fields = ("first_name", "last_name", "email", "phone", "role", "is_active")
