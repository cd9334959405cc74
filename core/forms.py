"""SDA Back Office - Core Forms"""
from django import forms
from django.core.exceptions import ValidationError

from .models import Contact, FundingContract, House, PlanManager, Resident


class ModelDefaultsMixin:
    """
    Fields whose model column has a default may be left out of a create
    request; a blank value falls back to that default.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.model_defaults = {}
        model_fields = {f.name: f for f in self._meta.model._meta.get_fields() if hasattr(f, "has_default")}
        for name, field in self.fields.items():
            model_field = model_fields.get(name)
            if model_field is not None and model_field.has_default() and field.required:
                field.required = False
                self.model_defaults[name] = model_field.get_default()

    def clean(self):
        cleaned_data = super().clean()
        for name, default in self.model_defaults.items():
            if name in cleaned_data and cleaned_data[name] in (None, ""):
                cleaned_data[name] = default
        return cleaned_data


class HouseForm(ModelDefaultsMixin, forms.ModelForm):
    class Meta:
        model = House
        fields = (
            "descriptor", "address1", "unit", "suburb", "state", "postcode",
            "country", "status", "go_live_date", "bedroom_count", "notes",
        )

    def clean_postcode(self):
        postcode = self.cleaned_data["postcode"].strip()
        if not (postcode.isdigit() and len(postcode) == 4):
            raise ValidationError("Postcode must be 4 digits.")
        return postcode


class ResidentForm(ModelDefaultsMixin, forms.ModelForm):
    class Meta:
        model = Resident
        fields = (
            "house", "room_label", "move_in_date", "move_out_date", "first_name",
            "last_name", "date_of_birth", "gender", "funding_management_type", "plan_manager",
            "phone", "email", "ndis_id", "notes", "status",
        )

    def __init__(self, *args, organization=None, **kwargs):
        super().__init__(*args, **kwargs)
        # Only houses and plan managers of the same organization can be assigned
        self.fields["house"].queryset = House.objects.filter(organization=organization)
        self.fields["plan_manager"].queryset = PlanManager.objects.filter(organization=organization)

    def clean_ndis_id(self):
        ndis_id = "".join(self.cleaned_data.get("ndis_id", "").split())
        if ndis_id and not (ndis_id.isdigit() and len(ndis_id) == 9):
            raise ValidationError("NDIS number must be 9 digits.")
        return ndis_id

    def clean(self):
        cleaned_data = super().clean()
        move_in_date = cleaned_data.get("move_in_date")
        move_out_date = cleaned_data.get("move_out_date")
        if move_in_date and move_out_date and move_out_date < move_in_date:
            self.add_error("move_out_date", "Move-out date cannot be before the move-in date.")
        return cleaned_data


class PlanManagerForm(forms.ModelForm):
    class Meta:
        model = PlanManager
        fields = ("name", "email", "phone", "billing_email", "notes")


class ContactForm(forms.ModelForm):
    class Meta:
        model = Contact
        fields = ("name", "role", "phone", "email", "description", "note")


class HousePlacementForm(forms.Form):
    """Move a resident into or out of a house."""

    resident_id = forms.UUIDField()
    room_label = forms.CharField(max_length=50, required=False)
    move_in_date = forms.DateField(required=False)


class FundingContractForm(ModelDefaultsMixin, forms.ModelForm):
    """
    Create and edit funding contracts. Status and balance are not editable
    here; they change through the lifecycle operations and drawdowns.
    """

    class Meta:
        model = FundingContract
        fields = (
            "resident", "contract_type", "original_amount", "start_date",
            "end_date", "description", "support_item_code",
            "daily_support_item_cost", "automated_drawdown_frequency",
            "first_run_date",
        )

    def __init__(self, *args, organization=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["resident"].queryset = Resident.objects.filter(organization=organization)

    def clean(self):
        cleaned_data = super().clean()
        start_date = cleaned_data.get("start_date")
        end_date = cleaned_data.get("end_date")
        if start_date and end_date and end_date < start_date:
            self.add_error("end_date", "End date must be after start date.")

        first_run_date = cleaned_data.get("first_run_date")
        if first_run_date and start_date and first_run_date < start_date:
            self.add_error("first_run_date", "First run date cannot be before the contract start date.")

        instance = self.instance
        if (
            instance.pk
            and instance.status != FundingContract.Status.DRAFT
            and "original_amount" in self.changed_data
        ):
            self.add_error("original_amount", "The amount can only be changed while the contract is a draft.")
        return cleaned_data

    def save(self, commit=True):
        contract = super().save(commit=False)
        if contract.status == FundingContract.Status.DRAFT:
            contract.current_balance = contract.original_amount
        if commit:
            contract.save()
        return contract


class ContractAutomationForm(forms.Form):
    """Enable or disable automated drawdown on one contract."""

    enabled = forms.BooleanField(required=False)
    frequency = forms.ChoiceField(choices=FundingContract.Frequency.choices, required=False)
    first_run_date = forms.DateField(required=False)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get("enabled") and not cleaned_data.get("frequency"):
            self.add_error("frequency", "A drawdown frequency is required to enable automation.")
        return cleaned_data


class CalculateRatesForm(forms.Form):
    amount = forms.DecimalField(max_digits=10, decimal_places=2)
    start_date = forms.DateField()
    end_date = forms.DateField(required=False)
