"""SDA Back Office - Billing Forms"""
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django import forms
from django.core.exceptions import ValidationError

from core.contract_rates import to_cents
from core.forms import ModelDefaultsMixin
from core.models import FundingContract, Resident

from .models import AutomationSettings, Transaction


class TransactionForm(ModelDefaultsMixin, forms.ModelForm):
    """
    Manual transaction. The amount defaults to quantity x unit price when
    it is not given explicitly.
    """

    amount = forms.DecimalField(max_digits=10, decimal_places=2, required=False)

    class Meta:
        model = Transaction
        fields = (
            "resident", "contract", "occurred_at", "service_code", "description",
            "quantity", "unit_price", "amount", "note", "is_drawdown_transaction",
        )

    def __init__(self, *args, organization=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["resident"].queryset = Resident.objects.filter(organization=organization)
        self.fields["contract"].queryset = FundingContract.objects.filter(organization=organization)

    def clean_quantity(self):
        quantity = self.cleaned_data.get("quantity")
        if quantity is not None and quantity <= 0:
            raise ValidationError("Quantity must be positive.")
        return quantity

    def clean_unit_price(self):
        unit_price = self.cleaned_data.get("unit_price")
        if unit_price is not None and unit_price < 0:
            raise ValidationError("Unit price must be non-negative.")
        return unit_price

    def clean(self):
        cleaned_data = super().clean()
        resident = cleaned_data.get("resident")
        contract = cleaned_data.get("contract")
        if resident and contract and contract.resident_id != resident.pk:
            self.add_error("contract", "The contract does not belong to the selected resident.")

        instance = self.instance
        if instance.pk and instance.balance_applied and "contract" in self.changed_data:
            self.add_error("contract", "The contract cannot be changed once the amount has been applied.")

        amount = cleaned_data.get("amount")
        quantity = cleaned_data.get("quantity")
        unit_price = cleaned_data.get("unit_price")
        if amount is None and quantity is not None and unit_price is not None:
            amount = to_cents(quantity * unit_price)
        if amount is not None:
            if amount <= Decimal("0"):
                self.add_error("amount", "Amount must be greater than 0.")
            cleaned_data["amount"] = amount
        return cleaned_data


class AutomationSettingsForm(forms.ModelForm):
    class Meta:
        model = AutomationSettings
        fields = (
            "enabled", "run_time", "timezone", "admin_emails",
            "notification_settings", "error_handling",
        )

    def clean_timezone(self):
        name = self.cleaned_data["timezone"]
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone: {name}")
        return name

    def clean_admin_emails(self):
        emails = self.cleaned_data.get("admin_emails") or []
        if not isinstance(emails, list):
            raise ValidationError("Admin emails must be a list.")
        validator = forms.EmailField()
        return [validator.clean(email) for email in emails]

    def clean_notification_settings(self):
        value = self.cleaned_data.get("notification_settings") or {}
        if not isinstance(value, dict):
            raise ValidationError("Notification settings must be an object.")
        frequency = value.get("frequency", AutomationSettings.NotificationFrequency.END_OF_RUN)
        if frequency not in AutomationSettings.NotificationFrequency.values:
            raise ValidationError(f"Unknown notification frequency: {frequency}")
        return {"frequency": frequency, "includeLogs": bool(value.get("includeLogs", False))}

    def clean_error_handling(self):
        value = self.cleaned_data.get("error_handling") or {}
        if not isinstance(value, dict):
            raise ValidationError("Error handling must be an object.")
        return {"continueOnError": bool(value.get("continueOnError", True))}
