"""
SDA Back Office - Billing Views
Manual transactions, contract automation, automation settings and logs,
the manual billing run, the scheduled cron trigger and resident claim summaries.
"""
import logging

from django.db import transaction as db_transaction
from django.forms.models import model_to_dict
from django.http import HttpResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST
from django_ratelimit.decorators import ratelimit

from config.api import (
    ApiError, api_login_required, form_errors, handles_api_errors, json_error, json_ok, money, paginate,
    parse_json_body, parse_uuid_list,
)
from config.authorization import get_object_for_user, get_organization, require_admin, require_approver
from config.webhook_auth import CronAuthError, authenticate_cron
from core.audit import log_action
from core.contract_rates import (
    ContractRateError, calculate_contract_rates, disable_contract_automation, enable_contract_automation,
)
from core.forms import ContractAutomationForm
from core.models import AuditLog, FundingContract, Resident

from .catchup import CatchUpRefused, generate_catchup_transactions, validate_catchup_generation
from .eligibility import eligibility_report
from .forms import AutomationSettingsForm, TransactionForm
from .models import AutomationSettings, Transaction
from .preview import preview_upcoming
from .runner import organization_today, run_automation, run_for_organization
from .summary import SUMMARY_PERIODS, resident_claim_summary
from .transactions import (
    bulk_action, create_transaction, delete_transaction, export_csv, export_xlsx,
    filter_transactions, post_transaction, transaction_json, update_transaction, void_transaction,
)

logger = logging.getLogger("billing")

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _flag(value, default=False):
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _transactions_for(request):
    return (
        Transaction.objects.filter(organization=get_organization(request))
        .select_related("resident", "resident__house", "contract")
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def transaction_list(request):
    if request.method == "GET":
        transactions = filter_transactions(_transactions_for(request), request.GET).order_by("-occurred_at")
        page, meta = paginate(request, transactions)
        return json_ok(transactions=[transaction_json(t) for t in page], pagination=meta)

    form = TransactionForm(parse_json_body(request), organization=get_organization(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    txn = create_transaction(request, form)
    return json_ok(status=201, transaction=transaction_json(txn))


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH", "DELETE"])
@handles_api_errors
def transaction_detail(request, pk):
    txn = get_object_for_user(request, _transactions_for(request), pk=pk)
    if request.method == "GET":
        return json_ok(transaction=transaction_json(txn))

    if request.method == "DELETE":
        require_approver(request)
        delete_transaction(request, txn)
        return json_ok()

    if txn.status != Transaction.Status.DRAFT:
        return json_error("Only draft transactions can be edited")
    body = parse_json_body(request)
    data = {**model_to_dict(txn, fields=list(TransactionForm.Meta.fields)), **body}
    if "amount" not in body and ("quantity" in body or "unit_price" in body):
        # Recalculated from quantity x unit price
        data["amount"] = None
    form = TransactionForm(data, instance=txn, organization=request.organization)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    txn = update_transaction(request, txn, form)
    return json_ok(transaction=transaction_json(txn))


@api_login_required
@require_POST
@handles_api_errors
def transaction_post(request, pk):
    require_approver(request)
    txn = get_object_for_user(request, _transactions_for(request), pk=pk)
    post_transaction(request, txn)
    return json_ok(transaction=transaction_json(txn))


@api_login_required
@require_POST
@handles_api_errors
def transaction_void(request, pk):
    require_approver(request)
    txn = get_object_for_user(request, _transactions_for(request), pk=pk)
    void_transaction(request, txn, parse_json_body(request).get("reason", ""))
    return json_ok(transaction=transaction_json(txn))


@api_login_required
@require_POST
@handles_api_errors
def transaction_bulk(request):
    require_approver(request)
    data = parse_json_body(request)
    ids = data.get("ids") or []
    if not isinstance(ids, list):
        raise ApiError("ids must be a list")
    ids = parse_uuid_list(ids, "ids")
    result = bulk_action(request, _transactions_for(request), data.get("action", ""), ids, data.get("reason", ""))
    return json_ok(**result)


@api_login_required
@require_GET
@handles_api_errors
def transaction_export(request):
    transactions = filter_transactions(_transactions_for(request), request.GET).order_by("occurred_at")
    export_format = request.GET.get("format", "csv").lower()
    stamp = timezone.localtime().strftime("%Y%m%d-%H%M")
    if export_format == "xlsx":
        response = HttpResponse(export_xlsx(transactions), content_type=XLSX_CONTENT_TYPE)
        response["Content-Disposition"] = f'attachment; filename="transactions-{stamp}.xlsx"'
    elif export_format == "csv":
        response = HttpResponse(export_csv(transactions), content_type="text/csv; charset=utf-8")
        response["Content-Disposition"] = f'attachment; filename="transactions-{stamp}.csv"'
    else:
        return json_error(f"Unsupported export format: {export_format}")
    return response


# ---------------------------------------------------------------------------
# Contract automation
# ---------------------------------------------------------------------------

def _automation_json(contract):
    try:
        rates = calculate_contract_rates(contract.original_amount, contract.start_date, contract.end_date)
        rates = {k: money(v) if k.endswith("_rate") else v for k, v in rates.items()}
    except ContractRateError as e:
        rates = {"error": e.message}
    return {
        "contract_id": str(contract.pk),
        "enabled": contract.auto_billing_enabled,
        "frequency": contract.automated_drawdown_frequency,
        "daily_support_item_cost": money(contract.daily_support_item_cost),
        "first_run_date": contract.first_run_date,
        "next_run_date": contract.next_run_date,
        "last_drawdown_date": contract.last_drawdown_date,
        "rates": rates,
    }


@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def contract_automation(request, pk):
    """
    GET: automation state, calculated rates and catch-up check.
    POST: enable or disable automation; ``generate_catch_up`` also creates
    drafts for billing dates already missed.
    """
    contract = get_object_for_user(request, FundingContract.objects.select_related("resident"), pk=pk)
    if request.method == "GET":
        catch_up = (
            validate_catchup_generation(contract, today=organization_today(contract.organization))
            if contract.auto_billing_enabled else None
        )
        return json_ok(automation=_automation_json(contract), catch_up=catch_up)

    require_approver(request)
    data = parse_json_body(request)
    form = ContractAutomationForm(data)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))

    enabled = form.cleaned_data["enabled"]
    wants_catch_up = (
        enabled and _flag(data.get("generate_catch_up")) and contract.status == FundingContract.Status.ACTIVE
    )
    catch_up = None
    try:
        # A refused catch-up leaves the contract as it was
        with db_transaction.atomic():
            if enabled:
                enable_contract_automation(
                    contract, form.cleaned_data["frequency"], form.cleaned_data["first_run_date"],
                )
                description = f"Automated {contract.automated_drawdown_frequency} drawdown enabled"
            else:
                disable_contract_automation(contract)
                description = "Automated drawdown disabled"
            contract.save(update_fields=[
                "auto_billing_enabled", "automated_drawdown_frequency", "daily_support_item_cost",
                "first_run_date", "next_run_date", "updated_at",
            ])
            log_action(request, AuditLog.Action.UPDATE, description, contract, {
                "frequency": contract.automated_drawdown_frequency,
                "daily_rate": contract.daily_support_item_cost,
                "next_run_date": contract.next_run_date,
            })
            if wants_catch_up:
                catch_up = generate_catchup_transactions(
                    contract, today=organization_today(contract.organization), user=request.user
                )
                if not catch_up["success"]:
                    raise CatchUpRefused(catch_up)
    except CatchUpRefused as e:
        contract.refresh_from_db()
        return json_error(e.result["error"], automation=_automation_json(contract), catch_up=e.result)
    return json_ok(automation=_automation_json(contract), catch_up=catch_up)


# ---------------------------------------------------------------------------
# Automation settings, previews and logs
# ---------------------------------------------------------------------------

def _settings_for(request):
    automation_settings, _ = AutomationSettings.objects.get_or_create(organization=get_organization(request))
    return automation_settings


def _settings_json(automation_settings):
    return {
        "enabled": automation_settings.enabled,
        "run_time": automation_settings.run_time.strftime("%H:%M"),
        "timezone": automation_settings.timezone,
        "admin_emails": automation_settings.admin_emails,
        "notification_settings": automation_settings.notification_settings,
        "error_handling": automation_settings.error_handling,
        "updated_at": automation_settings.updated_at,
    }


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH"])
@handles_api_errors
def automation_settings_view(request):
    automation_settings = _settings_for(request)
    if request.method == "GET":
        return json_ok(settings=_settings_json(automation_settings))

    require_admin(request)
    fields = list(AutomationSettingsForm.Meta.fields)
    data = {**model_to_dict(automation_settings, fields=fields), **parse_json_body(request)}
    form = AutomationSettingsForm(data, instance=automation_settings)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    log_action(request, AuditLog.Action.SETTINGS_CHANGE, "Automation settings updated", automation_settings,
               {"changed": form.changed_data})
    return json_ok(settings=_settings_json(automation_settings))


@api_login_required
@require_GET
@handles_api_errors
def eligible_contracts(request):
    org = get_organization(request)
    catch_up = _flag(request.GET.get("catch_up"), default=True)
    report = eligibility_report(org, today=organization_today(org), catch_up=catch_up)
    contracts = [
        {
            "contract_id": str(item["contract"].pk),
            "resident_id": str(item["contract"].resident_id),
            "resident_name": item["contract"].resident.full_name,
            "frequency": item["contract"].automated_drawdown_frequency,
            "current_balance": money(item["contract"].current_balance),
            "daily_rate": money(item["contract"].daily_support_item_cost),
            "next_run_date": item["contract"].next_run_date,
            "is_eligible": item["is_eligible"],
            "checks": item["checks"],
            "reasons": item["reasons"],
        }
        for item in report
    ]
    return json_ok(
        contracts=contracts,
        summary={
            "total": len(contracts),
            "eligible": sum(1 for c in contracts if c["is_eligible"]),
            "ineligible": sum(1 for c in contracts if not c["is_eligible"]),
        },
    )


@api_login_required
@require_GET
@handles_api_errors
def preview_three_days(request):
    organization = get_organization(request)
    preview = preview_upcoming(organization, today=organization_today(organization))
    return json_ok(**preview)


@api_login_required
@require_GET
@handles_api_errors
def resident_claim_summary_view(request, pk):
    """Monthly claim totals; ?months=3, 6 or 12 limits the range, 0 (default) is all time."""
    resident = get_object_for_user(request, Resident.objects.select_related("house"), pk=pk)
    try:
        months = int(request.GET.get("months") or 0)
    except ValueError:
        months = None
    if months not in SUMMARY_PERIODS:
        raise ApiError("months must be one of 0, 3, 6 or 12")
    summary = resident_claim_summary(resident, months=months, today=organization_today(resident.organization))
    return json_ok(**summary)


@api_login_required
@require_POST
@handles_api_errors
def automation_generate(request):
    """Run billing now for the user's organization."""
    require_approver(request)
    data = parse_json_body(request)
    automation_settings = _settings_for(request)
    result = run_for_organization(
        automation_settings,
        catch_up=_flag(data.get("catch_up"), default=True),
        dry_run=_flag(data.get("dry_run")),
    )
    if not result.get("dry_run"):
        log_action(request, AuditLog.Action.GENERATE, "Billing run started manually", None,
                   {"automation_log_id": result["automation_log_id"], "status": result["status"]})
    return json_ok(result=result)


@api_login_required
@require_GET
@handles_api_errors
def automation_logs(request):
    logs = get_organization(request).automation_logs.all()
    if request.GET.get("status"):
        logs = logs.filter(status=request.GET["status"])
    page, meta = paginate(request, logs, per_page=20)
    return json_ok(
        logs=[
            {
                "id": str(log.pk),
                "run_date": log.run_date,
                "status": log.status,
                "contracts_processed": log.contracts_processed,
                "contracts_skipped": log.contracts_skipped,
                "contracts_failed": log.contracts_failed,
                "execution_time_ms": log.execution_time_ms,
                "errors": log.errors,
                "summary": log.summary,
            }
            for log in page
        ],
        pagination=meta,
    )


# ---------------------------------------------------------------------------
# Scheduled trigger
# ---------------------------------------------------------------------------

@csrf_exempt
@require_http_methods(["GET", "POST"])
@ratelimit(key="ip", rate="10/m", method=["GET", "POST"], block=False)
def automation_cron(request):
    """
    Daily billing run for every organization with automation enabled.
    Authenticated with the shared CRON_SECRET, not a user session.
    """
    if getattr(request, "limited", False):
        return json_error("Too many requests", status=429)
    try:
        authenticate_cron(request)
    except CronAuthError as e:
        return json_error(e.message, status=e.status)

    result = run_automation(
        organization_slug=request.GET.get("organization") or None,
        catch_up=_flag(request.GET.get("catch_up"), default=True),
        dry_run=_flag(request.GET.get("dry_run")),
    )
    logger.info(
        "Cron billing run processed %d organization(s) in %dms",
        result["processed_organizations"], result["total_execution_time_ms"],
    )
    return json_ok(**result)
