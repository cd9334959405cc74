"""
SDA Back Office - Core Views
Houses, residents and funding contracts: CRUD, moving residents between
houses, occupancy, contract lifecycle, rate calculator and the service
agreement PDF.
"""
import logging

from django.db.models import Q
from django.forms.models import model_to_dict
from django.http import Http404
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from config.api import (
    ApiError, api_login_required, form_errors, handles_api_errors, json_error, json_ok, money, paginate,
    parse_json_body, parse_uuid,
)
from config.authorization import get_object_for_user, get_organization, require_admin, require_approver

from .audit import log_action
from .contract_pdf import generate_contract_document
from .contract_rates import calculate_contract_rates
from .forms import CalculateRatesForm, FundingContractForm, HouseForm, HousePlacementForm, ResidentForm
from .funding import (
    activate_contract, balance_summary, change_status, renew_contract, resident_billing_status,
)
from .models import AuditLog, FundingContract, House, Resident
from .occupancy import current_occupancy, houses_occupancy, occupancy_history

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def house_json(house):
    return {
        "id": str(house.pk),
        "descriptor": house.descriptor,
        "display_name": house.display_name,
        "address1": house.address1,
        "unit": house.unit,
        "suburb": house.suburb,
        "state": house.state,
        "postcode": house.postcode,
        "country": house.country,
        "full_address": house.full_address,
        "status": house.status,
        "go_live_date": house.go_live_date,
        "bedroom_count": house.bedroom_count,
        "notes": house.notes,
        "created_at": house.created_at,
    }


def resident_json(resident):
    return {
        "id": str(resident.pk),
        "house_id": str(resident.house_id) if resident.house_id else None,
        "house_name": resident.house.display_name if resident.house else None,
        "room_label": resident.room_label,
        "move_in_date": resident.move_in_date,
        "move_out_date": resident.move_out_date,
        "first_name": resident.first_name,
        "last_name": resident.last_name,
        "full_name": resident.full_name,
        "date_of_birth": resident.date_of_birth,
        "gender": resident.gender,
        "phone": resident.phone,
        "email": resident.email,
        "ndis_id": resident.ndis_id,
        "funding_management_type": resident.funding_management_type,
        "plan_manager_id": str(resident.plan_manager_id) if resident.plan_manager_id else None,
        "plan_manager_name": resident.plan_manager.name if resident.plan_manager else None,
        "notes": resident.notes,
        "status": resident.status,
        "created_at": resident.created_at,
    }


def contract_json(contract):
    return {
        "id": str(contract.pk),
        "resident_id": str(contract.resident_id),
        "resident_name": contract.resident.full_name,
        "contract_type": contract.contract_type,
        "status": contract.status,
        "original_amount": money(contract.original_amount),
        "current_balance": money(contract.current_balance),
        "drawn_down": money(contract.drawn_down),
        "start_date": contract.start_date,
        "end_date": contract.end_date,
        "duration_days": contract.duration_days,
        "description": contract.description,
        "support_item_code": contract.support_item_code,
        "daily_support_item_cost": money(contract.daily_support_item_cost),
        "auto_billing_enabled": contract.auto_billing_enabled,
        "automated_drawdown_frequency": contract.automated_drawdown_frequency,
        "first_run_date": contract.first_run_date,
        "next_run_date": contract.next_run_date,
        "last_drawdown_date": contract.last_drawdown_date,
        "parent_contract_id": str(contract.parent_contract_id) if contract.parent_contract_id else None,
        "is_expiring_soon": contract.is_expiring_soon(),
        "created_at": contract.created_at,
    }


def _summary_json(summary):
    return {key: money(value) if key.startswith("total") else value for key, value in summary.items()}


def _plan_limit_error(org, kind):
    limit = org.check_limit(kind)
    if limit["allowed"]:
        return None
    return json_error(
        f"Your plan allows {limit['max']} {kind}. Upgrade to add more.",
        status=403,
        limit=limit,
    )


def _edit_data(instance, form_class, request):
    """Current field values overlaid with the JSON body, for partial updates."""
    return {**model_to_dict(instance, fields=list(form_class.Meta.fields)), **parse_json_body(request)}


# ---------------------------------------------------------------------------
# Houses
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def house_list(request):
    org = get_organization(request)
    if request.method == "GET":
        houses = org.houses.all()
        if request.GET.get("status"):
            houses = houses.filter(status=request.GET["status"])
        query = request.GET.get("search", "").strip()
        if query:
            houses = houses.filter(
                Q(descriptor__icontains=query) | Q(address1__icontains=query) | Q(suburb__icontains=query)
            )
        page, meta = paginate(request, houses)
        return json_ok(houses=[house_json(h) for h in page], pagination=meta)

    limit_error = _plan_limit_error(org, "houses")
    if limit_error:
        return limit_error
    form = HouseForm(parse_json_body(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    house = form.save(commit=False)
    house.organization = org
    house.created_by = request.user
    house.save()
    log_action(request, AuditLog.Action.CREATE, f"House {house.display_name} created", house)
    return json_ok(status=201, house=house_json(house))


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH", "DELETE"])
@handles_api_errors
def house_detail(request, pk):
    house = get_object_for_user(request, House, pk=pk)
    if request.method == "GET":
        residents = house.residents.select_related("house", "plan_manager")
        return json_ok(
            house=house_json(house),
            residents=[resident_json(r) for r in residents],
            occupancy_rate=house.occupancy_rate,
            occupancy=current_occupancy(house),
        )

    if request.method == "DELETE":
        require_admin(request)
        name = house.display_name
        house.delete()
        log_action(request, AuditLog.Action.DELETE, f"House {name} deleted")
        return json_ok()

    form = HouseForm(_edit_data(house, HouseForm, request), instance=house)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    log_action(request, AuditLog.Action.UPDATE, f"House {house.display_name} updated", house,
               {"changed": form.changed_data})
    return json_ok(house=house_json(house))


def _placement(request):
    """Validated placement body and the resident it names."""
    form = HousePlacementForm(parse_json_body(request))
    if not form.is_valid():
        raise ApiError("Validation failed", errors=form_errors(form))
    resident = get_object_for_user(request, Resident, pk=form.cleaned_data["resident_id"])
    return form.cleaned_data, resident


@api_login_required
@require_POST
@handles_api_errors
def house_assign(request, pk):
    house = get_object_for_user(request, House, pk=pk)
    data, resident = _placement(request)
    if resident.house_id:
        return json_error("Resident is already assigned to a house. Please unassign them first.")
    resident.house = house
    resident.room_label = data["room_label"]
    resident.move_in_date = data["move_in_date"]
    resident.move_out_date = None
    resident.save(update_fields=["house", "room_label", "move_in_date", "move_out_date", "updated_at"])
    log_action(request, AuditLog.Action.UPDATE,
               f"Resident {resident.full_name} assigned to house {house.display_name}", resident,
               {"house_id": str(house.pk), "room_label": resident.room_label})
    return json_ok(
        message=f"Resident {resident.full_name} assigned to house successfully",
        resident=resident_json(resident),
    )


@api_login_required
@require_http_methods(["POST", "DELETE"])
@handles_api_errors
def house_unassign(request, pk):
    house = get_object_for_user(request, House, pk=pk)
    _, resident = _placement(request)
    if resident.house_id != house.pk:
        return json_error("Resident is not assigned to this house")
    resident.house = None
    resident.room_label = ""
    resident.save(update_fields=["house", "room_label", "updated_at"])
    log_action(request, AuditLog.Action.UPDATE,
               f"Resident {resident.full_name} removed from house {house.display_name}", resident,
               {"house_id": str(house.pk)})
    return json_ok(
        message=f"Resident {resident.full_name} removed from house successfully",
        resident=resident_json(resident),
    )


@api_login_required
@require_GET
@handles_api_errors
def house_occupancy(request, pk):
    house = get_object_for_user(request, House, pk=pk)
    return json_ok(current=current_occupancy(house), history=occupancy_history(house))


@api_login_required
@require_GET
@handles_api_errors
def house_occupancy_all(request):
    return json_ok(occupancy=houses_occupancy(get_organization(request)))


# ---------------------------------------------------------------------------
# Residents
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def resident_list(request):
    org = get_organization(request)
    if request.method == "GET":
        residents = org.residents.select_related("house", "plan_manager")
        if request.GET.get("status"):
            residents = residents.filter(status=request.GET["status"])
        if request.GET.get("house_id"):
            residents = residents.filter(house_id=parse_uuid(request.GET["house_id"], "house_id"))
        query = request.GET.get("search", "").strip()
        if query:
            residents = residents.filter(Q(first_name__icontains=query) | Q(last_name__icontains=query))
        page, meta = paginate(request, residents)
        return json_ok(residents=[resident_json(r) for r in page], pagination=meta)

    limit_error = _plan_limit_error(org, "residents")
    if limit_error:
        return limit_error
    form = ResidentForm(parse_json_body(request), organization=org)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    resident = form.save(commit=False)
    resident.organization = org
    resident.created_by = request.user
    resident.save()
    log_action(request, AuditLog.Action.CREATE, f"Resident {resident.full_name} created", resident)
    return json_ok(status=201, resident=resident_json(resident))


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH", "DELETE"])
@handles_api_errors
def resident_detail(request, pk):
    resident = get_object_for_user(request, Resident.objects.select_related("house", "plan_manager"), pk=pk)
    if request.method == "GET":
        return json_ok(resident=resident_json(resident))

    if request.method == "DELETE":
        require_admin(request)
        name = resident.full_name
        resident.delete()
        log_action(request, AuditLog.Action.DELETE, f"Resident {name} deleted")
        return json_ok()

    old_status = resident.status
    form = ResidentForm(
        _edit_data(resident, ResidentForm, request), instance=resident, organization=request.organization,
    )
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    if resident.status != old_status:
        log_action(request, AuditLog.Action.STATUS_CHANGE,
                   f"Resident status changed from {old_status} to {resident.status}", resident)
    else:
        log_action(request, AuditLog.Action.UPDATE, f"Resident {resident.full_name} updated", resident,
                   {"changed": form.changed_data})
    return json_ok(resident=resident_json(resident))


@api_login_required
@require_GET
@handles_api_errors
def resident_funding(request, pk):
    resident = get_object_for_user(request, Resident, pk=pk)
    contracts = list(resident.funding_contracts.select_related("resident"))
    return json_ok(
        contracts=[contract_json(c) for c in contracts],
        summary=_summary_json(balance_summary(contracts)),
    )


@api_login_required
@require_GET
@handles_api_errors
def resident_billing(request, pk):
    resident = get_object_for_user(request, Resident, pk=pk)
    return json_ok(billing_status=resident_billing_status(resident))


# ---------------------------------------------------------------------------
# Funding contracts
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def contract_list(request):
    org = get_organization(request)
    if request.method == "GET":
        contracts = org.funding_contracts.select_related("resident")
        if request.GET.get("status"):
            contracts = contracts.filter(status=request.GET["status"])
        if request.GET.get("resident_id"):
            contracts = contracts.filter(resident_id=parse_uuid(request.GET["resident_id"], "resident_id"))
        if request.GET.get("automated") in ("true", "1"):
            contracts = contracts.filter(auto_billing_enabled=True)
        page, meta = paginate(request, contracts)
        return json_ok(contracts=[contract_json(c) for c in page], pagination=meta)

    form = FundingContractForm(parse_json_body(request), organization=org)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    contract = form.save(commit=False)
    contract.organization = org
    contract.created_by = request.user
    contract.status = FundingContract.Status.DRAFT
    contract.current_balance = contract.original_amount
    contract.save()
    log_action(request, AuditLog.Action.CREATE,
               f"Funding contract created for {contract.resident.full_name} (${contract.original_amount})",
               contract)
    return json_ok(status=201, contract=contract_json(contract))


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH", "DELETE"])
@handles_api_errors
def contract_detail(request, pk):
    contract = get_object_for_user(request, FundingContract.objects.select_related("resident"), pk=pk)
    if request.method == "GET":
        return json_ok(contract=contract_json(contract))

    if request.method == "DELETE":
        require_admin(request)
        if contract.status != FundingContract.Status.DRAFT:
            return json_error("Only draft contracts can be deleted")
        if contract.transactions.exists():
            return json_error("Contracts with transactions cannot be deleted")
        description = f"Draft funding contract for {contract.resident.full_name} deleted"
        contract.delete()
        log_action(request, AuditLog.Action.DELETE, description)
        return json_ok()

    form = FundingContractForm(
        _edit_data(contract, FundingContractForm, request), instance=contract, organization=request.organization,
    )
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    log_action(request, AuditLog.Action.UPDATE, "Funding contract updated", contract,
               {"changed": form.changed_data})
    return json_ok(contract=contract_json(contract))


@api_login_required
@require_POST
@handles_api_errors
def contract_status(request, pk):
    require_approver(request)
    contract = get_object_for_user(request, FundingContract.objects.select_related("resident"), pk=pk)
    new_status = parse_json_body(request).get("status", "")
    change_status(contract, new_status, request=request)
    return json_ok(contract=contract_json(contract))


@api_login_required
@require_POST
@handles_api_errors
def contract_activate(request, pk):
    require_approver(request)
    contract = get_object_for_user(request, FundingContract.objects.select_related("resident"), pk=pk)
    activate_contract(contract, request=request)
    return json_ok(contract=contract_json(contract))


@api_login_required
@require_POST
@handles_api_errors
def contract_renew(request, pk):
    require_approver(request)
    contract = get_object_for_user(request, FundingContract.objects.select_related("resident"), pk=pk)
    renewal = renew_contract(contract, request=request)
    return json_ok(status=201, contract=contract_json(renewal), previous_contract=contract_json(contract))


@api_login_required
@require_POST
@handles_api_errors
def calculate_rates(request):
    form = CalculateRatesForm(parse_json_body(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    rates = calculate_contract_rates(
        form.cleaned_data["amount"], form.cleaned_data["start_date"], form.cleaned_data["end_date"],
    )
    return json_ok(rates={**rates, **{k: money(v) for k, v in rates.items() if k.endswith("_rate")}})


@api_login_required
@require_POST
@handles_api_errors
def contract_pdf(request, pk):
    try:
        contract = get_object_for_user(
            request, FundingContract.objects.select_related("resident__house", "organization"), pk=pk,
        )
    except Http404:
        return json_error("Contract not found", status=404, code="NOT_FOUND")
    document = generate_contract_document(request, contract)
    return json_ok(
        document_id=str(document.pk),
        storage_path=document.storage_path,
        signed_url=document.signed_url_last,
        expires_at=document.signed_url_expires_at,
        render_ms=document.render_ms,
        file_size_bytes=document.file_size_bytes,
    )
