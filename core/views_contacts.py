"""
SDA Back Office - Plan Manager and Contact Views
Plan managers are shared by residents of the organization. Contacts are
linked to residents and may be shared; a contact whose last link is
removed is deleted with it.
"""
import logging

from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_http_methods

from config.api import (
    api_login_required, form_errors, handles_api_errors, json_error, json_ok, paginate, parse_json_body,
    parse_uuid,
)
from config.authorization import get_object_for_user, get_organization, require_admin

from .audit import log_action
from .forms import ContactForm, PlanManagerForm
from .models import AuditLog, Contact, PlanManager, Resident, ResidentContact
from .views import _edit_data

logger = logging.getLogger(__name__)

CONTACT_SEARCH_MIN_LENGTH = 2
CONTACT_SEARCH_LIMIT = 10


def plan_manager_json(plan_manager, resident_count=None):
    data = {
        "id": str(plan_manager.pk),
        "name": plan_manager.name,
        "email": plan_manager.email,
        "phone": plan_manager.phone,
        "billing_email": plan_manager.billing_email,
        "notes": plan_manager.notes,
        "created_at": plan_manager.created_at,
    }
    if resident_count is not None:
        data["resident_count"] = resident_count
    return data


def contact_json(contact, link=None):
    data = {
        "id": str(contact.pk),
        "name": contact.name,
        "role": contact.role,
        "phone": contact.phone,
        "email": contact.email,
        "description": contact.description,
        "note": contact.note,
        "resident_count": getattr(contact, "resident_count", None),
    }
    if link is not None:
        data["link_id"] = str(link.pk)
    return data


def _contacts_with_counts(queryset):
    return queryset.annotate(resident_count=Count("resident_links", distinct=True))


# ---------------------------------------------------------------------------
# Plan managers
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def plan_manager_list(request):
    org = get_organization(request)
    if request.method == "GET":
        plan_managers = org.plan_managers.annotate(resident_count=Count("residents"))
        query = request.GET.get("search", "").strip()
        if query:
            plan_managers = plan_managers.filter(Q(name__icontains=query) | Q(email__icontains=query))
        page, meta = paginate(request, plan_managers)
        return json_ok(
            plan_managers=[plan_manager_json(p, p.resident_count) for p in page],
            pagination=meta,
        )

    form = PlanManagerForm(parse_json_body(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    plan_manager = form.save(commit=False)
    plan_manager.organization = org
    plan_manager.save()
    log_action(request, AuditLog.Action.CREATE, f"Plan manager {plan_manager.name} created", plan_manager)
    return json_ok(status=201, plan_manager=plan_manager_json(plan_manager, 0))


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH", "DELETE"])
@handles_api_errors
def plan_manager_detail(request, pk):
    plan_manager = get_object_for_user(request, PlanManager, pk=pk)
    if request.method == "GET":
        residents = plan_manager.residents.all()
        return json_ok(
            plan_manager=plan_manager_json(plan_manager, len(residents)),
            residents=[{"id": str(r.pk), "full_name": r.full_name, "status": r.status} for r in residents],
        )

    if request.method == "DELETE":
        require_admin(request)
        name = plan_manager.name
        # Residents keep their record; their plan manager is cleared
        unlinked = plan_manager.residents.count()
        plan_manager.delete()
        log_action(request, AuditLog.Action.DELETE, f"Plan manager {name} deleted", None,
                   {"unlinked_residents": unlinked})
        return json_ok(unlinked_residents=unlinked)

    form = PlanManagerForm(_edit_data(plan_manager, PlanManagerForm, request), instance=plan_manager)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    log_action(request, AuditLog.Action.UPDATE, f"Plan manager {plan_manager.name} updated", plan_manager,
               {"changed": form.changed_data})
    return json_ok(plan_manager=plan_manager_json(plan_manager, plan_manager.residents.count()))


# ---------------------------------------------------------------------------
# Resident contacts
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "POST", "DELETE"])
@handles_api_errors
def resident_contacts(request, pk):
    resident = get_object_for_user(request, Resident, pk=pk)

    if request.method == "GET":
        links = (
            resident.contact_links.select_related("contact")
            .annotate(resident_count=Count("contact__resident_links", distinct=True))
        )
        contacts = []
        for link in links:
            link.contact.resident_count = link.resident_count
            contacts.append(contact_json(link.contact, link))
        return json_ok(contacts=contacts)

    if request.method == "DELETE":
        link_id = parse_uuid(request.GET.get("link_id"), "link_id")
        link = get_object_or_404(resident.contact_links.select_related("contact"), pk=link_id)
        contact = link.contact
        link.delete()
        deleted_contact = not contact.resident_links.exists()
        if deleted_contact:
            contact.delete()
        log_action(request, AuditLog.Action.DELETE,
                   f"Contact {contact.name} unlinked from {resident.full_name}", resident,
                   {"contact_id": str(link.contact_id), "deleted_contact": deleted_contact})
        return json_ok(deleted_contact=deleted_contact)

    data = parse_json_body(request)
    if data.get("contact_id"):
        contact = get_object_for_user(request, Contact, pk=parse_uuid(data["contact_id"], "contact_id"))
        if resident.contact_links.filter(contact=contact).exists():
            return json_error("Contact is already linked to this resident")
        description = f"Contact {contact.name} linked to {resident.full_name}"
    else:
        form = ContactForm(data)
        if not form.is_valid():
            return json_error("Validation failed", errors=form_errors(form))
        contact = form.save(commit=False)
        contact.organization = resident.organization
        contact.save()
        description = f"Contact {contact.name} created for {resident.full_name}"

    link = ResidentContact.objects.create(resident=resident, contact=contact)
    log_action(request, AuditLog.Action.CREATE, description, resident, {"contact_id": str(contact.pk)})
    contact = _contacts_with_counts(Contact.objects.filter(pk=contact.pk)).get()
    return json_ok(status=201, contact=contact_json(contact, link))


@api_login_required
@require_http_methods(["GET", "PUT", "PATCH"])
@handles_api_errors
def contact_detail(request, pk):
    contact = get_object_for_user(request, _contacts_with_counts(Contact.objects.all()), pk=pk)
    if request.method == "GET":
        return json_ok(contact=contact_json(contact))

    form = ContactForm(_edit_data(contact, ContactForm, request), instance=contact)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    log_action(request, AuditLog.Action.UPDATE, f"Contact {contact.name} updated", contact,
               {"changed": form.changed_data})
    return json_ok(contact=contact_json(contact))


@api_login_required
@require_GET
@handles_api_errors
def contact_search(request):
    """Contacts matching ?q= by name, email or phone, for linking an existing contact."""
    query = request.GET.get("q", "").strip()
    if len(query) < CONTACT_SEARCH_MIN_LENGTH:
        return json_ok(contacts=[])
    contacts = _contacts_with_counts(get_organization(request).contacts.filter(
        Q(name__icontains=query) | Q(email__icontains=query) | Q(phone__icontains=query)
    ))[:CONTACT_SEARCH_LIMIT]
    return json_ok(contacts=[contact_json(c) for c in contacts])
