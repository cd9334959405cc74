"""
NDIS service agreement PDF.

Variables are gathered from the organization, resident, house and funding
contract, validated, rendered with reportlab, stored in the default storage
and recorded as a RenderedDocument. Callers get a signed download link.
"""
import hashlib
import json
import logging
import time
from datetime import timedelta
from decimal import Decimal
from io import BytesIO

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import validate_email
from django.db.models import Count, Sum
from django.utils import timezone
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from config.api import ApiError
from config.media_serving import create_signed_url

from .audit import log_action
from .models import AuditLog, RenderedDocument

logger = logging.getLogger(__name__)

TEMPLATE_ID = "ndis_service_agreement"
TEMPLATE_VERSION = "v1"


class ContractDocumentError(ApiError):
    """PDF failures carry a machine readable ``code`` alongside the message."""

    def __init__(self, code, message, status, **extra):
        super().__init__(message, status=status, code=code, **extra)
        self.code = code


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------

def _automation_timezone(organization):
    automation_settings = getattr(organization, "automation_settings", None)
    if automation_settings and automation_settings.timezone:
        return automation_settings.timezone
    return settings.DEFAULT_AUTOMATION_TIMEZONE


def transaction_totals(contract, now=None):
    """Transaction count and amount for the last 7 days, 30 days and 12 months."""
    now = now or timezone.now()
    totals = {}
    for key, days in (("7d", 7), ("30d", 30), ("12m", 365)):
        agg = contract.transactions.filter(occurred_at__gte=now - timedelta(days=days)).aggregate(
            count=Count("id"), amount=Sum("amount"),
        )
        totals[f"txns{key}"] = agg["count"]
        totals[f"amount{key}"] = agg["amount"] or Decimal("0")
    return totals


def _property_address(house, with_country=False):
    street = house.address1
    if house.unit:
        street = f"{street}, {house.unit}"
    address = f"{street}, {house.suburb}, {house.state} {house.postcode}"
    if with_country:
        address = f"{address}, {house.country}"
    return address


def build_contract_variables(contract, now=None):
    now = now or timezone.now()
    organization = contract.organization
    resident = contract.resident
    house = resident.house

    return {
        "provider": {
            "name": organization.name,
            "abn": organization.abn,
            "email": organization.email,
            "phone": organization.phone,
            "address": {
                "line1": organization.address_line1,
                "line2": organization.address_line2,
                "suburb": organization.suburb,
                "state": organization.state,
                "postcode": organization.postcode,
                "country": organization.country or "Australia",
            },
        },
        "participant": {
            "full_name": resident.full_name.strip(),
            "first_name": resident.first_name,
            "last_name": resident.last_name,
            "date_of_birth": resident.date_of_birth,
            "ndis_id": resident.ndis_id,
            "phone": resident.phone,
            "email": resident.email,
        },
        "property": {
            "name": (house.descriptor if house else "") or "Residential Property",
            "address": _property_address(house) if house else "Address not available",
            "full_address": _property_address(house, with_country=True) if house else "",
        },
        "agreement": {
            "contract_id": str(contract.pk),
            "type": contract.contract_type or "NDIS Funding",
            "start_date": contract.start_date,
            "end_date": contract.end_date,
            "total_amount": contract.original_amount,
            "current_balance": contract.current_balance,
            "daily_rate": contract.daily_support_item_cost or Decimal("0"),
            "frequency": contract.automated_drawdown_frequency,
            "duration_days": contract.duration_days,
        },
        "totals": transaction_totals(contract, now),
        "generated_at": now,
        "timezone": _automation_timezone(organization),
    }


def validate_contract_variables(variables):
    """Return a list of ``{"field", "message"}`` issues; empty when valid."""
    issues = []

    def require(section, field, message):
        if not str(variables[section].get(field) or "").strip():
            issues.append({"field": f"{section}.{field}", "message": message})

    require("provider", "name", "Organization name is required")
    require("participant", "full_name", "Participant name is required")
    require("participant", "first_name", "First name is required")
    require("participant", "last_name", "Last name is required")
    require("property", "name", "Property name is required")
    require("property", "address", "Property address is required")
    require("agreement", "type", "Contract type is required")
    require("agreement", "start_date", "Start date is required")

    for section in ("provider", "participant"):
        email = variables[section].get("email")
        if email:
            try:
                validate_email(email)
            except ValidationError:
                issues.append({"field": f"{section}.email", "message": "Invalid email address"})

    agreement = variables["agreement"]
    if not agreement["total_amount"] or agreement["total_amount"] <= 0:
        issues.append({"field": "agreement.total_amount", "message": "Total amount must be positive"})
    if agreement["current_balance"] is None or agreement["current_balance"] < 0:
        issues.append({"field": "agreement.current_balance", "message": "Current balance must be non-negative"})
    if not agreement["daily_rate"] or agreement["daily_rate"] <= 0:
        issues.append({"field": "agreement.daily_rate", "message": "Daily rate must be positive"})
    return issues


def variables_hash(variables):
    payload = json.dumps(variables, cls=DjangoJSONEncoder, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _fmt_date(value):
    return value.strftime("%d %b %Y") if value else ""


def _fmt_currency(value):
    return f"${Decimal(value or 0):,.2f}"


def _details_table(rows):
    table = Table([[label, value] for label, value in rows if value not in (None, "")], colWidths=[45 * mm, 125 * mm])
    table.setStyle(TableStyle([
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#495057")),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
    ]))
    return table


def _amount_table(data, col_widths):
    table = Table(data, colWidths=col_widths)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#495057")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#dee2e6")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f8f9fa")]),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return table


def render_contract_pdf(variables):
    """Render the three page service agreement and return the PDF bytes."""
    provider = variables["provider"]
    participant = variables["participant"]
    prop = variables["property"]
    agreement = variables["agreement"]
    totals = variables["totals"]
    generated = _fmt_date(timezone.localtime(variables["generated_at"]))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=A4, topMargin=20 * mm, bottomMargin=20 * mm,
        leftMargin=20 * mm, rightMargin=20 * mm,
        title="NDIS Service Agreement", author=provider["name"],
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("Title", parent=styles["Title"], fontSize=18, spaceAfter=2 * mm)
    subtitle_style = ParagraphStyle("Subtitle", parent=styles["Normal"], fontSize=9, textColor=colors.grey)
    section_style = ParagraphStyle(
        "Section", parent=styles["Heading2"], fontSize=12, spaceBefore=6 * mm, spaceAfter=2 * mm,
        textColor=colors.HexColor("#1e3a8a"),
    )
    body_style = ParagraphStyle("Body", parent=styles["Normal"], fontSize=10, leading=15, spaceAfter=3 * mm)
    footer_style = ParagraphStyle("Footer", parent=styles["Normal"], fontSize=7, textColor=colors.grey)

    def header(title):
        return [
            Paragraph(title, title_style),
            Paragraph(f"Contract ID: {agreement['contract_id']}", subtitle_style),
            Spacer(1, 4 * mm),
        ]

    def footer(page):
        return [Spacer(1, 8 * mm), Paragraph(f"Page {page} of 3 · {provider['name']} · Generated {generated}", footer_style)]

    address = provider["address"]
    provider_address = ", ".join(
        part for part in (
            address["line1"], address["line2"],
            " ".join(p for p in (address["suburb"], address["state"], address["postcode"]) if p),
        ) if part
    )

    # Page 1: parties and agreement details
    elements = header("NDIS Service Agreement")
    elements.append(Paragraph(f"Generated: {generated}", subtitle_style))
    elements.append(Paragraph("Service Provider", section_style))
    elements.append(_details_table([
        ("Organization:", provider["name"]),
        ("ABN:", provider["abn"]),
        ("Email:", provider["email"]),
        ("Phone:", provider["phone"]),
        ("Address:", provider_address),
    ]))
    elements.append(Paragraph("NDIS Participant", section_style))
    elements.append(_details_table([
        ("Name:", participant["full_name"]),
        ("Date of Birth:", _fmt_date(participant["date_of_birth"])),
        ("NDIS Number:", participant["ndis_id"]),
        ("Phone:", participant["phone"]),
        ("Email:", participant["email"]),
    ]))
    elements.append(Paragraph("Service Location", section_style))
    elements.append(_details_table([("Property:", prop["name"]), ("Address:", prop["address"])]))
    elements.append(Paragraph("Agreement Details", section_style))
    elements.append(_details_table([
        ("Contract Type:", agreement["type"]),
        ("Start Date:", _fmt_date(agreement["start_date"])),
        ("End Date:", _fmt_date(agreement["end_date"])),
        ("Duration:", f"{agreement['duration_days']} days" if agreement["duration_days"] else ""),
        ("Total Funding:", _fmt_currency(agreement["total_amount"])),
        ("Current Balance:", _fmt_currency(agreement["current_balance"])),
    ]))
    elements += footer(1)
    elements.append(PageBreak())

    # Page 2: service delivery and terms
    elements += header("Service Details &amp; Payment Terms")
    elements.append(Paragraph("Service Delivery", section_style))
    elements.append(_details_table([
        ("Daily Support Rate:", _fmt_currency(agreement["daily_rate"])),
        ("Billing Frequency:", (agreement["frequency"] or "").capitalize()),
        ("Service Location:", prop["name"]),
    ]))
    elements.append(Paragraph("Payment Terms", section_style))
    period = f"commencing on {_fmt_date(agreement['start_date'])}"
    if agreement["end_date"]:
        period += f" and concluding on {_fmt_date(agreement['end_date'])}"
    for text in (
        f"This agreement establishes the terms under which {provider['name']} will provide support "
        f"services to {participant['full_name']} under the National Disability Insurance Scheme (NDIS).",
        f"Services will be provided at {prop['name']}, {period}.",
        f"The total funding amount for this agreement is {_fmt_currency(agreement['total_amount'])}, "
        f"with a daily support rate of {_fmt_currency(agreement['daily_rate'])}.",
        "All services provided will be in accordance with the participant's NDIS plan and will be "
        "invoiced in accordance with NDIS pricing arrangements.",
    ):
        elements.append(Paragraph(text, body_style))
    elements.append(Paragraph("Scope of Services", section_style))
    for item in (
        "Provision of support services as outlined in the participant's NDIS plan",
        "Support coordination and service delivery at the agreed location",
        "Regular reporting and documentation as required by NDIS guidelines",
        "Compliance with all relevant NDIS practice standards and regulations",
    ):
        elements.append(Paragraph(f"• {item}", body_style))
    elements += footer(2)
    elements.append(PageBreak())

    # Page 3: financial summary and signatures
    elements += header("Financial Summary")
    elements.append(Paragraph("Funding Overview", section_style))
    elements.append(_amount_table([
        ["Description", "Amount"],
        ["Total Funding Allocated", _fmt_currency(agreement["total_amount"])],
        ["Current Balance", _fmt_currency(agreement["current_balance"])],
        ["Funds Utilized", _fmt_currency(agreement["total_amount"] - agreement["current_balance"])],
    ], [85 * mm, 85 * mm]))
    elements.append(Paragraph("Recent Activity", section_style))
    elements.append(_amount_table([
        ["Period", "Transactions", "Amount"],
        ["Last 7 Days", str(totals["txns7d"]), _fmt_currency(totals["amount7d"])],
        ["Last 30 Days", str(totals["txns30d"]), _fmt_currency(totals["amount30d"])],
        ["Last 12 Months", str(totals["txns12m"]), _fmt_currency(totals["amount12m"])],
    ], [85 * mm, 40 * mm, 45 * mm]))
    elements.append(Spacer(1, 12 * mm))

    signature_cell = "<b>{}</b><br/><br/><br/>_________________________<br/>Signature<br/><br/>Date: _______________"
    signatures = Table(
        [[Paragraph(signature_cell.format("Service Provider"), body_style),
          Paragraph(signature_cell.format("Participant / Representative"), body_style)]],
        colWidths=[85 * mm, 85 * mm],
    )
    signatures.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    elements.append(signatures)
    elements.append(Spacer(1, 8 * mm))

    notice = Table([[Paragraph(
        "<b>Important Notice</b><br/>This agreement is subject to the terms and conditions of the NDIS "
        "Practice Standards and the NDIS Code of Conduct. Both parties agree to comply with all relevant "
        "legislation and NDIS guidelines.",
        ParagraphStyle("Notice", parent=styles["Normal"], fontSize=8, leading=11),
    )]], colWidths=[170 * mm])
    notice.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#eff6ff")),
        ("LINEBEFORE", (0, 0), (0, -1), 3, colors.HexColor("#3b82f6")),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    elements.append(notice)
    elements += footer(3)

    doc.build(elements)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Generate, store and record
# ---------------------------------------------------------------------------

def generate_contract_document(request, contract):
    """
    Render and store the service agreement for ``contract``.
    Returns the RenderedDocument; raises ContractDocumentError on failure.
    """
    now = timezone.now()
    variables = build_contract_variables(contract, now)

    issues = validate_contract_variables(variables)
    if issues:
        raise ContractDocumentError("VALIDATION_ERROR", "Missing required contract data", 400, issues=issues)

    started = time.monotonic()
    try:
        pdf = render_contract_pdf(variables)
    except Exception as e:
        logger.exception("Contract PDF render failed for %s", contract.pk)
        raise ContractDocumentError("RENDER_FAILED", str(e) or "PDF rendering failed", 500)
    render_ms = int((time.monotonic() - started) * 1000)

    path = f"contracts/{contract.pk}/{TEMPLATE_ID}-{TEMPLATE_VERSION}-{int(now.timestamp() * 1000)}.pdf"
    try:
        storage_path = default_storage.save(path, ContentFile(pdf))
    except OSError:
        logger.exception("Could not store contract PDF %s", path)
        raise ContractDocumentError("STORAGE_WRITE_FAILED", "Failed to save PDF", 503)

    url, expires_at = create_signed_url(storage_path, request)
    document = RenderedDocument.objects.create(
        organization=contract.organization,
        contract=contract,
        resident=contract.resident,
        template_id=TEMPLATE_ID,
        template_version=TEMPLATE_VERSION,
        storage_path=storage_path,
        signed_url_last=url,
        signed_url_expires_at=expires_at,
        data_hash_sha256=variables_hash(variables),
        render_ms=render_ms,
        file_size_bytes=len(pdf),
        rendered_by=request.user if request.user.is_authenticated else None,
    )
    log_action(
        request, AuditLog.Action.GENERATE,
        f"Service agreement generated for {contract.resident.full_name}", contract,
        {"document_id": str(document.pk), "storage_path": storage_path, "render_ms": render_ms},
    )
    logger.info("Rendered contract %s in %dms (%d bytes)", contract.pk, render_ms, len(pdf))
    return document
