"""
Daily billing run.

Processes every organization with automation enabled, one after another.
Each organization gets its own run log, in-app notification and summary
email; a fatal error in one organization is recorded and the loop moves on.
"""
import logging
import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.utils import timezone

from accounts.models import User
from core.emails import send_html_email
from core.funding import mark_expired_contracts
from core.models import Notification
from core.notifications import notify

from .generator import generate_transactions, preview_generation
from .models import AutomationLog, AutomationSettings

logger = logging.getLogger("billing")

MAX_SUMMARY_ERRORS = 10


def _zone(name):
    try:
        return ZoneInfo(name or settings.DEFAULT_AUTOMATION_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown automation timezone %r, using %s", name, settings.DEFAULT_AUTOMATION_TIMEZONE)
        return ZoneInfo(settings.DEFAULT_AUTOMATION_TIMEZONE)


def organization_today(organization):
    """Today's date in the organization's automation timezone."""
    row = AutomationSettings.objects.filter(organization=organization).only("timezone").first()
    return timezone.localtime(timezone=_zone(row.timezone if row else None)).date()


def run_status(result):
    if result["failed"] == 0:
        return AutomationLog.Status.SUCCESS
    if result["successful"] > 0:
        return AutomationLog.Status.PARTIAL
    return AutomationLog.Status.FAILED


def build_run_summary(result, run_at, organization_name):
    """Plain-text report stored on the run log and included in emails."""
    lines = [
        f"Automated Billing Run - {organization_name}",
        run_at.strftime("%A %d %B %Y, %I:%M %p"),
        "",
        "📊 SUMMARY",
        f"• Contracts Processed: {result['processed_contracts']}",
        f"• Successful Transactions: {result['successful']}",
        f"• Failed Transactions: {result['failed']}",
        f"• Total Amount: ${result['summary']['total_amount']:.2f}",
        "",
    ]

    breakdown = result["summary"]["frequency_breakdown"]
    if breakdown:
        lines.append("📈 FREQUENCY BREAKDOWN")
        for frequency, count in breakdown.items():
            lines.append(f"• {frequency}: {count} transaction{'s' if count != 1 else ''}")
        lines.append("")

    if result.get("stopped_early"):
        lines.append("⛔ Run stopped after the first failure; remaining contracts were skipped")
        lines.append("")

    errors = result["errors"]
    if errors:
        lines.append(f"⚠️ ERRORS ({len(errors)})")
        for index, error in enumerate(errors[:MAX_SUMMARY_ERRORS], start=1):
            lines.append(f"{index}. Contract {error['contract_id']}: {error['error']}")
        if len(errors) > MAX_SUMMARY_ERRORS:
            lines.append(f"... and {len(errors) - MAX_SUMMARY_ERRORS} more errors")
    else:
        lines.append("✅ No errors encountered")

    return "\n".join(lines) + "\n"


def admin_recipients(automation_settings):
    emails = [e for e in (automation_settings.admin_emails or []) if e]
    if emails:
        return emails
    return list(
        automation_settings.organization.users.filter(role=User.Role.ADMIN, is_active=True)
        .exclude(email="")
        .values_list("email", flat=True)
    )


def _should_email(automation_settings, today):
    frequency = automation_settings.notification_frequency
    if frequency == AutomationSettings.NotificationFrequency.OFF:
        return False
    if frequency == AutomationSettings.NotificationFrequency.END_OF_WEEK:
        return today.weekday() == 6
    return True


def _resident_names(organization, resident_ids):
    return {
        str(pk): f"{first} {last}"
        for pk, first, last in organization.residents.filter(pk__in=resident_ids)
        .values_list("pk", "first_name", "last_name")
    }


def _send_summary_email(automation_settings, result, summary_text, run_at, execution_ms):
    organization = automation_settings.organization
    names = _resident_names(organization, [e["resident_id"] for e in result["errors"]])
    errors = [
        {**error, "resident_name": names.get(error["resident_id"], "Unknown")}
        for error in result["errors"]
    ]
    if result["failed"]:
        subject = (
            f"Automation Run Completed with Errors - {result['successful']} Success, "
            f"{result['failed']} Failed"
        )
    else:
        subject = f"Automation Run Completed Successfully - {result['successful']} Transactions Created"
    return send_html_email(
        subject,
        "billing/email_run_summary.html",
        {
            "organization": organization,
            "run_at": run_at,
            "execution_ms": execution_ms,
            "result": result,
            "transactions": result["transactions"],
            "errors": errors[:MAX_SUMMARY_ERRORS],
            "more_errors": max(len(errors) - MAX_SUMMARY_ERRORS, 0),
            "summary_text": summary_text if automation_settings.include_logs else "",
            "timezone": automation_settings.timezone,
        },
        admin_recipients(automation_settings),
    )


def run_for_organization(automation_settings, catch_up=True, dry_run=False):
    """Run billing for one organization in its own timezone."""
    organization = automation_settings.organization
    tz = _zone(automation_settings.timezone)
    started = time.monotonic()

    with timezone.override(tz):
        run_at = timezone.localtime()
        today = run_at.date()

        if dry_run:
            preview = preview_generation(organization, today=today, catch_up=catch_up)
            return {
                "organization_id": str(organization.pk),
                "organization_name": organization.name,
                "dry_run": True,
                **preview,
            }

        expired = mark_expired_contracts(organization, today=today)
        result = generate_transactions(
            organization, today=today, catch_up=catch_up,
            stop_on_error=not automation_settings.continue_on_error,
        )
        execution_ms = int((time.monotonic() - started) * 1000)
        summary_text = build_run_summary(result, run_at, organization.name)
        status = run_status(result)

        log = AutomationLog.objects.create(
            organization=organization,
            run_date=timezone.now(),
            status=status,
            contracts_processed=result["processed_contracts"],
            contracts_skipped=result["skipped"],
            contracts_failed=result["failed"],
            execution_time_ms=execution_ms,
            errors=result["errors"],
            summary=summary_text,
        )

        notify(
            organization,
            "Automated billing run completed",
            f"{result['successful']} transaction(s) created, {result['failed']} failed. "
            f"Total ${result['summary']['total_amount']:.2f}.",
            category=Notification.Category.AUTOMATION,
            priority=Notification.Priority.HIGH if result["failed"] else Notification.Priority.LOW,
            action_url="/transactions?status=draft",
            metadata={"automation_log_id": str(log.pk), "status": status},
        )

        email_sent = False
        if _should_email(automation_settings, today):
            email_sent = _send_summary_email(automation_settings, result, summary_text, run_at, execution_ms)

    logger.info(
        "Billing run for %s: %s (%d successful, %d failed, %d skipped, %d expired)",
        organization.slug, status, result["successful"], result["failed"], result["skipped"], expired,
    )
    return {
        "organization_id": str(organization.pk),
        "organization_name": organization.name,
        "success": status != AutomationLog.Status.FAILED,
        "status": status,
        "processed_contracts": result["processed_contracts"],
        "successful_transactions": result["successful"],
        "failed_transactions": result["failed"],
        "skipped_contracts": result["skipped"],
        "expired_contracts": expired,
        "total_amount": result["summary"]["total_amount"],
        "automation_log_id": str(log.pk),
        "email_sent": email_sent,
    }


def _record_fatal_error(automation_settings, error):
    organization = automation_settings.organization
    message = str(error) or error.__class__.__name__
    AutomationLog.objects.create(
        organization=organization,
        status=AutomationLog.Status.FAILED,
        errors=[{"contract_id": "", "resident_id": "", "error": message}],
        summary=f"Automated Billing Run - {organization.name}\nRun failed: {message}\n",
    )
    notify(
        organization,
        "Automated billing run failed",
        message,
        category=Notification.Category.AUTOMATION,
        priority=Notification.Priority.HIGH,
    )
    if automation_settings.notification_frequency != AutomationSettings.NotificationFrequency.OFF:
        send_html_email(
            "Automation Run Failed - Critical Error",
            "billing/email_run_error.html",
            {"organization": organization, "error": message, "run_at": timezone.localtime()},
            admin_recipients(automation_settings),
        )
    return message


def run_automation(organization_slug=None, catch_up=True, dry_run=False):
    """
    Run billing for every organization with automation enabled, or just
    the one named by ``organization_slug``.
    """
    started = time.monotonic()
    executed_at = timezone.now()
    queryset = AutomationSettings.objects.filter(enabled=True).select_related("organization")
    if organization_slug:
        queryset = queryset.filter(organization__slug=organization_slug)

    organization_results = []
    for automation_settings in queryset.order_by("organization__name"):
        try:
            organization_results.append(
                run_for_organization(automation_settings, catch_up=catch_up, dry_run=dry_run)
            )
        except Exception as e:
            logger.exception("Billing run failed for %s", automation_settings.organization.slug)
            message = str(e) or e.__class__.__name__
            if not dry_run:
                try:
                    message = _record_fatal_error(automation_settings, e)
                except Exception:
                    logger.exception("Could not record the failed run for %s", automation_settings.organization.slug)
            organization_results.append({
                "organization_id": str(automation_settings.organization_id),
                "organization_name": automation_settings.organization.name,
                "success": False,
                "error": message,
            })

    return {
        "execution_date": executed_at,
        "total_execution_time_ms": int((time.monotonic() - started) * 1000),
        "processed_organizations": len(organization_results),
        "organization_results": organization_results,
    }
