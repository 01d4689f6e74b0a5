"""
Email notification utilities for LDAP Reconcile.

This module provides functionality to send email notifications for fatal
errors and for the end-of-run summary.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

FOOTER = "This is an automated message from LDAP Reconcile."


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        if smtp_username and smtp_password:
            server.login(smtp_username, smtp_password)

        server.sendmail(email_from, email_to, msg.as_string())
        server.quit()

        logger.info(f"Email notification sent successfully: {subject}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for a fatal run error.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "LDAP Reconcile Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "No account was disabled by this run.",
        "Please check the application logs for more detailed information.",
        "",
        FOOTER
    ])

    return send_email(f"LDAP Reconcile Alert: {title}", '\n'.join(body_lines), config)


def _list_section(title: str, emails: List[str], limit: int = 50) -> List[str]:
    lines = [f"{title} ({len(emails)}):"]
    for email in emails[:limit]:
        lines.append(f"  {email}")
    if len(emails) > limit:
        lines.append(f"  ... and {len(emails) - limit} more")
    lines.append("")
    return lines


def format_summary(summary: Dict[str, Any]) -> str:
    """Render a run summary dictionary as plain text."""
    runtime_seconds = summary.get('runtime_seconds', 0)
    if runtime_seconds > 60:
        runtime_str = f"{int(runtime_seconds // 60)}m {runtime_seconds % 60:.1f}s"
    else:
        runtime_str = f"{runtime_seconds:.2f} seconds"

    lines = [
        f"Total runtime: {runtime_str}",
        f"Processed: {summary.get('processed', 0)}",
        f"Skipped (already defined): {summary.get('skipped', 0)}",
        ""
    ]
    lines += _list_section("Added", summary.get('added', []))
    lines += _list_section("Conflicts", summary.get('conflicts', []))
    lines += _list_section("Invalid addresses", summary.get('invalid', []))
    lines += _list_section("Failed", summary.get('failed', []))
    lines += _list_section("Disabled", summary.get('disabled', []))
    lines += _list_section("Not disabled, still owning components", summary.get('ownership_blocked', []))
    if summary.get('failed_sources'):
        lines += _list_section("Failed directory sources", summary['failed_sources'])
    return '\n'.join(lines)


def send_run_summary(summary: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send the end-of-run summary.

    Args:
        summary: Dictionary from RunSummary.as_dict()
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Summary email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    body = '\n'.join([
        "LDAP Reconcile Summary Report",
        f"Timestamp: {timestamp}",
        "",
        format_summary(summary),
        FOOTER
    ])

    return send_email("LDAP Reconcile: Run Summary", body, config)
