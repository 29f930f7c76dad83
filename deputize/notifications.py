"""
Email notification utilities for deputize.

This module sends email notifications when a reconciliation pass fails or,
if enabled, when it changed any membership.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, Optional
from datetime import datetime

from deputize.models import ReconciliationReport

logger = logging.getLogger(__name__)


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

    logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
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
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False

    logger.info(f"Email notification sent successfully: {subject}")
    return True


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for a failed run.

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
        "deputize Failure Report",
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
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from deputize."
    ])

    return send_email(f"deputize Alert: {title}", '\n'.join(body_lines), config)


def format_report(report: ReconciliationReport) -> str:
    """Render a reconciliation report as an email body."""
    runtime_seconds = report.runtime_seconds
    if runtime_seconds > 60:
        runtime_str = f"{int(runtime_seconds // 60)}m {runtime_seconds % 60:.1f}s"
    else:
        runtime_str = f"{runtime_seconds:.2f} seconds"

    body_lines = [
        "deputize On-Call Reconciliation Report",
        f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Total runtime: {runtime_str}",
        f"Sinks processed: {len(report.sinks)}",
        f"Sinks failed: {len(report.failed_sinks)}",
        ""
    ]
    body_lines.extend(report.summary_lines())
    body_lines.extend([
        "",
        "This is an automated message from deputize."
    ])
    return '\n'.join(body_lines)


def send_report_notification(report: ReconciliationReport, config: Dict[str, Any]) -> bool:
    """
    Email a reconciliation report if it failed or, when enabled, changed anything.

    Args:
        report: Report of the finished pass
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not report.ok:
        if not config.get('email_on_failure', True):
            logger.debug("Failure email notifications disabled")
            return False
        names = ', '.join(r.sink for r in report.failed_sinks)
        subject = f"deputize Alert: reconciliation failed for {names}"
    elif report.changed:
        if not config.get('email_on_change', False):
            logger.debug("Change email notifications disabled")
            return False
        subject = "deputize: on-call membership updated"
    else:
        return False

    return send_email(subject, format_report(report), config)


class EmailNotifier:
    """Reconciler notifier that emails the report."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def __call__(self, report: ReconciliationReport) -> bool:
        return send_report_notification(report, self.config)
