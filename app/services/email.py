import os
import logging
from enum import Enum
from typing import Any, Dict, Tuple
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, To, From, Subject, HtmlContent, PlainTextContent
from jinja2 import Environment, FileSystemLoader, select_autoescape
from datetime import datetime

from app.core.settings import settings

logger = logging.getLogger("app.email")


class AssignmentEmailEvent(str, Enum):
    SUBMITTED = "assignment_submitted"
    GRADED = "assignment_graded"


SUBJECTS: Dict[AssignmentEmailEvent, str] = {
    AssignmentEmailEvent.SUBMITTED: "Assignment Submitted for Review",
    AssignmentEmailEvent.GRADED: "Your Assignment Has Been Reviewed",
}

TEMPLATE_MAP: Dict[AssignmentEmailEvent, str] = {
    AssignmentEmailEvent.SUBMITTED: "assignment_submitted.html",
    AssignmentEmailEvent.GRADED: "assignment_graded.html",
}


def strftime_filter(value, format='%Y'):
    """Custom Jinja2 filter for strftime formatting."""
    if isinstance(value, str) and value == 'now':
        return datetime.now().strftime(format)
    return value


def get_email_template_env():
    """Get Jinja2 environment for email templates."""
    template_dir = os.path.join(os.path.dirname(__file__), '../templates/email')
    env = Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=select_autoescape(['html', 'xml'])
    )
    env.filters['strftime'] = strftime_filter
    return env


def get_sendgrid_client():
    """Get SendGrid client if configured and log diagnostics (without leaking key)."""
    api_key = os.getenv("SENDGRID_API_KEY")
    if not api_key:
        logger.warning("[email] SENDGRID_API_KEY missing from environment")
        return None
    logger.debug(f"[email] SendGrid key loaded (length={len(api_key)})")
    if api_key.startswith("your_"):
        logger.warning("[email] SENDGRID_API_KEY appears to be a placeholder (starts with 'your_')")
        return None
    try:
        return SendGridAPIClient(api_key)
    except Exception as e:
        logger.error(f"[email] Failed to instantiate SendGrid client: {e}")
        return None


def render_assignment_email(event: AssignmentEmailEvent, context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Render HTML & plain text plus subject for an assignment lifecycle event."""
    event = AssignmentEmailEvent(event)
    subject = SUBJECTS[event]
    ctx = {**context, 'event': event.value, 'subject': subject, 'app_url': settings.app_url}

    html = None
    template_name = TEMPLATE_MAP[event]
    try:
        html = get_email_template_env().get_template(template_name).render(**ctx)
    except Exception as e:
        logger.error(f"[assignment_email] Failed to render template {template_name}: {e}")

    assignment_name = context.get('assignment_name') or "Assignment"
    action_url = context.get('action_url')

    if event == AssignmentEmailEvent.SUBMITTED:
        summary = f"{context.get('client_name') or 'A client'} submitted {assignment_name} for review."
    else:
        summary = f"Your {assignment_name} has been reviewed."
        if context.get('result_label'):
            summary += f" Result: {context['result_label']}."

    if not html:
        # Fallback minimal HTML
        html_lines = [f"<h3>{subject}</h3>", f"<p>{summary}</p>"]
        if action_url:
            html_lines.append(f"<p><a href='{action_url}'>Open Assignment</a></p>")
        html = "\n".join(html_lines)

    plain_lines = [subject, "", summary]
    if context.get('overall_average') is not None:
        plain_lines.append(f"Overall average: {context['overall_average']}")
    if action_url:
        plain_lines.append(f"Link: {action_url}")
    plain = "\n".join(plain_lines)
    return html, plain, subject


def send_email(to_email: str, subject: str, html_content: str,
               plain_content: str, from_email: str = None) -> bool:
    """Send email using SendGrid.

    Returns False when the client isn't configured or SendGrid rejects the
    message; never raises.
    """
    client = get_sendgrid_client()
    if not client:
        logger.warning(f"[email] Skipping send (client unavailable) to={to_email} subject={subject[:120]!r}")
        return False

    try:
        from_email = from_email or settings.email_from_address
        if not from_email:
            logger.error(f"[email] No from_email resolved; aborting send to={to_email}")
            return False

        message = Mail(
            from_email=From(from_email, settings.email_from_name),
            to_emails=To(to_email),
            subject=Subject(subject),
            html_content=HtmlContent(html_content),
            plain_text_content=PlainTextContent(plain_content)
        )

        logger.debug(f"[email] Sending message payload_summary={{'to': to_email, 'subject': subject[:120], 'html_len': len(html_content), 'plain_len': len(plain_content)}}")
        response = client.send(message)

        if getattr(response, 'status_code', None) in (200, 202):
            logger.info(f"[email] Sent to={to_email} status={getattr(response,'status_code',None)}")
            return True

        logger.error(f"[email] Failed send to={to_email} status={getattr(response,'status_code',None)}")
        return False
    except Exception as e:  # pragma: no cover
        logger.error(f"[email] Exception during send to={to_email}: {e}", exc_info=True)
        return False


def send_assignment_email(event: AssignmentEmailEvent, to_email: str, context: Dict[str, Any]) -> bool:
    html, plain, subject = render_assignment_email(event, context)
    return send_email(to_email, subject, html, plain)
