"""
Email transport for billing notifications.
Renders templates/email/<kind>.html and .txt and sends them with Flask-Mailman.
"""
import logging
import uuid

from flask import current_app, render_template
from flask_mailman import EmailMultiAlternatives

logger = logging.getLogger(__name__)

SUBJECTS = {
    'quota_warning_80': "You're running low on quota",
    'quota_warning_100': "You've reached your daily quota limit",
    'welcome': 'Welcome to Design Kit!',
    'subscription_confirmation': 'Your subscription is active',
    'subscription_cancellation': 'Your subscription has been canceled',
}


def send_email(kind, recipient, template_data):
    """
    Send one notification email. Single attempt, no retry.

    Args:
        kind: Notification kind; selects subject and template
        recipient: Email address of the recipient
        template_data: Context variables for the template

    Returns:
        bool: True if the message was handed to the mail backend
    """
    email_id = str(uuid.uuid4())[:8]
    logger.info(f"[EMAIL:{email_id}] Sending {kind} to {recipient}")

    try:
        msg = build_message(kind, recipient, template_data)
    except Exception as e:
        logger.error(f"[EMAIL:{email_id}] Could not build {kind} for {recipient}: {e}")
        return False

    try:
        msg.send()
    except Exception as e:
        logger.error(f"[EMAIL:{email_id}] Delivery of {kind} to {recipient} failed: {e}")
        return False

    logger.info(f"[EMAIL:{email_id}] Sent {kind} to {recipient}")
    return True


def build_message(kind, recipient, template_data):
    """Render both bodies of a notification into a multipart message."""
    context = dict(template_data or {})
    context.setdefault('app_url', current_app.config.get('APP_URL', ''))

    html_body = render_template(f'email/{kind}.html', **context)
    text_body = render_template(f'email/{kind}.txt', **context)

    prefix = current_app.config.get('MAIL_SUBJECT_PREFIX', '')
    subject = SUBJECTS.get(kind, kind.replace('_', ' ').capitalize())
    msg = EmailMultiAlternatives(
        subject=f"{prefix} {subject}".strip(),
        body=text_body,
        from_email=current_app.config.get('MAIL_DEFAULT_SENDER'),
        to=[recipient],
    )
    msg.attach_alternative(html_body, 'text/html')
    return msg
