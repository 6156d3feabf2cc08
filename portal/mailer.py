"""Loads email templates and sends notification emails through Resend."""

import json
import logging
import os
from html import escape
from typing import Any, Dict, Optional

import resend

from portal.config import get_config_value

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATES: Dict[str, Any] = {}


def load_message_templates() -> None:
    """
    Loads message templates from the JSON file named in email.templates_file.
    The path is tried as given, then next to this module.
    """
    global MESSAGE_TEMPLATES
    templates_file_path = get_config_value("email.templates_file", "message_templates.json")

    possible_paths = [
        templates_file_path,
        os.path.join(os.path.dirname(__file__), templates_file_path),
    ]
    loaded_path = next(
        (os.path.abspath(p) for p in possible_paths if os.path.exists(os.path.abspath(p))),
        None,
    )

    if not loaded_path:
        logger.error(
            f"Message templates file could not be found (tried {possible_paths}). Built-in defaults will be used."
        )
        MESSAGE_TEMPLATES = {}
        return

    try:
        with open(loaded_path, "r", encoding="utf-8") as f:
            MESSAGE_TEMPLATES = json.load(f)
        logger.info(f"Successfully loaded message templates from: {loaded_path}")
    except (OSError, json.JSONDecodeError) as e:
        logger.error(
            f"Error loading message templates from {loaded_path}: {e}. Using built-in defaults."
        )
        MESSAGE_TEMPLATES = {}


def get_message(key: str, default: Optional[str] = None, **kwargs: Any) -> str:
    """
    Retrieves a message template by its dot-separated key and formats it with kwargs.

    Example: get_message("emails.access_code.subject", app_name="Class Portal")
    """
    value: Any = MESSAGE_TEMPLATES
    for part in key.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            logger.warning(f"Message template key '{key}' not found. Using default.")
            value = default
            break

    if value is None:
        return f"<Missing Template: {key}>"
    if not isinstance(value, str):
        logger.warning(f"Template value for key '{key}' is not a string: {type(value)}")
        value = default if default is not None else str(value)

    try:
        return value.format(**kwargs)
    except (KeyError, IndexError, ValueError) as e:
        logger.error(f"Error formatting message for key '{key}': {e}")
        return default if default is not None else f"<Error Formatting Template: {key}>"


def send_email(to_email: str, subject: str, html_content: str) -> bool:
    """
    Send an email using Resend.

    Without email.resend_api_key (RESEND_API_KEY) the email is logged instead of sent.

    Returns:
        True if the email was sent (or logged)
    """
    api_key = get_config_value("email.resend_api_key")
    if not api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    resend.api_key = api_key
    try:
        params: resend.Emails.SendParams = {
            "from": get_config_value("email.from_address", "Class Portal <noreply@classportal.dev>"),
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        email = resend.Emails.send(params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def _template_context(**extra: Any) -> Dict[str, Any]:
    context = {
        "app_name": escape(get_config_value("portal_settings.app_name", "Class Portal")),
        "portal_url": get_config_value("email.portal_url", "http://localhost:3000"),
    }
    context.update(extra)
    return context


def send_access_code(to_email: str, code: str, resent: bool = False) -> bool:
    """Emails an applicant their access code."""
    key = "emails.access_code_resent" if resent else "emails.access_code"
    context = _template_context(code=escape(code))
    subject = get_message(
        f"{key}.subject", "Your Access Code for {app_name}", **context
    )
    body = get_message(
        f"{key}.html",
        "<p>Your application has been approved. Your access code is <b>{code}</b>.</p>"
        "<p>Enter it at {portal_url}/access to open the portal.</p>",
        **context,
    )
    return send_email(to_email, subject, body)


def send_reminder(to_email: str, class_title: str) -> bool:
    """Reminds a student who redeemed a code about the upcoming class."""
    context = _template_context(class_title=escape(class_title))
    subject = get_message("emails.reminder.subject", "Reminder: {class_title}", **context)
    body = get_message(
        "emails.reminder.html",
        "<p>{class_title} is coming up. Sign in at {portal_url}/access with your code.</p>",
        **context,
    )
    return send_email(to_email, subject, body)


# Load templates when this module is imported, after config.py has loaded APP_CONFIG.
load_message_templates()
