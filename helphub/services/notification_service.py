"""
Out-of-band notification dispatch (email and SMS).

Every function here is fire-and-forget: delivery problems are logged and
swallowed so a committed state transition is never undone by them.
"""
import logging
from datetime import datetime
from flask import current_app, render_template
from helphub.utils.mailer import send_email
from helphub.utils.sms import send_sms

logger = logging.getLogger(__name__)

COMPANY_NAME = "HelpHub"


def notify_request_accepted(help_request):
    needy = help_request.needy_user
    volunteer = help_request.volunteer
    if not needy:
        return

    try:
        send_email(
            to=needy.email,
            subject="Your help request has been accepted!",
            html=render_template(
                "emails/request_accepted.html",
                name=needy.name,
                request_title=help_request.title,
                volunteer_name=volunteer.name if volunteer else "A volunteer",
                company_name=COMPANY_NAME,
                year=datetime.utcnow().year,
            ),
        )
    except Exception:
        logger.exception("Failed to send acceptance email for request %s", help_request.id)

    if needy.phone:
        try:
            send_sms(
                to=needy.phone,
                body=f'Your help request "{help_request.title}" has been accepted! Check your email for details.',
            )
        except Exception:
            logger.exception("Failed to send acceptance SMS for request %s", help_request.id)


def notify_status_update(help_request):
    needy = help_request.needy_user
    if not needy:
        return

    try:
        send_email(
            to=needy.email,
            subject=f"Help request status updated: {help_request.status}",
            html=render_template(
                "emails/status_update.html",
                name=needy.name,
                request_title=help_request.title,
                status=help_request.status,
                company_name=COMPANY_NAME,
                year=datetime.utcnow().year,
            ),
        )
    except Exception:
        logger.exception("Failed to send status email for request %s", help_request.id)


def notify_new_message(recipient, sender, chat):
    if not recipient:
        return

    chat_url = f"{current_app.config['FRONTEND_URL']}/chat/{chat.id}"
    try:
        send_email(
            to=recipient.email,
            subject=f"New message from {sender.name}",
            html=render_template(
                "emails/new_message.html",
                name=recipient.name,
                sender_name=sender.name,
                chat_url=chat_url,
                company_name=COMPANY_NAME,
                year=datetime.utcnow().year,
            ),
        )
    except Exception:
        logger.exception("Failed to send new message email to %s", recipient.id)
