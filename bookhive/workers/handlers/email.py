"""
Email Job Handler

Renders transactional emails and hands them to a MailTransport.

Job types:
    send-email                 generic {to, subject, html, text}
    send-welcome-email         {user}
    send-borrow-request-email  {book_owner, requester, book, message?}
    send-reminder-email        {user, book, due_date, type?}
    send-overdue-email         same payload, always overdue-framed
"""

import math
from datetime import datetime, timezone
from email.message import EmailMessage
from html import escape
from typing import Any

from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import JobHandlerError
from bookhive.core.interfaces import MailTransport
from bookhive.core.logging.logger import get_logger

logger = get_logger(__name__)

_WRAPPER = '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{body}</div>'
_BUTTON = (
    '<a href="{href}" style="background-color: {color}; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 6px; display: inline-block;">{label}</a>'
)
_BOOK_CARD = (
    '<div style="background-color: #f3f4f6; padding: 16px; border-radius: 8px; margin: 16px 0;">'
    '<h3 style="margin: 0 0 8px 0;">{title}</h3>'
    '<p style="margin: 0; color: #6b7280;">by {author}</p>{extra}</div>'
)


def parse_due_date(value: Any) -> datetime:
    """Accept ISO strings (``Z`` suffix allowed) or datetimes. Naive means UTC."""
    if isinstance(value, datetime):
        due = value
    else:
        due = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    return due


class EmailJobHandler:
    """Handlers for the ``email`` queue."""

    def __init__(self, transport: MailTransport, settings: Settings | None = None):
        self._transport = transport
        self._settings = settings or get_settings()

    @property
    def client_url(self) -> str:
        return self._settings.email.CLIENT_URL.rstrip("/")

    async def send_email(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Send one email.

        Raises:
            JobHandlerError: If the payload is incomplete or delivery fails
        """
        to = data.get("to")
        subject = data.get("subject")
        if not to or not subject:
            raise JobHandlerError("Email job requires 'to' and 'subject'", details={"to": to})

        message = EmailMessage()
        message["From"] = self._settings.email.EMAIL_FROM
        message["To"] = to
        message["Subject"] = subject
        message.set_content(data.get("text") or "")
        if data.get("html"):
            message.add_alternative(data["html"], subtype="html")

        try:
            message_id = await self._transport.send(message)
        except Exception as e:
            logger.error("Email sending failed", to=to, error=str(e), error_type=type(e).__name__)
            raise JobHandlerError(f"Failed to send email: {e}", details={"to": to}) from e

        return {"success": True, "message_id": message_id, "to": to, "subject": subject}

    async def send_welcome_email(self, data: dict[str, Any]) -> dict[str, Any]:
        user = data["user"]
        name = escape(user.get("name", ""))
        body = (
            '<h1 style="color: #2563eb;">Welcome to BookHive!</h1>'
            f"<p>Hi {name},</p>"
            "<p>Welcome to BookHive, the community-driven platform for modern readers!</p>"
            "<p>You can now:</p>"
            "<ul><li>Discover books in your area</li><li>Connect with fellow readers</li>"
            "<li>Join literary events</li><li>Build your reading reputation</li></ul>"
            f"<p>{_BUTTON.format(href=f'{self.client_url}/dashboard', color='#2563eb', label='Get Started')}</p>"
            "<p>Happy reading!</p><p>The BookHive Team</p>"
        )
        return await self.send_email({
            "to": user["email"],
            "subject": "Welcome to BookHive!",
            "html": _WRAPPER.format(body=body),
            "text": f"Welcome to BookHive, {user.get('name', '')}! Start discovering books in your community.",
        })

    async def send_borrow_request_email(self, data: dict[str, Any]) -> dict[str, Any]:
        owner, requester, book = data["book_owner"], data["requester"], data["book"]
        note = data.get("message")
        requester_id = requester.get("id") or requester.get("_id", "")

        buttons = " ".join([
            _BUTTON.format(href=f"{self.client_url}/dashboard/requests", color="#10b981", label="View Request"),
            _BUTTON.format(href=f"{self.client_url}/profile/{requester_id}", color="#6b7280", label="View Profile"),
        ])
        body = (
            '<h1 style="color: #2563eb;">New Borrow Request</h1>'
            f"<p>Hi {escape(owner.get('name', ''))},</p>"
            f"<p><strong>{escape(requester.get('name', ''))}</strong> would like to borrow your book:</p>"
            + _BOOK_CARD.format(title=escape(book["title"]), author=escape(book.get("author", "")), extra="")
            + (f'<p><strong>Message:</strong> "{escape(note)}"</p>' if note else "")
            + f"<p>{buttons}</p><p>Best regards,<br>The BookHive Team</p>"
        )
        return await self.send_email({
            "to": owner["email"],
            "subject": f'New borrow request for "{book["title"]}"',
            "html": _WRAPPER.format(body=body),
            "text": (
                f'{requester.get("name", "")} wants to borrow your book "{book["title"]}". '
                "Check your dashboard to respond."
            ),
        })

    async def send_reminder_email(self, data: dict[str, Any], force_overdue: bool = False) -> dict[str, Any]:
        """
        Return reminder. Overdue framing when the due date has passed (or forced),
        otherwise "due in N days" / "due today".
        """
        user, book = data["user"], data["book"]
        due = parse_due_date(data["due_date"])
        now = datetime.now(timezone.utc)

        overdue = force_overdue or now > due
        days = math.ceil((due - now).total_seconds() / 86400)
        when = f"in {days} days" if days > 0 else "today"
        color = "#dc2626" if overdue else "#f59e0b"

        if overdue:
            subject = f'Overdue: Please return "{book["title"]}"'
            heading, intro = "Overdue Book", "notice that your borrowed book is overdue"
            text = f'Reminder: Your book "{book["title"]}" is overdue.'
        else:
            subject = f'Reminder: "{book["title"]}" due {when}'
            heading, intro = "Return Reminder", "friendly reminder about your borrowed book"
            text = f'Reminder: Your book "{book["title"]}" is due {when}.'

        due_line = f'<p style="margin: 8px 0 0 0; color: {color};"><strong>Due: {due.date().isoformat()}</strong></p>'
        body = (
            f'<h1 style="color: {color};">{heading}</h1>'
            f"<p>Hi {escape(user.get('name', ''))},</p>"
            f"<p>This is a {intro}:</p>"
            + _BOOK_CARD.format(title=escape(book["title"]), author=escape(book.get("author", "")), extra=due_line)
            + "<p>"
            + _BUTTON.format(
                href=f"{self.client_url}/dashboard/borrowed", color="#2563eb", label="Manage Borrowed Books"
            )
            + "</p><p>Thank you for being part of the BookHive community!</p><p>The BookHive Team</p>"
        )
        return await self.send_email({
            "to": user["email"],
            "subject": subject,
            "html": _WRAPPER.format(body=body),
            "text": text,
        })

    async def send_overdue_email(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.send_reminder_email({**data, "type": "return_reminder"}, force_overdue=True)
