import asyncio
import html
import logging
from typing import Set

import httpx
import msal
from core.errors import EmailNotConfigured
from core.logging_setup import log_owner, log_step

logger = logging.getLogger(__name__)

LOG_STEP = "EMAIL"

GRAPH_SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"
REMINDER_SUBJECT = "Reminder from Event Sorter"


def render_reminder(message: str) -> str:
    """Reminder body with the user's text HTML-escaped."""
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="color: #2563eb;">Your Reminder</h2>
      <div style="background: #f3f4f6; border-radius: 8px; padding: 16px; margin-top: 12px;">
        <p style="white-space: pre-wrap; margin: 0; font-size: 16px; color: #1f2937;">{html.escape(message)}</p>
      </div>
      <p style="color: #6b7280; font-size: 14px; margin-top: 16px;">Sent from Event Sorter</p>
    </div>
    """


class EmailService:
    """Sends mail through Microsoft Graph using app-only client credentials."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        sender_email: str,
    ):
        self.http_client = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.tenant_id = tenant_id
        self.sender_email = sender_email

        self.authority = f"https://login.microsoftonline.com/{self.tenant_id}"
        self.scope = ["https://graph.microsoft.com/.default"]

        self._app: msal.ConfidentialClientApplication | None = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        return all((self.client_id, self.client_secret, self.tenant_id, self.sender_email))

    def _get_app(self) -> msal.ConfidentialClientApplication:
        # Constructing the app performs authority discovery over the network
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                self.client_id,
                authority=self.authority,
                client_credential=self.client_secret,
            )
        return self._app

    def _get_access_token(self) -> str:
        """
        Acquires a token for the Graph API using Client Credentials.
        """
        app = self._get_app()
        result = app.acquire_token_silent(self.scope, account=None)

        if not result:
            result = app.acquire_token_for_client(scopes=self.scope)

        if "access_token" in result:
            return result["access_token"]

        error = result.get("error")
        desc = result.get("error_description")
        raise RuntimeError(f"Could not acquire token: {error} - {desc}")

    async def _send_graph_email(self, to_email: str, subject: str, body_html: str) -> bool:
        with log_step(LOG_STEP):
            try:
                token = await asyncio.to_thread(self._get_access_token)
                message = {
                    "subject": subject,
                    "body": {"contentType": "HTML", "content": body_html},
                    "toRecipients": [{"emailAddress": {"address": to_email}}],
                }
                response = await self.http_client.post(
                    GRAPH_SEND_URL.format(sender=self.sender_email),
                    json={"message": message, "saveToSentItems": False},
                    headers={"Authorization": f"Bearer {token}"},
                )
            except (httpx.HTTPError, RuntimeError, ValueError) as e:
                logger.error(f"Failed to send email: {e}")
                return False

            if response.status_code == 202:
                logger.info("Reminder email accepted by Graph.")
                return True

            logger.error(f"Graph API Error ({response.status_code})")
            return False

    async def send_reminder(self, to_email: str, message: str) -> bool:
        if not self.configured:
            raise EmailNotConfigured()
        return await self._send_graph_email(to_email, REMINDER_SUBJECT, render_reminder(message))

    def dispatch_reminder(self, owner_id: str, to_email: str, message: str) -> asyncio.Task:
        """Sends in the background; delivery is not confirmed to the caller."""
        if not self.configured:
            raise EmailNotConfigured()

        task = asyncio.create_task(self.send_reminder(to_email, message))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, owner_id))
        return task

    def _on_done(self, task: asyncio.Task, owner_id: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.error(f"Background reminder failed: {error}")

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
