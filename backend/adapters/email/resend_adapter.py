"""
Resend email adapter for billing lifecycle notifications.
"""

import asyncio
import logging
from datetime import datetime

import resend

from core.interfaces.services import Notifier
from core.plans import PLANS
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


def _format_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


def _plan_name(plan: str) -> str:
    config = PLANS.get(plan)
    return config["name"] if config else plan.title()


class ResendNotifier(Notifier):
    """Notifier that sends lifecycle emails through the Resend API."""

    def __init__(self):
        if settings.resend_api_key:
            resend.api_key = settings.resend_api_key
        self._from_email = settings.resend_from_email
        self._frontend_url = settings.frontend_url

    async def _send(self, to_email: str, subject: str, html: str) -> bool:
        """
        Send one email.

        Returns:
            True if sent (or logged in development), False otherwise
        """
        if not settings.resend_api_key:
            logger.info(f"[DEV] Email to {to_email}: {subject}")
            return True

        try:
            await asyncio.to_thread(
                resend.Emails.send,
                {
                    "from": self._from_email,
                    "to": to_email,
                    "subject": subject,
                    "html": html,
                },
            )
            return True
        except Exception as e:
            logger.error(f"Failed to send email '{subject}' to {to_email}: {e}")
            return False

    async def send_trial_started(self, to_email: str, name: str, trial_end: datetime) -> bool:
        return await self._send(
            to_email,
            "Your PrepAcademy free trial has started",
            self._render(
                name,
                "Your free trial is active",
                f"You have full access to PrepAcademy until <strong>{_format_date(trial_end)}</strong>. "
                "Pick a plan any time before then to keep studying without interruption.",
                "Choose a plan",
                f"{self._frontend_url}/subscription",
            ),
        )

    async def send_subscription_created(
        self, to_email: str, name: str, plan: str, end_date: datetime
    ) -> bool:
        return await self._send(
            to_email,
            "Welcome to PrepAcademy Premium",
            self._render(
                name,
                f"Your {_plan_name(plan)} plan is active",
                f"Thanks for subscribing. Your current billing period runs until "
                f"<strong>{_format_date(end_date)}</strong>.",
                "Start studying",
                f"{self._frontend_url}/dashboard",
            ),
        )

    async def send_subscription_canceled(
        self, to_email: str, name: str, plan: str, access_until: datetime
    ) -> bool:
        return await self._send(
            to_email,
            "Your PrepAcademy subscription was canceled",
            self._render(
                name,
                "Subscription canceled",
                f"Your {_plan_name(plan)} plan will not renew. You keep full access until "
                f"<strong>{_format_date(access_until)}</strong>.",
                "Resubscribe",
                f"{self._frontend_url}/subscription",
            ),
        )

    async def send_payment_failed(
        self, to_email: str, name: str, plan: str, next_attempt: datetime
    ) -> bool:
        return await self._send(
            to_email,
            "Action needed: your PrepAcademy payment failed",
            self._render(
                name,
                "We couldn't process your payment",
                f"The renewal charge for your {_plan_name(plan)} plan failed. We'll try again on "
                f"<strong>{_format_date(next_attempt)}</strong>. Please check your payment method.",
                "Update payment method",
                f"{self._frontend_url}/subscription",
            ),
        )

    async def send_payment_received(
        self, to_email: str, name: str, plan: str, next_payment: datetime
    ) -> bool:
        return await self._send(
            to_email,
            "Payment received, thank you",
            self._render(
                name,
                "Payment received",
                f"Your {_plan_name(plan)} plan has been renewed. Your next payment is due on "
                f"<strong>{_format_date(next_payment)}</strong>.",
                "View subscription",
                f"{self._frontend_url}/subscription",
            ),
        )

    async def send_renewal_reminder(
        self, to_email: str, name: str, plan: str, renewal_date: datetime, amount: float
    ) -> bool:
        return await self._send(
            to_email,
            "Your PrepAcademy subscription renews soon",
            self._render(
                name,
                "Upcoming renewal",
                f"Your {_plan_name(plan)} plan renews on <strong>{_format_date(renewal_date)}</strong> "
                f"for <strong>${amount:.2f}</strong>.",
                "Manage subscription",
                f"{self._frontend_url}/subscription",
            ),
        )

    def _render(self, name: str, heading: str, body: str, cta_label: str, cta_url: str) -> str:
        """Generate lifecycle email HTML."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background-color: #F5F7FB; padding: 40px 20px;">
            <div style="max-width: 560px; margin: 0 auto; background: white; border-radius: 16px; padding: 40px; box-shadow: 0 2px 8px rgba(0,0,0,0.05);">
                <h1 style="color: #1A1A2E; font-size: 24px; margin: 0 0 24px; text-align: center;">PrepAcademy</h1>

                <h2 style="color: #1A1A2E; font-size: 20px; margin-bottom: 16px;">{heading}</h2>

                <p style="color: #4A4A68; line-height: 1.6; margin-bottom: 24px;">
                    Hi {name},<br><br>
                    {body}
                </p>

                <div style="text-align: center; margin: 32px 0;">
                    <a href="{cta_url}" style="display: inline-block; background: #3B5BDB; color: white; text-decoration: none; padding: 14px 32px; border-radius: 12px; font-weight: 500;">
                        {cta_label}
                    </a>
                </div>

                <hr style="border: none; border-top: 1px solid #F1F3F5; margin: 32px 0;">

                <p style="color: #8B8BA7; font-size: 12px; text-align: center;">
                    Questions about billing? Reply to this email.
                </p>
            </div>
        </body>
        </html>
        """
