"""Email service stub — console output in development, pluggable in production."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

logger = logging.getLogger(__name__)


class EmailService:
    """Stub email service. In production, swap for an SMTP/Brevo sender."""

    def __init__(
        self,
        dev_mode: bool = True,
        base_url: str = "http://localhost:8000",
        sender: str = "no-reply@rafflio.com",
    ) -> None:
        self.dev_mode = dev_mode
        self.base_url = base_url.rstrip("/")
        self.sender = sender

    def send_purchase_link(self, to: str, purchase_id: str) -> None:
        """Send the link a buyer uses to come back and pick ticket numbers."""
        link = f"{self.base_url}/payment/success?purchase_id={purchase_id}"
        self._send(
            to=to,
            subject="Your Rafflio purchase",
            body=f"Thanks for your contribution! Once payment is confirmed, "
            f"choose your numbers here: {link}",
            metadata={"type": "purchase_link", "purchase_id": purchase_id},
        )

    def send_confirmation(
        self,
        to: str,
        purchase_id: str,
        numbers: Sequence[int],
        prizes: Sequence[dict[str, Any]],
    ) -> None:
        """Send the selected ticket numbers together with the prize list."""
        numbers_text = ", ".join(str(n) for n in sorted(numbers))
        prizes_text = "; ".join(
            f"{p.get('position', i)}. {p.get('name', '')}" for i, p in enumerate(prizes, start=1)
        )
        self._send(
            to=to,
            subject="🎟️ Your Rafflio numbers are confirmed",
            body=f"Your numbers: {numbers_text}. Prizes: {prizes_text or 'to be announced'}. "
            "Good luck!",
            metadata={
                "type": "confirmation",
                "purchase_id": purchase_id,
                "numbers": list(numbers),
            },
        )

    def _send(
        self,
        to: str,
        subject: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Send email (console in dev, real provider in prod)."""
        if self.dev_mode:
            logger.info(
                "📧 [DEV EMAIL] To: %s | Subject: %s | Body: %s",
                to,
                subject,
                body[:200],
                extra={"email": metadata or {}},
            )
        else:
            raise NotImplementedError("Production email provider not configured")
