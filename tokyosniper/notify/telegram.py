"""Telegram Bot API transport."""

from __future__ import annotations

import logging
import os

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier:
    """Sends HTML messages to one chat, or only logs them with ``NOTIFY_PROVIDER=log``."""

    def __init__(
        self,
        *,
        token: str | None = None,
        chat_id: str | None = None,
        provider: str | None = None,
        session: httpx.AsyncClient | None = None,
        base_url: str = TELEGRAM_API,
    ) -> None:
        self.token = token if token is not None else os.environ.get("TELEGRAM_BOT_TOKEN", "")
        self.chat_id = chat_id if chat_id is not None else os.environ.get("TELEGRAM_CHAT_ID", "")
        self.provider = provider or os.environ.get("NOTIFY_PROVIDER") or ("telegram" if self.token else "log")
        self.session = session
        self.base_url = base_url.rstrip("/")

    async def send(self, text: str) -> bool:
        if self.provider == "log":
            logger.info("Telegram (log) → %s:\n%s", self.chat_id or "-", text)
            return True
        if not self.token or not self.chat_id:
            logger.warning("TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID missing; message dropped")
            return False
        try:
            response = await self._post(text)
        except httpx.HTTPError as exc:
            logger.warning("Telegram send failed: %s", exc)
            return False
        if response.status_code >= 400:
            logger.warning("Telegram rejected message: %s %s", response.status_code, response.text[:200])
            return False
        return True

    async def _post(self, text: str) -> httpx.Response:
        url = f"{self.base_url}/bot{self.token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if self.session is not None:
            return await self.session.post(url, json=payload)
        async with httpx.AsyncClient(timeout=15.0) as client:
            return await client.post(url, json=payload)
