"""Send the daily digest to the configured Telegram chat."""

from __future__ import annotations

import asyncio
import os

from dotenv import load_dotenv

from tokyosniper.jobs.pipeline import run_daily_digest


async def main() -> None:
    load_dotenv()
    if not os.environ.get("TELEGRAM_CHAT_ID"):
        raise SystemExit("TELEGRAM_CHAT_ID env var required")
    result = await run_daily_digest(gate=False)
    print("Digest sent" if result.get("sent") else "Digest was not delivered", result)


if __name__ == "__main__":
    asyncio.run(main())
