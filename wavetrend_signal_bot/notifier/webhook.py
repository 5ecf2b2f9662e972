from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

import aiohttp

from ..models import Signal

log = logging.getLogger("webhook")


def build_payload(sig: Signal, secret: str = "") -> Dict[str, Any]:
    """Body accepted by the signals endpoint: type, level, price and time are mandatory."""
    payload: Dict[str, Any] = {
        "type": sig.type,
        "level": sig.level,
        "price": sig.price,
        "time": int(sig.time_ms),
    }
    if sig.symbol:
        payload["symbol"] = sig.symbol
    if secret:
        payload["secret"] = secret
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_signal(self, sig: Signal) -> bool:
        if not self.enabled or not self.url:
            return False

        body = json.dumps(build_payload(sig, self.secret), separators=(",", ":"))
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, data=body, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
                        return False
                    return True
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
            return False
