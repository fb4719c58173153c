"""Gateway connectivity probes used by ``visionclaw doctor``."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from visionclaw.common.health import CheckOutcome, HealthChecker
from visionclaw.config import Config
from visionclaw.openclaw.bridge import CHAT_COMPLETIONS_PATH, chat_model

PROBE_TIMEOUT_SECONDS = 10.0


@dataclass
class ProbeResult:
    """Outcome of a single probe."""

    ok: bool
    detail: str


class OpenClawDiagnostics:
    """Checks that the gateway is reachable and answers chat requests."""

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=PROBE_TIMEOUT_SECONDS, transport=self.transport)

    async def health(self) -> ProbeResult:
        """GET /health."""
        url = self.config.openclaw.url("/health")
        if url is None:
            return ProbeResult(False, "Invalid OpenClaw base URL")

        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            return ProbeResult(False, str(e) or e.__class__.__name__)

        if response.is_success:
            return ProbeResult(True, f"OK ({response.status_code}) {response.text[:120]}")
        return ProbeResult(False, f"HTTP {response.status_code} {response.text[:200]}")

    async def chat_ping(self) -> ProbeResult:
        """POST a "ping" chat completion."""
        url = self.config.openclaw.url(CHAT_COMPLETIONS_PATH)
        if url is None:
            return ProbeResult(False, "Invalid OpenClaw base URL")

        agent_id = self.config.openclaw.agent_id.strip()
        headers = {
            "Authorization": f"Bearer {self.config.openclaw.gateway_token}",
            "Content-Type": "application/json",
        }
        if agent_id:
            headers["x-openclaw-agent-id"] = agent_id
        payload = {
            "model": chat_model(agent_id),
            "user": self.config.openclaw_user,
            "messages": [{"role": "user", "content": "ping"}],
            "stream": False,
        }

        try:
            async with self._client() as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            return ProbeResult(False, str(e) or e.__class__.__name__)

        status = response.status_code
        if not response.is_success:
            return ProbeResult(False, f"HTTP {status} {response.text[:200]}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            content = None
        if isinstance(content, str):
            return ProbeResult(True, f"OK ({status}) {content[:200]}")
        return ProbeResult(True, f"OK ({status}) {response.text[:200]}")

    def health_checker(self) -> HealthChecker:
        """Bundle configuration and gateway probes into one checker."""
        checker = HealthChecker("openclaw")

        async def configured() -> CheckOutcome:
            if self.config.openclaw.is_configured:
                return CheckOutcome(True, self.config.openclaw.url("/") or "")
            return CheckOutcome(False, "Host or gateway token missing")

        async def gateway_health() -> CheckOutcome:
            result = await self.health()
            return CheckOutcome(result.ok, result.detail)

        async def chat() -> CheckOutcome:
            result = await self.chat_ping()
            return CheckOutcome(result.ok, result.detail)

        checker.add_check("openclaw_configured", configured, timeout_seconds=1.0)
        checker.add_check("openclaw_health", gateway_health, timeout_seconds=PROBE_TIMEOUT_SECONDS + 1)
        checker.add_check("openclaw_chat", chat, timeout_seconds=PROBE_TIMEOUT_SECONDS + 1, critical=False)
        return checker
