"""HTTP relay from Gemini tool calls to an OpenClaw gateway."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import httpx

from visionclaw.common.logging import get_logger, truncate
from visionclaw.config import Config
from visionclaw.gemini.models import EXECUTE_TOOL, ToolCallStatus, ToolResult

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
MAX_KEY_LINKS = 6

_URL_RE = re.compile(r"(https?://[^\s)\]}>\"']+)")

TOOL_RESPONSE_CONSTRAINTS = """\
[tool_response_constraints]
- Return a concise tool response suitable for speaking aloud (prefer <= 600 characters; hard max 1800).
- Include only final outcomes and links (RSS/MP3/etc). Do NOT include full scripts, transcripts, or long logs.
[/tool_response_constraints]"""


@dataclass(frozen=True)
class DeviceLocation:
    """Location fix attached to delegated tasks."""

    latitude: float
    longitude: float
    accuracy_m: float = 0.0
    timestamp: datetime | None = None


LocationProvider = Callable[[], Awaitable["DeviceLocation | None"]]
Clock = Callable[[], datetime]


def _local_now() -> datetime:
    return datetime.now().astimezone()


def format_utc_offset(offset: timedelta | None) -> str:
    """Format an offset as ``+HH:MM`` / ``-HH:MM``."""
    seconds = int(offset.total_seconds()) if offset else 0
    sign = "+" if seconds >= 0 else "-"
    seconds = abs(seconds)
    return f"{sign}{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}"


def iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def location_block(location: DeviceLocation, now: datetime) -> str:
    stamp = iso_utc(location.timestamp or now)
    return (
        "[device_location]\n"
        f"lat: {location.latitude}\n"
        f"lon: {location.longitude}\n"
        f"accuracy_m: {max(0.0, location.accuracy_m)}\n"
        f"timestamp: {stamp}\n"
        "[/device_location]"
    )


def device_time_block(now: datetime) -> str:
    """Describe the device clock so the agent reads relative dates correctly."""
    tz_name = now.tzname() or "UTC"
    return (
        "[device_time]\n"
        f"timezone: {tz_name}\n"
        f"utc_offset: {format_utc_offset(now.utcoffset())}\n"
        f"local_now: {now.isoformat(timespec='milliseconds')}\n"
        f"interpret_dates_and_times_in_this_request_as: {tz_name}\n"
        "[/device_time]"
    )


def clamp_tool_response(text: str, max_chars: int = 1800) -> str:
    """Shorten agent output for speaking aloud, keeping up to six links."""
    s = text.strip()
    if len(s) <= max_chars:
        return s

    urls: list[str] = []
    for match in list(_URL_RE.finditer(s))[:MAX_KEY_LINKS]:
        url = match.group(1)
        if url not in urls:
            urls.append(url)

    out = s[:max_chars] + "\n\n(Truncated for voice.)"
    if urls:
        out += "\nKey links:\n" + "\n".join(f"- {u}" for u in urls)
    return out


def _stripped(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s or None
    return None


def extract_assistant_content(payload: Any) -> str | None:
    """Pull the assistant text out of a chat-completions response."""
    if not isinstance(payload, dict):
        return None

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return _stripped(payload.get("output_text"))

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        return None

    content = message.get("content")
    if isinstance(content, str):
        return _stripped(content)

    if isinstance(content, list):
        parts = []
        for part in content:
            if not isinstance(part, dict):
                continue
            text = _stripped(part.get("text")) or _stripped(part.get("content"))
            if text:
                parts.append(text)
        if parts:
            return "\n".join(parts)

    return None


def chat_model(agent_id: str) -> str:
    return f"openclaw:{agent_id}" if agent_id else "openclaw"


class OpenClawBridge:
    """Delegates tasks to the OpenClaw chat-completions endpoint.

    A session key ties the requests of one live session together on the
    gateway. Call :meth:`reset_session` when a new live session starts.

    Failures other than cancellation never raise: they come back as
    ``ToolResult.failure`` and a failed :attr:`last_tool_call_status`.
    """

    def __init__(
        self,
        config: Config,
        transport: httpx.AsyncBaseTransport | None = None,
        location_provider: LocationProvider | None = None,
        clock: Clock = _local_now,
    ) -> None:
        self.config = config
        self.transport = transport
        self.location_provider = location_provider or self._configured_location
        self.clock = clock
        self.logger = get_logger("openclaw_bridge")
        self.on_status_changed: Callable[[ToolCallStatus], None] | None = None

        self._status = ToolCallStatus.idle()
        self.session_key = self._new_session_key()

    @property
    def last_tool_call_status(self) -> ToolCallStatus:
        return self._status

    @last_tool_call_status.setter
    def last_tool_call_status(self, status: ToolCallStatus) -> None:
        self._status = status
        if self.on_status_changed:
            self.on_status_changed(status)

    @property
    def agent_id(self) -> str:
        return self.config.openclaw.agent_id.strip()

    def _new_session_key(self) -> str:
        agent = self.agent_id or "openclaw"
        stamp = iso_utc(datetime.now(timezone.utc))
        return f"visionclaw:{self.config.device.device_id}:{agent}:{stamp}"

    def reset_session(self) -> None:
        self.session_key = self._new_session_key()
        self.logger.info("openclaw_session_reset", session_key=self.session_key)

    async def _configured_location(self) -> DeviceLocation | None:
        oc = self.config.openclaw
        if oc.latitude is None or oc.longitude is None:
            return None
        return DeviceLocation(oc.latitude, oc.longitude, oc.location_accuracy_m)

    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.openclaw.gateway_token}",
            "Content-Type": "application/json",
            "x-openclaw-session-key": self.session_key,
        }
        if self.agent_id:
            headers["x-openclaw-agent-id"] = self.agent_id
        return headers

    async def build_task_text(self, task: str) -> str:
        """Append device context blocks to the spoken task."""
        now = self.clock()
        blocks = [task.strip()]

        if self.config.openclaw.share_location:
            location = await self.location_provider()
            if location is not None:
                blocks.append(location_block(location, now))

        blocks.append(device_time_block(now))
        blocks.append(TOOL_RESPONSE_CONSTRAINTS)
        return "\n\n".join(blocks)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.openclaw.request_timeout_seconds,
            transport=self.transport,
        )

    async def delegate_task(self, task: str, tool_name: str = EXECUTE_TOOL) -> ToolResult:
        """Run a task on the gateway and return the (clamped) answer.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled. The
                status is set to cancelled first.
        """
        self.last_tool_call_status = ToolCallStatus.executing(tool_name)

        if not self.config.openclaw.is_configured:
            self.last_tool_call_status = ToolCallStatus.failed(tool_name, "OpenClaw not configured")
            return ToolResult.failure("OpenClaw not configured. Set host and gateway token.")

        try:
            url = self.config.openclaw.url(CHAT_COMPLETIONS_PATH)
            if url is None:
                self.last_tool_call_status = ToolCallStatus.failed(tool_name, "Invalid URL")
                return ToolResult.failure("Invalid gateway URL")

            payload = {
                "model": chat_model(self.agent_id),
                "user": self.config.openclaw_user,
                "messages": [{"role": "user", "content": await self.build_task_text(task)}],
                "stream": False,
            }
            self.logger.info("openclaw_task_sent", tool=tool_name, task=truncate(task))

            async with self._client() as client:
                response = await client.post(url, headers=self.headers(), json=payload)

            if not response.is_success:
                code = response.status_code
                self.logger.warning("openclaw_chat_failed", status=code, body=truncate(response.text))
                self.last_tool_call_status = ToolCallStatus.failed(tool_name, f"HTTP {code}")
                return ToolResult.failure(f"Agent returned HTTP {code}")

            try:
                content = extract_assistant_content(response.json())
            except ValueError:
                content = None
            if content is None:
                content = response.text or "OK"
            text = clamp_tool_response(content, self.config.openclaw.max_response_chars)

            self.logger.info("openclaw_result", tool=tool_name, result=truncate(text))
            self.last_tool_call_status = ToolCallStatus.completed(tool_name)
            return ToolResult.success(text)

        except asyncio.CancelledError:
            self.logger.info("openclaw_task_cancelled", tool=tool_name)
            self.last_tool_call_status = ToolCallStatus.cancelled(tool_name)
            raise
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__
            self.logger.warning("openclaw_agent_error", tool=tool_name, error=error)
            self.last_tool_call_status = ToolCallStatus.failed(tool_name, error)
            return ToolResult.failure(f"Agent error: {error}")
        except Exception as e:
            error = str(e) or e.__class__.__name__
            self.logger.exception("openclaw_task_failed", tool=tool_name, error=error)
            self.last_tool_call_status = ToolCallStatus.failed(tool_name, error)
            return ToolResult.failure(f"Agent error: {error}")
