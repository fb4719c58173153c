"""VisionClaw command line tool."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from visionclaw import __version__
from visionclaw.common import events as topics
from visionclaw.common.events import Event
from visionclaw.common.health import HealthStatus
from visionclaw.common.logging import setup_logging
from visionclaw.config import Config, load_config
from visionclaw.errors import ConfigurationError
from visionclaw.media.audio import AudioBackend, MockAudioBackend, SoundDeviceAudioBackend
from visionclaw.media.video import DirectoryFrameSource, FrameSource, MockFrameSource
from visionclaw.openclaw.bridge import OpenClawBridge
from visionclaw.openclaw.diagnostics import OpenClawDiagnostics
from visionclaw.session import GeminiSession

app = typer.Typer(
    name="visionclaw",
    help="Gemini Live voice/vision sessions with OpenClaw tool calls",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "healthy": "green",
    "degraded": "yellow",
    "unhealthy": "red",
}

SECRET_FIELDS = ("api_key", "gateway_token")


def get_config(config_path: Optional[Path] = None) -> Config:
    """Get configuration."""
    return load_config(config_path)


def redact(data: Any) -> Any:
    """Mask secrets in a config dump."""
    if isinstance(data, dict):
        return {
            k: ("***" if k in SECRET_FIELDS and v else redact(v))
            for k, v in data.items()
        }
    return data


def require_gemini_key(cfg: Config) -> None:
    if not cfg.gemini.is_configured:
        raise ConfigurationError("Gemini API key not configured (gemini.api_key or VISIONCLAW_GEMINI_API_KEY)")


def build_audio_backend(cfg: Config, mock: bool) -> AudioBackend:
    if mock:
        return MockAudioBackend(cfg.session.audio_chunk_bytes)
    return SoundDeviceAudioBackend(
        input_sample_rate=cfg.gemini.input_sample_rate,
        output_sample_rate=cfg.gemini.output_sample_rate,
        chunk_bytes=cfg.session.audio_chunk_bytes,
    )


@app.command()
def run(
    mode: str = typer.Option("glasses", help="Streaming mode: glasses or phone"),
    frames: Optional[Path] = typer.Option(None, help="Directory of images to use as camera frames"),
    mock: bool = typer.Option(False, help="Use mock audio and camera"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Start a live session."""
    cfg = get_config(config_path)
    setup_logging(cfg.device.log_level, json_output=cfg.device.mode == "production")

    if mode not in ("glasses", "phone"):
        console.print(f"[red]Error:[/] unknown mode {mode!r}")
        raise typer.Exit(2)
    cfg.session.streaming_mode = mode  # type: ignore[assignment]

    try:
        require_gemini_key(cfg)
    except ConfigurationError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1)

    source: FrameSource | None = None
    if frames is not None:
        source = DirectoryFrameSource(frames)
    elif mock:
        source = MockFrameSource()

    asyncio.run(_run_session(cfg, build_audio_backend(cfg, mock), source))


async def _run_session(cfg: Config, audio: AudioBackend, source: FrameSource | None) -> None:
    session = GeminiSession(cfg, audio=audio)

    @session.events.on(topics.USER_TRANSCRIPT)
    async def _user(event: Event) -> None:
        if event.data["text"]:
            console.print(f"[cyan]You:[/] {event.data['text']}")

    @session.events.on(topics.TOOL_STATUS)
    async def _tool(event: Event) -> None:
        if event.data["display_text"]:
            console.print(f"[magenta]Tool:[/] {event.data['display_text']}")

    @session.events.on(topics.SESSION_ERROR)
    async def _error(event: Event) -> None:
        if event.data["message"]:
            console.print(f"[red]Error:[/] {event.data['message']}")

    await session.start()
    if not session.is_active:
        await session.settle()
        sys.exit(1)

    console.print(Panel("Session running. Say \"Jarvis stop\" or press Ctrl+C to end.", title="VisionClaw"))
    try:
        if source is not None:
            await session.stream_frames(source)
        while session.is_active or session.is_reconnecting or session.deactivate_requested:
            await asyncio.sleep(0.2)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await session.stop()
        await session.settle()


@app.command()
def ask(
    task: str = typer.Argument(..., help="Task to delegate"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Delegate a single task to OpenClaw and print the answer."""
    cfg = get_config(config_path)
    setup_logging("WARNING")

    async def _ask():
        bridge = OpenClawBridge(cfg)
        return await bridge.delegate_task(task)

    result = asyncio.run(_ask())
    if result.ok:
        console.print(result.text)
    else:
        console.print(f"[red]Error:[/] {result.text}")
        sys.exit(1)


@app.command()
def doctor(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Check configuration and gateway connectivity."""
    cfg = get_config(config_path)
    setup_logging("WARNING")

    async def _doctor():
        checker = OpenClawDiagnostics(cfg).health_checker()
        return await checker.check()

    health = asyncio.run(_doctor())

    table = Table(title="Checks")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")

    gemini_ok = cfg.gemini.is_configured
    table.add_row(
        "gemini_configured",
        "[green]healthy[/]" if gemini_ok else "[red]unhealthy[/]",
        cfg.gemini.model if gemini_ok else "API key missing",
    )
    for result in health.checks:
        color = STATUS_COLORS.get(result.status.value, "white")
        table.add_row(result.name, f"[{color}]{result.status.value}[/]", result.message)

    overall = health.status if gemini_ok else HealthStatus.UNHEALTHY
    color = STATUS_COLORS.get(overall.value, "white")
    console.print(Panel(f"[bold {color}]{overall.value.upper()}[/]", title="VisionClaw"))
    console.print(table)

    if overall is HealthStatus.UNHEALTHY:
        sys.exit(1)


@app.command()
def config(
    json_output: bool = False,
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Show configuration."""
    cfg = get_config(config_path)

    if json_output:
        print(json.dumps(redact(cfg.model_dump()), indent=2, default=str))
        return

    console.print("[bold]Configuration[/]")
    console.print(f"  Device: {cfg.device.name} ({cfg.device.device_id})")
    console.print(f"  Mode: {cfg.device.mode}")
    console.print("\n[bold]Gemini[/]")
    console.print(f"  Model: {cfg.gemini.model}")
    console.print(f"  API key: {'set' if cfg.gemini.is_configured else 'missing'}")
    console.print("\n[bold]OpenClaw[/]")
    console.print(f"  Gateway: {cfg.openclaw.url('/') or 'not set'}")
    console.print(f"  Agent: {cfg.openclaw.agent_id or 'default'}")
    console.print(f"  Token: {'set' if cfg.openclaw.gateway_token else 'missing'}")
    console.print("\n[bold]Session[/]")
    console.print(f"  Streaming mode: {cfg.session.streaming_mode}")
    console.print(f"  Reconnect attempts: {cfg.session.max_reconnect_attempts}")


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold]VisionClaw[/] v{__version__}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
