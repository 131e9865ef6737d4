"""
Command-line voice client.

Loads .env, builds the config, wires the sounddevice microphone and
speaker, and holds one call open until Ctrl+C or --duration elapses.
Transcripts and state changes are printed from the call-state facade.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from typing import Callable

from dotenv import load_dotenv

from adapters.auth.signed_url import SignedUrlProvider
from adapters.capture.sounddevice_source import SounddeviceSource, microphone_available
from adapters.playback.sounddevice_sink import SounddeviceSink
from config import AppConfig, ConfigurationError
from observability.logger import configure, log_event
from orchestrator.runtime import CallRuntime
from orchestrator.state_dataclass import CallSnapshot


def _printer() -> Callable[[CallSnapshot], None]:
    """Observer that prints only what changed between snapshots."""
    last = CallSnapshot()

    def _on_snapshot(snapshot: CallSnapshot) -> None:
        nonlocal last
        if snapshot.call_state is not last.call_state:
            print(f"[call] {snapshot.call_state.value}")
        if snapshot.mode is not last.mode and snapshot.mode is not None:
            print(f"[agent] {snapshot.mode.value.lower()}")
        if snapshot.error_message and snapshot.error_message != last.error_message:
            print(f"[error] {snapshot.error_message}")
        if snapshot.is_muted != last.is_muted:
            print("[mic] muted" if snapshot.is_muted else "[mic] unmuted")
        if len(snapshot.transcripts) > len(last.transcripts):
            for line in snapshot.transcripts[len(last.transcripts):]:
                print(f"{line.role.value:>5}: {line.text}")
        last = snapshot

    return _on_snapshot


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Talk to an ElevenLabs conversational agent.")
    ap.add_argument("--duration", type=float, default=None, help="End the call after N seconds.")
    ap.add_argument("--text", default=None, help="Send this text message once connected.")
    ap.add_argument(
        "--no-signed-url",
        action="store_true",
        help="Skip the signed-URL exchange and authorize the socket directly.",
    )
    return ap.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    config = AppConfig.load_from_env()
    if args.no_signed_url:
        config = replace(config, use_signed_url=False)
    configure(json_lines=config.enable_json_logs)
    log_event({
        "event_type": "CLI_STARTED",
        "env": config.env,
        "agent_id": config.elevenlabs_agent_id,
        "use_signed_url": config.use_signed_url,
    })

    try:
        config.validate()
    except ConfigurationError as e:
        log_event({"event_type": "CONFIG_INVALID", "error": str(e)})
        print(f"[error] {e}")
        return 2

    sink = SounddeviceSink()
    runtime = CallRuntime(
        config=config,
        source=SounddeviceSource(blocksize=config.audio_buffer_size),
        sink=sink,
        permission=microphone_available,
    )
    if config.use_signed_url and config.is_configured:
        runtime.transport.attach_signed_url_provider(SignedUrlProvider(
            api_key=config.elevenlabs_api_key or "",
            agent_id=config.elevenlabs_agent_id or "",
        ))
    runtime.facade.subscribe(_printer())

    if not await runtime.start_call():
        await sink.close()
        return 1

    ended = asyncio.Event()
    runtime.facade.subscribe(
        lambda snapshot: ended.set() if not snapshot.is_connected else None
    )

    if args.text:
        await runtime.send_user_message(args.text)

    try:
        await asyncio.wait_for(ended.wait(), timeout=args.duration)
    except asyncio.TimeoutError:
        pass
    finally:
        await runtime.end_call()
        await sink.close()

    return 0 if runtime.snapshot.error_message is None else 1


def main(argv: list[str] | None = None) -> int:
    """Console entry point."""
    load_dotenv()
    args = _parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        log_event({"event_type": "CLI_INTERRUPTED"})
        return 130


if __name__ == "__main__":
    sys.exit(main())
