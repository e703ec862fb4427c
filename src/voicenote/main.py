"""Command-line entry point"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .app import create_orchestrator, setup_logging
from .core.config import ConfigManager
from .core.document_codec import decode
from .core.errors import (
    NothingToSave,
    RecognitionError,
    RecognitionNotConfigured,
    VoiceNoteError,
)
from .core.models import ArtifactFormat, AudioSource, Segment
from .core.whisper_api import SUPPORTED_LANGUAGES


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voicenote", description="Voice-to-text note taking")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--log-level", help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("devices", help="List audio capture devices")

    record = subparsers.add_parser("record", help="Record a note until Enter is pressed")
    record.add_argument("--title", help="Document title")
    record.add_argument("--source", choices=[s.value for s in AudioSource], help="Capture source")
    record.add_argument("--device", help="Input device id or name")
    record.add_argument("--format", choices=[f.value for f in ArtifactFormat], help="Audio file format")
    record.add_argument("--realtime", action="store_true", default=None, help="Transcribe while recording")
    record.add_argument(
        "--language",
        choices=[code for code, _ in SUPPORTED_LANGUAGES],
        help="Recognition language code",
    )
    record.add_argument("--output-dir", type=Path, help="Directory for the saved files")

    show = subparsers.add_parser("show", help="Print a saved document")
    show.add_argument("file", type=Path)

    return parser


def _format_segment(segment: Segment) -> str:
    return f"[{segment.provenance.value}] {segment.text}"


def list_devices(config_manager: ConfigManager) -> int:
    orchestrator = create_orchestrator(config_manager.config)
    devices = orchestrator.list_devices()
    if not devices:
        print("No audio input devices found")
        return 1
    for device in devices:
        marker = "*" if device.is_default else " "
        print(f"{marker} {device.id:>3}  {device.label} ({device.channels} ch, {device.sample_rate:.0f} Hz)")
    return 0


async def record(config_manager: ConfigManager, args: argparse.Namespace) -> int:
    config = config_manager.config
    orchestrator = create_orchestrator(config, save_directory=args.output_dir)
    if args.title:
        orchestrator.title = args.title
    if args.language:
        orchestrator.set_language(args.language)

    source = AudioSource(args.source) if args.source else config.audio_source
    artifact_format = ArtifactFormat(args.format) if args.format else config.audio_format
    realtime = config.realtime_enabled if args.realtime is None else args.realtime
    device_id = args.device or config.last_selected_device

    def _show_partial(segments):
        if segments and segments[-1].provisional:
            print(f"\r... {segments[-1].text}", end="", flush=True)

    orchestrator.signals.segments_changed.connect(_show_partial)

    await orchestrator.start_session(source, device_id, artifact_format, realtime)
    if args.device:
        config_manager.set_last_selected_device(args.device)

    await asyncio.to_thread(input, "Recording... press Enter to stop\n")

    try:
        await orchestrator.stop_session()
    except (RecognitionNotConfigured, RecognitionError) as e:
        print(f"Transcription skipped: {e}")

    print()
    print(orchestrator.title)
    for segment in orchestrator.document.segments:
        print(_format_segment(segment))

    try:
        document_path = await orchestrator.save_document()
        print(f"Document saved: {document_path}")
    except NothingToSave:
        print("No transcript to save")

    audio_path = await orchestrator.save_audio(artifact_format=artifact_format)
    print(f"Audio saved: {audio_path}")
    return 0


def show(path: Path) -> int:
    document = decode(path.read_text(encoding="utf-8"))
    print(document.title)
    if document.language:
        print(f"Language: {document.language}")
    for segment in document.segments:
        print(_format_segment(segment))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line"""
    args = _build_parser().parse_args(argv)
    config_manager = ConfigManager(args.config)
    setup_logging(args.log_level or config_manager.config.log_level)

    try:
        if args.command == "devices":
            return list_devices(config_manager)
        if args.command == "record":
            return asyncio.run(record(config_manager, args))
        if args.command == "show":
            return show(args.file)
    except VoiceNoteError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception(f"Application error: {e}")
        return 1
    return 2


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
