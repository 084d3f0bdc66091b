"""
Command line entry points.

    scribe serve [--host HOST] [--port PORT]
    scribe record [--source mic|tab] [--server URL]
    scribe summarize SESSION_ID [--server URL]
"""

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import ConfigManager
from .logger import ScribeLogger

RECORD_HELP = """Commands:
  p  pause      r  resume     s  stop
  t  transcript m  summarize  n  new recording
  q  quit"""


def _setup(config_path=None):
    load_dotenv(Path.cwd() / ".env")
    ConfigManager.reset()
    ConfigManager.initialize(config_path=config_path)
    log_config = ConfigManager.get_config_section('logging')
    ScribeLogger.configure(level=log_config.get('level') or "INFO", log_file=log_config.get('file'))


def _make_client(server_url=None):
    from .upload_client import ScribeClient

    client_config = ConfigManager.get_config_section('client')
    return ScribeClient(
        server_url=server_url or os.environ.get("SCRIBE_SERVER_URL") or client_config.get('server_url'),
        timeout=client_config.get('request_timeout') or 60.0,
    )


def cmd_serve(args):
    from .server import run_server
    run_server(host=args.host, port=args.port)
    return 0


def cmd_summarize(args):
    client = _make_client(args.server)
    summary, success = client.summarize(args.session_id)
    print(summary)
    return 0 if success else 1


def cmd_record(args):
    from .recorder import AudioSource, ChunkRecorder, RecorderState, SourceType
    from .upload_client import UploadPipeline

    client_config = ConfigManager.get_config_section('client')
    client = _make_client(args.server)
    if not client.is_server_available():
        print(f"Warning: no Scribe server responding at {client.server_url}")

    pipeline = UploadPipeline(
        client,
        min_chunk_bytes=client_config.get('min_chunk_bytes') or 2048,
        max_retries=client_config.get('max_retries', 2),
        retry_delay=(client_config.get('retry_delay_ms') or 1000) / 1000.0,
    )

    def on_status(session, message):
        print(f"[{session.source.value}] {message}")

    def on_transcript(session, entries):
        if entries:
            print(f"  > {entries[-1]}")

    recorder = ChunkRecorder(
        pipeline,
        audio_source=AudioSource(
            sample_rate=client_config.get('sample_rate') or 48000,
            loopback_device=client_config.get('loopback_device'),
        ),
        chunk_ms=client_config.get('chunk_ms') or 20000,
        source=SourceType(args.source or client_config.get('source') or "mic"),
        on_status=on_status,
        on_transcript=on_transcript,
    )

    print(RECORD_HELP)
    recorder.start()
    try:
        for line in sys.stdin:
            command = line.strip().lower()
            if command == "p":
                recorder.pause()
            elif command == "r":
                recorder.resume()
            elif command == "s":
                recorder.stop()
            elif command == "n":
                recorder.stop()
                recorder.wait_for_state(RecorderState.STOPPED, timeout=5.0)
                recorder.start(SourceType(args.source or client_config.get('source') or "mic"))
            elif command == "t":
                session = recorder.session
                if session is not None:
                    print(session.transcript.text() or "(empty)")
                    if session.error:
                        print(f"Error: {session.error}")
            elif command == "m":
                session = recorder.session
                if session is not None:
                    summary, _ = client.summarize(session.token)
                    print(summary)
            elif command == "q":
                break
            elif command:
                print(RECORD_HELP)
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        recorder.wait_for_state(RecorderState.STOPPED, RecorderState.IDLE, timeout=5.0)
        print("Waiting for the last chunk to upload...")
        recorder.wait_until_idle(timeout=(client_config.get('request_timeout') or 60.0) * 3)
        recorder.close()

    session = recorder.session
    if session is not None:
        print(f"Session: {session.token}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="scribe", description="Chunked live transcription and summaries")
    parser.add_argument("--config", "-c", help="Path to config.yaml (default: $SCRIBE_CONFIG or ./config.yaml)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the transcription server")
    serve.add_argument("--host", help="Bind address (default from config)")
    serve.add_argument("--port", type=int, help="Port (default from config)")
    serve.set_defaults(func=cmd_serve)

    record = subparsers.add_parser("record", help="Record and transcribe live audio")
    record.add_argument("--source", choices=["mic", "tab"], help="Audio source (default from config)")
    record.add_argument("--server", help="Server URL (default: $SCRIBE_SERVER_URL or config)")
    record.set_defaults(func=cmd_record)

    summarize = subparsers.add_parser("summarize", help="Summarize a recorded session")
    summarize.add_argument("session_id", help="Session token printed by 'scribe record'")
    summarize.add_argument("--server", help="Server URL (default: $SCRIBE_SERVER_URL or config)")
    summarize.set_defaults(func=cmd_summarize)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    _setup(args.config)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
