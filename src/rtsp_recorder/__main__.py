import argparse
import asyncio
import logging
import signal
import sys

from rtsp_recorder.config import Settings
from rtsp_recorder.errors import ConfigError
from rtsp_recorder.recorder import build_command, recording_mode
from rtsp_recorder.sources import SourceConfig, load_sources
from rtsp_recorder.supervisor import Supervisor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def cmd_record(settings: Settings, sources: list[SourceConfig]) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    relayed = [s.name for s in sources if s.relay is not None]
    logger.info(
        f"=== Recording starting ===\n"
        f"  Cameras      : {', '.join(s.name for s in sources)}\n"
        f"  Relayed      : {', '.join(relayed) or '-'}\n"
        f"  ffmpeg       : {settings.ffmpeg_bin}\n"
        f"  Relay script : {settings.relay_script if relayed else '(not needed)'}"
    )

    supervisor = Supervisor(settings.ffmpeg_bin, settings.relay_script)
    supervisor.initialize(sources)

    await stop_event.wait()
    logger.info("Signal received, shutting down.")
    supervisor.shutdown()


def cmd_check(settings: Settings, sources: list[SourceConfig]) -> None:
    print(f"\n✓ {len(sources)} camera(s) configured\n")
    print(f"  {'Name':<20}  {'Host':<16}  {'Port':>5}  {'Stream':<8}  {'Mode'}")
    print(f"  {'----':<20}  {'----':<16}  {'----':>5}  {'------':<8}  {'----'}")
    for s in sources:
        mode = recording_mode(s)
        print(
            f"  {s.name:<20}  {s.host:<16}  {s.port:>5}  {s.quality.path:<8}"
            f"  {mode.describe()}"
        )
    print()
    for s in sources:
        command = " ".join(build_command(s, ffmpeg_bin=settings.ffmpeg_bin))
        print(f"  {s.name}: {s.redact(command)}")
    if any(s.relay is not None for s in sources):
        print(f"\n  Relay server script: {settings.relay_script}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Continuous RTSP camera recorder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  record    Start one ffmpeg per camera and keep it running, restarting it
            whenever it exits.  Segments go to ./<camera name>/.
            Runs until SIGTERM / Ctrl-C.

  check     Validate the camera file and print the ffmpeg command for
            each camera (passwords masked).

Examples:
  # Validate info.json and see what would be run
  rtsp-recorder check

  # Record every camera listed in cameras.json
  rtsp-recorder record --sources cameras.json
""",
    )
    subparsers = parser.add_subparsers(dest="mode", required=True)

    for mode, help_text in (
        ("record", "Record all cameras until stopped"),
        ("check", "Validate the camera file and show ffmpeg commands"),
    ):
        sp = subparsers.add_parser(mode, help=help_text)
        sp.add_argument(
            "--sources",
            default=None,
            metavar="PATH",
            help="Camera JSON file (default: SOURCES_FILE env var, then info.json)",
        )

    args = parser.parse_args()
    settings = Settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    sources_file = args.sources if args.sources is not None else settings.sources_file
    try:
        sources = load_sources(sources_file)
    except ConfigError as exc:
        logger.error(str(exc))
        sys.exit(1)

    if args.mode == "check":
        cmd_check(settings, sources)
    elif args.mode == "record":
        asyncio.run(cmd_record(settings, sources))


if __name__ == "__main__":
    main()
