import argparse
import shutil
import signal
import sys
import threading

from . import config as config_lib
from . import media, pipeline
from .providers import list_backends
from .script import ScriptError

EXIT_CANCELLED = 130


def _install_sigint_handler(cancel_event: threading.Event):
    """First Ctrl-C cancels the batch gracefully, a second one aborts."""

    def _handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        print("\n⏹️ Cancelling... waiting for in-flight jobs to stop (Ctrl-C again to abort)")
        cancel_event.set()

    return signal.signal(signal.SIGINT, _handler)


def _run(args) -> int:
    cli_dict = {k: v for k, v in vars(args).items() if v is not None}
    cancel_event = threading.Event()
    previous = _install_sigint_handler(cancel_event)
    try:
        result = pipeline.run_batch(cli_dict, cancel_event=cancel_event)
    except (ScriptError, FileNotFoundError, ValueError) as e:
        print(f"❌ {e}")
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)

    if result.cancelled:
        return EXIT_CANCELLED
    if not result.ok:
        return 1
    return 0


def _stitch(args) -> int:
    conf = config_lib.resolve_config({"output": args.output_dir}, args.config)
    output_dir = conf.batch.output_dir
    output_file = args.out or f"{output_dir}/{conf.media.final_movie}"
    try:
        final_path = pipeline.stitch_output_dir(
            output_dir,
            output_file,
            filename_template=conf.batch.filename_template,
            runner=pipeline.make_runner(conf),
        )
    except (media.MediaError, ValueError) as e:
        print(f"❌ {e}")
        return 1
    print(f"✅ Final movie: {final_path}")
    return 0


def _check() -> int:
    print("Checking dependencies...")
    status = 0
    if media.check_ffmpeg():
        print("✅ ffmpeg found.")
    else:
        print("❌ ffmpeg NOT found.")
        status = 1

    if shutil.which("gcloud"):
        print("✅ gcloud found.")
    else:
        print("⚠️ gcloud NOT found in PATH (needed only for gs:// artifacts).")

    print(f"Backends: {', '.join(list_backends())}")
    return status


def main():
    parser = argparse.ArgumentParser(
        prog="cinema-studio", description="Batch AI video generation studio"
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # RUN
    run_parser = subparsers.add_parser("run", help="Generate every segment of a script")
    run_parser.add_argument(
        "--script", "-s", type=str, default=pipeline.DEFAULT_SCRIPT_PATH, help="Script JSON"
    )
    run_parser.add_argument("--config", type=str, help="YAML config overriding defaults")
    run_parser.add_argument("--output", "-o", type=str, help="Output directory")
    run_parser.add_argument("--workers", "-w", type=int, help="Max concurrent jobs")
    run_parser.add_argument("--max-attempts", type=int, help="Submit attempts per segment")
    run_parser.add_argument("--poll-interval", type=float, help="Seconds between polls")
    run_parser.add_argument("--job-timeout", type=float, help="Per-job deadline (s)")
    run_parser.add_argument(
        "--backend", type=str, help="Backend name or package.module:factory path"
    )
    run_parser.add_argument(
        "--stitch", action="store_true", help="Stitch clips into the final movie"
    )
    run_parser.add_argument(
        "--chain",
        action="store_true",
        help="Generate sequentially, starting each clip from the previous last frame",
    )
    run_parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    # STITCH
    stitch_parser = subparsers.add_parser("stitch", help="Stitch existing clips")
    stitch_parser.add_argument("--output-dir", type=str, help="Directory holding the clips")
    stitch_parser.add_argument("--out", type=str, help="Final movie path")
    stitch_parser.add_argument("--config", type=str, help="YAML config overriding defaults")

    # CHECK
    subparsers.add_parser("check", help="Verify dependencies")

    args = parser.parse_args()

    if args.command == "run":
        sys.exit(_run(args))

    elif args.command == "stitch":
        sys.exit(_stitch(args))

    elif args.command == "check":
        sys.exit(_check())

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
