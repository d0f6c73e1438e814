import argparse
import logging
import signal
import sys
import textwrap
from contextlib import contextmanager
from functools import wraps
from pathlib import Path

from . import Exporter, ExportSettings, AtExportError, ExportCancelled
from .events import EventChannel, LogEntry, Progress
from .export.controller import ExportJob
from .export.sink import resolve_sink
from .settings import SETTING_OUTPUT_DIR

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def with_exporter(func):
    """Decorator for commands that need an exporter.

    The decorated function will receive (exporter, output, args) and returns an exit status.
    The wrapper takes (load_exporter_fn, output, args), loads the exporter, installs the
    SIGINT handler for the duration of the command and maps errors to exit statuses.
    """
    @wraps(func)
    def wrapper(load_exporter_fn, output, args):
        try:
            exporter = load_exporter_fn()
            with _cancel_on_interrupt(exporter, output):
                return func(exporter, output, args)
        except ExportCancelled as e:
            print(str(e), file=output)
            return EXIT_CANCELLED
        except (AtExportError, OSError) as e:
            print(f"Error: {e}", file=output)
            return EXIT_FAILURE
    return wrapper


@contextmanager
def _cancel_on_interrupt(exporter: Exporter, output):
    """First Ctrl-C cancels the export cooperatively, a second one interrupts immediately."""
    interrupted = False

    def handler(signum, frame):
        nonlocal interrupted
        if interrupted:
            raise KeyboardInterrupt
        interrupted = True
        print("Cancelling... (press Ctrl-C again to abort immediately)", file=output)
        exporter.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _event_printer(output, verbose: bool):
    def listener(event):
        if isinstance(event, LogEntry):
            print(f"[{event.level}] {event.message}", file=output)
        elif verbose and isinstance(event, Progress):
            print(f"{event.stage}: {event.current}/{event.total}", file=output)
    return listener


def _ask_for_location(name: str) -> str | None:
    answer = input(f"Save {name} to (file or directory, empty to skip): ").strip()
    return answer or None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='atexport',
        description='Export the records and blobs of an AT Protocol repository into ZIP bundles.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Examples:
              atexport records --car repo.car --output exports
              atexport records --did did:plc:abc123 --handle alice.test
              atexport blobs --did did:plc:abc123
            ''').strip()
    )
    parser.add_argument(
        '--config',
        metavar='PATH',
        help='Path to a TOML settings file. If not provided, uses the ATEXPORT_CONFIG environment variable.')
    parser.add_argument(
        '--pds',
        metavar='URL',
        help='Base URL of the PDS hosting the repository (default: service.pds from settings or '
             'https://bsky.social)')
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Print progress snapshots in addition to log messages')
    parser.add_argument(
        '--log-file',
        metavar='PATH',
        help='Path to log file for operation logging. If not provided, uses logging.path from settings or no '
             'logging.')
    parser.add_argument(
        '--log-level',
        metavar='LEVEL',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to INFO when --log-file is provided.')
    subparsers = parser.add_subparsers(
        dest='command',
        title='Commands',
        description='Available export commands',
        help='Use "atexport COMMAND --help" for command-specific help',
        required=True,
    )

    def add_output_arguments(subparser):
        subparser.add_argument(
            '--output',
            metavar='DIR',
            help='Directory bundles are written to (default: export.output_dir from settings or the current '
                 'directory)')
        subparser.add_argument(
            '--ask',
            action='store_true',
            help='Ask for the location of every bundle; an empty answer skips the bundle')

    parser_records = subparsers.add_parser(
        'records',
        help='Export the records of a repository as JSON files',
        description='Decodes a repository archive, reconstructs every record with its collection and record key, '
                    'and writes them as JSON files into one or more ZIP bundles.')
    source = parser_records.add_mutually_exclusive_group(required=True)
    source.add_argument('--car', metavar='FILE', help='Local repository archive (CAR file)')
    source.add_argument('--did', metavar='DID', help='Download the repository of this DID')
    parser_records.add_argument('--handle', metavar='HANDLE', help='Handle used in bundle names')
    parser_records.add_argument(
        '--verify',
        action='store_true',
        help='Treat blocks whose digest does not match their CID as undecodable')
    add_output_arguments(parser_records)
    parser_records.set_defaults(method=_records)

    parser_blobs = subparsers.add_parser(
        'blobs',
        help='Archive the blobs of a repository',
        description='Downloads blobs with bounded concurrency and retries and writes them into one or more ZIP '
                    'bundles. Large exports are split into parts saved one after another.')
    parser_blobs.add_argument('--did', metavar='DID', required=True, help='Repository the blobs belong to')
    parser_blobs.add_argument(
        '--cid',
        metavar='CID',
        action='append',
        help='Blob to export; may be repeated. Without it every blob of the repository is exported.')
    parser_blobs.add_argument('--label', metavar='LABEL', help='Identifier used in bundle names')
    add_output_arguments(parser_blobs)
    parser_blobs.set_defaults(method=_blobs)

    parser_car = subparsers.add_parser(
        'car',
        help='Save the raw repository archive',
        description='Downloads the repository of a DID and saves the CAR file unchanged.')
    parser_car.add_argument('--did', metavar='DID', required=True, help='Repository to download')
    parser_car.add_argument('--handle', metavar='HANDLE', help='Handle used in the file name')
    add_output_arguments(parser_car)
    parser_car.set_defaults(method=_car)

    parser_inspect = subparsers.add_parser(
        'inspect',
        help='List the records of a local archive',
        description='Prints one line per reconstructed record followed by decode and traversal counters.')
    parser_inspect.add_argument('--car', metavar='FILE', required=True, help='Local repository archive (CAR file)')
    parser_inspect.add_argument('--json', action='store_true',
                                help='Print each record as a JSON object, one per line, without counters')
    parser_inspect.set_defaults(method=_inspect)

    return parser


def atexport_main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging from CLI argument if provided
    if args.log_file:
        logging.basicConfig(
            filename=args.log_file,
            level=getattr(logging, args.log_level or 'INFO'),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    output = sys.stderr

    def load_exporter():
        settings = ExportSettings.load(args.config)
        directory = getattr(args, 'output', None) or settings.get(SETTING_OUTPUT_DIR, '.')
        chooser = _ask_for_location if getattr(args, 'ask', False) else None
        channel = EventChannel([_event_printer(output, args.verbose)], buffer=False)
        exporter = Exporter(settings, resolve_sink(chooser, directory), pds=args.pds, reporter=channel)
        if not args.log_file:
            exporter.configure_logging_from_settings()
        return exporter

    sys.exit(args.method(load_exporter, output, args))


def _job_status(job: ExportJob, output) -> int:
    for saved in job.saved:
        print(saved)
    skipped = sum(1 for part in job.parts if part.skipped)
    print(f"{job.status}: {job.succeeded} exported, {job.failed} failed, {skipped} parts skipped", file=output)
    return EXIT_CANCELLED if job.cancelled else EXIT_OK


@with_exporter
def _records(exporter: Exporter, output, args):
    job = exporter.export_records(
        car_path=Path(args.car) if args.car else None, did=args.did, handle=args.handle, verify=args.verify)
    return _job_status(job, output)


@with_exporter
def _blobs(exporter: Exporter, output, args):
    return _job_status(exporter.export_blobs(args.did, args.cid, args.label), output)


@with_exporter
def _car(exporter: Exporter, output, args):
    saved = exporter.save_car(args.did, args.handle)
    if saved is not None:
        print(saved)
    return EXIT_OK


@with_exporter
def _inspect(exporter: Exporter, output, args):
    for line in exporter.inspect(args.car, as_json=args.json):
        print(line)
    return EXIT_OK


if __name__ == '__main__':
    atexport_main()
