import argparse
import logging
import os
import sys
import textwrap
from pathlib import Path

from . import DuplicateFinder
from .errors import OutputSinkError, RootPathError, SettingsError
from .report.writer import open_output, write_report, STDOUT
from .settings import Settings, ScanConfig, resolve_config, LOG_LEVELS, WORKERS_ENVIRONMENT_VARIABLE
from .utils.hash_pool import EXECUTORS, HASH_ALGORITHMS
from .utils.walker import validate_root

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dupfind',
        description='Find groups of byte-for-byte identical files under a directory. Files are grouped by size '
                    'first and only files sharing a size are hashed.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(f'''
            Examples:
              dupfind ~/Pictures
              dupfind /srv/data -o duplicates.txt -j 8
              dupfind /srv/data --config dupfind.toml --log-file scan.log

            The pool size can also be set with the {WORKERS_ENVIRONMENT_VARIABLE} environment variable.
            ''').strip())
    parser.add_argument(
        'path',
        metavar='PATH',
        help='Root directory to scan recursively')
    parser.add_argument(
        '-o', '--output',
        metavar='OUTPUT',
        default=STDOUT,
        help='Write the report to this file; "-" (default) writes to standard output')
    parser.add_argument(
        '-j', '--workers',
        type=int,
        metavar='N',
        help='Number of hash workers (default: 4)')
    parser.add_argument(
        '--queue-capacity',
        type=int,
        metavar='N',
        help='Maximum hash tasks in flight or awaiting the coordinator (default: twice the workers)')
    parser.add_argument(
        '--algorithm',
        choices=sorted(HASH_ALGORITHMS),
        help='Content hash used to compare files of equal size (default: mmh3)')
    parser.add_argument(
        '--chunk-size',
        type=int,
        metavar='BYTES',
        help='Read size used while hashing (default: 4096)')
    parser.add_argument(
        '--timeout',
        type=float,
        metavar='SECONDS',
        help='Give up hashing a single file after this many seconds (default: no limit)')
    parser.add_argument(
        '--executor',
        choices=sorted(EXECUTORS),
        help='Run hash workers as processes (default) or threads')
    parser.add_argument(
        '--follow-symlinks',
        action='store_true',
        default=None,
        help='Follow symlinks pointing outside the scanned directory')
    parser.add_argument(
        '--skip-empty',
        action='store_true',
        help='Leave zero-byte files out of the report')
    parser.add_argument(
        '--exclude',
        action='append',
        metavar='RELPATH',
        help='Path relative to PATH to leave out of the scan; may be repeated')
    parser.add_argument(
        '--config',
        metavar='PATH',
        help='TOML settings file')
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Log progress information')
    parser.add_argument(
        '--log-file',
        metavar='PATH',
        help='Write diagnostics to this file instead of standard error')
    parser.add_argument(
        '--log-level',
        metavar='LEVEL',
        choices=LOG_LEVELS,
        help='Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to WARNING, or INFO with --verbose or '
             '--log-file.')
    return parser


def configure_logging(config: ScanConfig, verbose: bool = False):
    """Send diagnostics to the configured log file, or standard error."""
    level = config.log_level
    if level is None:
        level = 'INFO' if verbose or config.log_path else 'WARNING'

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    if config.log_path:
        logging.basicConfig(filename=config.log_path, level=getattr(logging, level), format=LOG_FORMAT)
    else:
        logging.basicConfig(stream=sys.stderr, level=getattr(logging, level), format=LOG_FORMAT)


def exclude_output(config: ScanConfig, root: Path, destination: str) -> ScanConfig:
    """Leave the report file out of the scan when it is written inside ``root``."""
    if destination == STDOUT:
        return config

    real_destination = Path(os.path.realpath(destination))
    real_root = Path(os.path.realpath(root))
    if not real_destination.is_relative_to(real_root) or real_destination == real_root:
        return config

    relative = real_destination.relative_to(real_root)
    logger.debug(f"Excluding report file {relative} from the scan")
    return config._replace(excluded_paths=config.excluded_paths | {relative})


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings(Path(args.config)) if args.config else Settings()
        config = resolve_config({
            'workers': args.workers,
            'queue_capacity': args.queue_capacity,
            'algorithm': args.algorithm,
            'chunk_size': args.chunk_size,
            'timeout': args.timeout,
            'executor': args.executor,
            'follow_symlinks': args.follow_symlinks,
            'include_empty': False if args.skip_empty else None,
            'excluded_paths': args.exclude,
            'log_path': args.log_file,
            'log_level': args.log_level,
        }, settings)
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    configure_logging(config, args.verbose)

    try:
        root = validate_root(Path(args.path))
        finder = DuplicateFinder(exclude_output(config, root, args.output))
        with open_output(args.output) as stream:
            report, outcome = finder.find(args.path, handle_interrupts=True)
            write_report(report, stream, args.output)
    except (RootPathError, OutputSinkError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if outcome.interrupted:
        print("Scan interrupted, the report is partial", file=sys.stderr)
        return EXIT_INTERRUPTED
    return EXIT_OK


def dupfind_main():
    sys.exit(main())


if __name__ == '__main__':
    dupfind_main()
