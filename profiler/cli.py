"""
Command line entry point.

Usage:
    profiler-query info profile.json
    profiler-query samples profile.json --thread t-1 --range 2.5,3 --range 10%,20%
    profiler-query markers profile.json --search DOMEvent
    profiler-query compare before.json after.json

Output is JSON (camelCase keys) on stdout; errors go to stderr with exit code 1.
"""

import argparse
import json
import sys
from typing import Optional, Sequence

from pydantic import BaseModel

from .config import get_settings
from .logging_utils import get_logger, set_log_level
from .logic.merge_compare import merge_profiles_for_diffing
from .profile_loader import ProfileLoadError, load_profile
from .profile_query import ProfileQuerier, RangeParseError

logger = get_logger(__name__)


def _print(result) -> None:
    if isinstance(result, BaseModel):
        result = result.model_dump(by_alias=True, mode='json')
    print(json.dumps(result, indent=2))


def _querier_for(args: argparse.Namespace) -> ProfileQuerier:
    querier = ProfileQuerier(load_profile(args.profile), get_settings())
    if args.thread is not None:
        querier.select_thread(args.thread)
    for range_token in args.range or []:
        querier.push_view_range(range_token)
    return querier


def _cmd_info(args: argparse.Namespace) -> None:
    _print(_querier_for(args).profile_info())


def _cmd_samples(args: argparse.Namespace) -> None:
    querier = _querier_for(args)
    if args.search:
        querier.selectors_for().set_search(args.search)
    if args.inverted:
        querier.selectors_for().set_inverted(True)
    _print(querier.thread_samples())


def _cmd_markers(args: argparse.Namespace) -> None:
    _print(_querier_for(args).thread_markers(search=args.search or ''))


def _cmd_compare(args: argparse.Namespace) -> None:
    profiles = [load_profile(path) for path in (args.before, args.after)]
    result = merge_profiles_for_diffing(profiles, profile_names=[args.before, args.after])
    querier = ProfileQuerier(result.profile, get_settings())
    querier.select_thread(len(result.profile.threads) - 1)
    _print(querier.thread_samples())


def _add_view_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("profile", help="Processed profile JSON file")
    parser.add_argument("--thread", default=None, help="Thread handle (t-N) or index; defaults to the main thread")
    parser.add_argument(
        "--range",
        action="append",
        default=None,
        help="View range '<start>,<end>' (seconds, Nms, N%%); repeat to zoom further",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="profiler-query",
        description="Query a processed performance profile",
    )
    parser.add_argument("--log-level", dest="log_level", default=None, help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    info = subparsers.add_parser("info", help="Processes and threads of the profile")
    _add_view_arguments(info)
    info.set_defaults(handler=_cmd_info)

    samples = subparsers.add_parser("samples", help="Top functions and heaviest stack of a thread")
    _add_view_arguments(samples)
    samples.add_argument("--search", default=None, help="Only samples whose stack matches (comma separated terms)")
    samples.add_argument("--inverted", action="store_true", help="Use the inverted call tree for the heaviest stack")
    samples.set_defaults(handler=_cmd_samples)

    markers = subparsers.add_parser("markers", help="Markers of a thread grouped by name")
    _add_view_arguments(markers)
    markers.add_argument("--search", default=None, help="Marker search string (comma separated terms)")
    markers.set_defaults(handler=_cmd_markers)

    compare = subparsers.add_parser("compare", help="Top functions of the difference between two profiles")
    compare.add_argument("before", help="Baseline profile")
    compare.add_argument("after", help="Profile to compare against the baseline")
    compare.set_defaults(handler=_cmd_compare)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)

    try:
        args.handler(args)
    except (ProfileLoadError, RangeParseError, ValueError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
