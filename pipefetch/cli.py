import argparse
import os
import sys

from dotenv import load_dotenv

from pipefetch.core import RunConfig, UsageError, fetch, validate, FetchError
from pipefetch.fetchers.pipeline_artifacts import DEFAULT_MAX_PAGES
from pipefetch.utils.filesystem import setup_logging

EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipefetch",
        description="Download the artifacts of a pipeline stage for the latest pipeline of each branch.",
        epilog="The GitLab private token is read from the TOKEN environment variable (or a .env file). "
               "Put branch names that start with '-' after '--'.",
        usage="TOKEN=123456 %(prog)s -baseurl https://gitlab.example.com/ "
              "-project diaspora/diaspora-client -stage test [--] branch1 [branch2 ...]",
        allow_abbrev=False,
    )

    parser.add_argument(
        "-baseurl",
        "--baseurl",
        help="GitLab base URL, without /api/v4 (e.g. https://gitlab.example.com/)",
        default="",
    )
    parser.add_argument(
        "-project",
        "--project",
        help="Project path with namespace (e.g. diaspora/diaspora-client)",
        default="",
    )
    parser.add_argument(
        "-stage",
        "--stage",
        help="Pipeline stage whose job artifacts are downloaded (e.g. test)",
        default="",
    )
    parser.add_argument(
        "branches",
        nargs="*",
        help="One or more branch names",
    )
    parser.add_argument(
        "--dest",
        "-d",
        help="Destination folder (default: current directory)",
        default=".",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=DEFAULT_MAX_PAGES,
        help=f"Give up the project search after this many pages (default: {DEFAULT_MAX_PAGES})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60,
        help="Per-request timeout in seconds (default: 60)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Log progress (-v) or every request (-v -v)",
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    load_dotenv()
    config = RunConfig(
        base_url=args.baseurl,
        project=args.project,
        stage=args.stage,
        branches=args.branches,
        token=os.getenv("TOKEN"),
        dest=args.dest,
        max_pages=args.max_pages,
        timeout=args.timeout,
    )

    try:
        validate(config)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    try:
        fetch(config)
    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
