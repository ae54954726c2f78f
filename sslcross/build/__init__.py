# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Entry points for the ``sslcross build`` CLI command.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from types import FrameType
from typing import Optional

from ..common import (
    ALL,
    DEFAULT_ANDROID_API,
    DEFAULT_OPENSSL,
    ConfigurationError,
    setup_logging,
    teardown_logging,
)
from ..platforms import TARGETS
from .orchestrator import BuildReport, Orchestrator
from .options import BuildOptions
from .report import print_report

log = logging.getLogger(__name__)

HELP_EPILOG = """\
environment requirements:
  Android builds need ANDROID_NDK_HOME to point at an NDK install.
  iOS builds need Xcode with its command line tools.

examples:
  sslcross build --clean --openssl-version 3.4.0 --target all \\
      --iphoneos-archs arm64 --iphonesim-archs arm64,x86_64
  sslcross build --target android --android-archs arm64,x86_64 --android-api 28
  sslcross build --target iphonesim --iphonesim-archs x86_64,arm64
"""


def add_source_arguments(subparser: argparse.ArgumentParser) -> None:
    """
    Arguments shared by the commands that fetch the OpenSSL sources.
    """
    subparser.add_argument(
        "--openssl-version",
        default=DEFAULT_OPENSSL,
        type=str,
        help="OpenSSL version to build [default: %(default)s]",
    )
    subparser.add_argument(
        "--work-dir",
        default=None,
        type=str,
        help=(
            "Root of the download, source and build scratch directories "
            "[default: $SSLCROSS_DATA or a temporary directory]"
        ),
    )
    subparser.add_argument(
        "--force-download",
        default=False,
        action="store_true",
        help="Force downloading the source tarball even if it exists",
    )
    subparser.add_argument(
        "--checksum",
        default=None,
        type=str,
        help="SHA-256 (or SHA-1) checksum the source tarball must match",
    )
    subparser.add_argument(
        "--log-level",
        default="warning",
        choices=(
            "error",
            "warning",
            "info",
            "debug",
        ),
        help="Log level determines how verbose the logs will be.",
    )


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``build`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    build_subparser = subparsers.add_parser(
        "build",
        description="Build OpenSSL for Android and iOS",
        epilog=HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    build_subparser.set_defaults(func=main)
    add_source_arguments(build_subparser)
    build_subparser.add_argument(
        "--target",
        default=ALL,
        choices=TARGETS,
        type=str,
        help="Target platform to build for [default: %(default)s]",
    )
    build_subparser.add_argument(
        "--clean",
        default=False,
        action="store_true",
        help=(
            "Start from scratch: remove the previous output of the requested "
            "platforms and every cached download, source and build directory, "
            "and remove the scratch directories once the build is done."
        ),
    )
    build_subparser.add_argument(
        "--dist-path",
        default="dist",
        type=str,
        help="Path to store the built OpenSSL libraries [default: %(default)s]",
    )
    build_subparser.add_argument(
        "--android-api",
        default=DEFAULT_ANDROID_API,
        type=str,
        help="Android API level to build for [default: %(default)s]",
    )
    build_subparser.add_argument(
        "--android-archs",
        default="arm64",
        type=str,
        help=(
            "Comma-separated list of Android architectures to build for "
            "(arm, arm64, x86, x86_64) [default: %(default)s]"
        ),
    )
    build_subparser.add_argument(
        "--iphoneos-archs",
        default="",
        type=str,
        help="Comma-separated list of iOS device architectures to build for (arm64, x86_64)",
    )
    build_subparser.add_argument(
        "--iphonesim-archs",
        default="",
        type=str,
        help="Comma-separated list of iOS simulator architectures to build for (arm64, x86_64)",
    )
    build_subparser.add_argument(
        "--no-pretty",
        default=False,
        action="store_true",
        help="Print a plain summary without color",
    )


def install_signal_handlers(cancel: threading.Event) -> None:
    """
    Turn SIGINT and SIGTERM into a cancellation of the build.

    A second signal exits right away; cleanup still runs on the way out.
    """

    def signal_handler(_signal: int, frame: Optional[FrameType]) -> None:
        if cancel.is_set():
            sys.exit(1)
        sys.stderr.write("\nCancelling build, waiting for running command\n")
        cancel.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def build(options: BuildOptions, cancel: Optional[threading.Event] = None) -> BuildReport:
    """
    Build OpenSSL as described by the options.

    :param options: The options of this run
    :type options: ``sslcross.build.options.BuildOptions``

    :return: The outcome of each requested platform
    :rtype: ``sslcross.build.orchestrator.BuildReport``
    """
    return Orchestrator(options, cancel=cancel).run()


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint to the ``build`` command.

    :param args: The arguments to the command
    :type args: ``argparse.Namespace``
    """
    try:
        options = BuildOptions.from_args(args)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    handlers = setup_logging(args.log_level, options.dirs.log_file("build"))
    cancel = threading.Event()
    install_signal_handlers(cancel)
    try:
        report = build(options, cancel=cancel)
    finally:
        teardown_logging(handlers)
    print_report(report, color=False if args.no_pretty else None)
    sys.exit(report.exit_code)
