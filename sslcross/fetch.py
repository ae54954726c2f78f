# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The ``sslcross fetch`` command.
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from .build import add_source_arguments
from .build.download import SourceArchive
from .common import (
    PathLike,
    SslCrossException,
    setup_logging,
    teardown_logging,
    work_dirs,
)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``fetch`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "fetch", description="Download the OpenSSL source tarball into the cache"
    )
    subparser.set_defaults(func=main)
    add_source_arguments(subparser)


def fetch(
    version: str,
    work_dir: Optional[PathLike] = None,
    force_download: bool = False,
    checksum: Optional[str] = None,
) -> str:
    """
    Fetch the source archive of an OpenSSL version.

    :return: The path to the archive
    :rtype: str
    """
    dirs = work_dirs(work_dir)
    source = SourceArchive(version, destination=dirs.download, checksum=checksum)
    return str(source(force_download=force_download))


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``sslcross fetch`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    handlers = setup_logging(args.log_level)
    try:
        path = fetch(
            args.openssl_version,
            args.work_dir,
            force_download=args.force_download,
            checksum=args.checksum,
        )
    except SslCrossException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        teardown_logging(handlers)
    print(path)
