# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Terminal summary of a build run.
"""
from __future__ import annotations

import os
import sys
from typing import IO, Optional

from .download import CICD
from .orchestrator import BuildReport

# ANSI color codes for terminal output
GREEN = "\033[0;32m"
RED = "\033[0;31m"
END = "\033[0m"

# Allow forcing ASCII mode via environment variable (useful for testing/debugging)
if os.environ.get("SSLCROSS_ASCII"):
    SYMBOL_SUCCESS = "+"
    SYMBOL_FAILED = "X"
else:
    SYMBOL_SUCCESS = "✓"
    SYMBOL_FAILED = "✗"


def use_color(stream: IO[str]) -> bool:
    if CICD or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def format_report(report: BuildReport, color: bool = False) -> str:
    """
    Render one line per attempted platform and the failures after them.
    """
    green, red, end = (GREEN, RED, END) if color else ("", "", "")
    lines = []
    if report.error is not None:
        lines.append(f"{red}{SYMBOL_FAILED}{end} source: {report.error}")
    for result in report.results:
        jobs = ",".join(job.arch for job in result.jobs)
        if result.ok:
            lines.append(f"{green}{SYMBOL_SUCCESS}{end} {result.platform.name} [{jobs}]")
        else:
            lines.append(
                f"{red}{SYMBOL_FAILED}{end} {result.platform.name} [{jobs}]: {result.error}"
            )
    if report.ok:
        lines.append("Build completed successfully!")
    else:
        failed = [_.platform.name for _ in report.failures]
        if report.error is not None:
            failed.insert(0, "source")
        lines.append("The following failures were reported: {}".format(", ".join(failed)))
    return "\n".join(lines) + "\n"


def print_report(
    report: BuildReport,
    stream: Optional[IO[str]] = None,
    color: Optional[bool] = None,
) -> None:
    """
    Print the summary of a run.

    :param report: The finished run
    :type report: ``sslcross.build.orchestrator.BuildReport``
    :param stream: Where to write, stdout on success and stderr on failure by default
    :type stream: file
    :param color: Force color on or off, detected from the stream by default
    :type color: bool
    """
    if stream is None:
        stream = sys.stdout if report.ok else sys.stderr
    if color is None:
        color = use_color(stream)
    stream.write(format_report(report, color=color))
    stream.flush()
