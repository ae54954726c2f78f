# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
from __future__ import annotations

import io

from sslcross.build import report as report_mod
from sslcross.build.orchestrator import BuildReport, PlatformResult
from sslcross.build.report import format_report, print_report, use_color
from sslcross.common import DownloadError, InstallError
from sslcross.platforms import platforms


def test_report_success() -> None:
    report = BuildReport()
    report.add(PlatformResult(platforms["iphoneos"]))
    text = format_report(report)
    assert f"{report_mod.SYMBOL_SUCCESS} iphoneos" in text
    assert text.endswith("Build completed successfully!\n")
    assert report.exit_code == 0


def test_report_failures() -> None:
    report = BuildReport()
    error = InstallError("Build cmd 'make -j8 install_sw' failed", platform="android", arch="x86")
    report.add(PlatformResult(platforms["android"], error=error))
    report.add(PlatformResult(platforms["iphonesim"]))
    text = format_report(report)
    assert "android x86 install failed" in text
    assert f"{report_mod.SYMBOL_SUCCESS} iphonesim" in text
    assert text.endswith("The following failures were reported: android\n")
    assert report.exit_code == 1


def test_report_source_error() -> None:
    report = BuildReport()
    report.error = DownloadError("Error fetching url")
    text = format_report(report)
    assert "source: Error fetching url" in text
    assert "The following failures were reported: source" in text


def test_report_color() -> None:
    report = BuildReport()
    report.add(PlatformResult(platforms["android"]))
    assert report_mod.GREEN in format_report(report, color=True)
    assert report_mod.GREEN not in format_report(report, color=False)


def test_no_color_without_tty() -> None:
    assert use_color(io.StringIO()) is False


def test_print_report_stream() -> None:
    report = BuildReport()
    stream = io.StringIO()
    print_report(report, stream)
    assert stream.getvalue() == "Build completed successfully!\n"
