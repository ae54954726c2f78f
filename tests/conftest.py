# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
import logging
import pathlib
import shutil
from typing import Iterator
from unittest.mock import patch

import pytest

from sslcross.common import work_dirs
from sslcross.toolchain import ToolchainResolver
from tests.helpers import FakeToolchain, make_source_archive

# mypy: ignore-errors

log = logging.getLogger(__name__)


@pytest.fixture
def fake_toolchain() -> Iterator[FakeToolchain]:
    toolchain = FakeToolchain()
    with patch("sslcross.build.job.runcmd", toolchain):
        with patch("sslcross.build.merge.runcmd", toolchain):
            yield toolchain


@pytest.fixture
def work_root(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "work"


@pytest.fixture
def dirs(work_root):
    return work_dirs(work_root)


@pytest.fixture
def source_archive(dirs) -> pathlib.Path:
    return make_source_archive(dirs.download)


@pytest.fixture
def ndk_home(tmp_path: pathlib.Path) -> pathlib.Path:
    ndk = tmp_path / "ndk"
    (ndk / "toolchains" / "llvm" / "prebuilt" / "linux-x86_64" / "bin").mkdir(
        parents=True
    )
    return ndk


@pytest.fixture
def resolver(ndk_home) -> ToolchainResolver:
    environ = {"PATH": "/usr/bin:/bin", "ANDROID_NDK_HOME": str(ndk_home)}
    return ToolchainResolver(
        environ=environ,
        android_api="28",
        developer_dir=lambda: "/Applications/Xcode.app/Contents/Developer",
    )


@pytest.fixture
def offline_download(tmp_path: pathlib.Path):
    """
    Serve source archive downloads from a local tarball.
    """
    upstream = make_source_archive(tmp_path / "upstream")

    def fake_download(url, dest, *args, **kwargs):
        local = pathlib.Path(dest) / url.rsplit("/", 1)[1]
        shutil.copy(upstream, local)
        return str(local)

    with patch(
        "sslcross.build.download.download_url", side_effect=fake_download
    ) as dl_mock:
        yield dl_mock
