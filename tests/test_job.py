# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
from __future__ import annotations

import pathlib

import pytest

from sslcross.build.dist import DistLayout
from sslcross.build.job import INSTALL_MARKER, BuildJob, JobState, extract_source
from sslcross.build.matrix import expand_matrix
from sslcross.build.workspace import WorkspaceManager
from sslcross.common import (
    CompileError,
    ConfigureError,
    ExternalCommandError,
    ExtractionError,
    InstallError,
    MissingArtifactError,
    WorkspaceError,
)
from sslcross.platforms import platforms

from tests.helpers import make_source_archive


@pytest.fixture
def dist(tmp_path: pathlib.Path) -> DistLayout:
    return DistLayout(tmp_path / "dist")


def make_job(dirs, dist, platform="android", arch="arm64", clean=False, staged=False):
    source = dirs.source(platform) / "openssl-3.4.0"
    source.mkdir(parents=True, exist_ok=True)
    (spec,) = expand_matrix(platforms[platform], arch, source, dirs)
    return BuildJob(spec, {"PATH": "/usr/bin"}, dist, WorkspaceManager(clean=clean), staged=staged, dirs=dirs)


def test_job_states(dirs, dist, fake_toolchain) -> None:
    job = make_job(dirs, dist)
    job.run()
    assert job.history == [
        JobState.EXTRACTED,
        JobState.CONFIGURED,
        JobState.COMPILED,
        JobState.INSTALLED,
        JobState.COLLECTED,
    ]
    assert job.state is JobState.COLLECTED
    assert not job.reused


def test_job_states_with_clean(dirs, dist, fake_toolchain) -> None:
    job = make_job(dirs, dist, clean=True)
    job.run()
    assert job.history[-2:] == [JobState.COLLECTED, JobState.CLEANED]
    assert not job.spec.install.exists()
    assert (dist.root / "android" / "arm64" / "libssl.so").exists()


def test_job_commands(dirs, dist, fake_toolchain) -> None:
    job = make_job(dirs, dist)
    job.run()
    assert fake_toolchain.commands() == [
        [
            "./Configure",
            "android-arm64",
            "-fPIC",
            "no-ui-console",
            "no-engine",
            "no-filenames",
            "no-stdio",
            f"--prefix={job.spec.install}",
        ],
        ["make", "-j8"],
        ["make", "-j8", "install_sw"],
        ["make", "-j8", "install_ssldirs"],
    ]
    for call in fake_toolchain.calls:
        assert call["cwd"] == job.spec.source
        assert call["env"] == {"PATH": "/usr/bin"}
        assert call["arch"] == "arm64"


def test_job_collects_android_libraries(dirs, dist, fake_toolchain) -> None:
    outputs = make_job(dirs, dist, arch="x86").run()
    libdir = dist.root / "android" / "x86"
    assert sorted(outputs) == sorted(
        libdir / _ for _ in ("libssl.a", "libcrypto.a", "libssl.so", "libcrypto.so")
    )
    assert (libdir / "libcrypto.so").read_text() == "android-x86:libcrypto.so"
    headers = dist.root / "android" / "include" / "openssl" / "opensslv.h"
    assert headers.read_text() == "android-x86"


def test_job_reuses_install(dirs, dist, fake_toolchain) -> None:
    make_job(dirs, dist).run()
    fake_toolchain.calls.clear()
    job = make_job(dirs, dist)
    job.run()
    assert job.reused
    assert fake_toolchain.calls == []
    assert job.history == [JobState.EXTRACTED, JobState.INSTALLED, JobState.COLLECTED]


def test_job_clean_ignores_install(dirs, dist, fake_toolchain) -> None:
    make_job(dirs, dist).run()
    fake_toolchain.calls.clear()
    job = make_job(dirs, dist, clean=True)
    job.run()
    assert not job.reused
    assert len(fake_toolchain.calls) == 4


@pytest.mark.parametrize(
    "fail_on,error,state",
    [
        ("./Configure", ConfigureError, JobState.EXTRACTED),
        ("make -j8", CompileError, JobState.CONFIGURED),
        ("install_ssldirs", InstallError, JobState.COMPILED),
    ],
)
def test_job_step_failure(dirs, dist, fake_toolchain, fail_on, error, state) -> None:
    fake_toolchain.fail_on = fail_on
    job = make_job(dirs, dist, platform="iphonesim", arch="x86_64")
    with pytest.raises(error) as exc:
        job.run()
    assert exc.value.platform == "iphonesim"
    assert exc.value.arch == "x86_64"
    assert exc.value.returncode == 2
    assert job.history[-2:] == [state, JobState.FAILED]
    assert not (dist.root / "iphonesim").exists()


def test_job_failure_message(dirs, dist, fake_toolchain) -> None:
    fake_toolchain.fail_on = "./Configure"
    with pytest.raises(ConfigureError) as exc:
        make_job(dirs, dist, platform="iphoneos").run()
    assert str(exc.value).startswith("iphoneos arm64 configure failed: ")


def test_job_failure_with_clean_removes_install(dirs, dist, fake_toolchain) -> None:
    fake_toolchain.fail_on = "install_ssldirs"
    job = make_job(dirs, dist, clean=True)
    with pytest.raises(InstallError):
        job.run()
    assert not job.spec.install.exists()
    assert job.workspace.outstanding == []


def test_job_missing_artifact(dirs, dist, fake_toolchain) -> None:
    fake_toolchain.skip_libs = {"libcrypto.so"}
    job = make_job(dirs, dist, arch="arm")
    with pytest.raises(MissingArtifactError) as exc:
        job.run()
    assert exc.value.library == "libcrypto.so"
    assert "libcrypto.so" in str(exc.value)
    assert job.state is JobState.FAILED
    # Nothing is copied when any library is missing.
    assert not (dist.root / "android").exists()


def test_job_staged_outputs(dirs, dist, fake_toolchain) -> None:
    outputs = make_job(dirs, dist, platform="iphoneos", arch="x86_64", staged=True).run()
    assert sorted(_.name for _ in outputs) == ["libcrypto.a.x86_64", "libssl.a.x86_64"]
    assert all(_.parent == dist.root / "iphoneos" for _ in outputs)


def test_job_log_file(dirs, dist, fake_toolchain) -> None:
    job = make_job(dirs, dist)
    job.run()
    assert dirs.log_file("android-arm64").exists()


def test_invalid_transition(dirs, dist) -> None:
    job = make_job(dirs, dist)
    with pytest.raises(RuntimeError):
        job._advance(JobState.COLLECTED)


def test_extract_source(dirs, source_archive) -> None:
    workspace = WorkspaceManager()
    dest = dirs.source("android")
    scope = extract_source(source_archive, "openssl-3.4.0", dest, workspace)
    assert (dest / "openssl-3.4.0" / "Configure").is_file()
    assert not scope.reused


def test_extract_source_reuses(dirs, source_archive) -> None:
    workspace = WorkspaceManager()
    dest = dirs.source("android")
    extract_source(source_archive, "openssl-3.4.0", dest, workspace)
    (dest / "openssl-3.4.0" / "configdata.pm").write_text("kept")
    scope = extract_source(source_archive, "openssl-3.4.0", dest, workspace)
    assert scope.reused
    assert (dest / "openssl-3.4.0" / "configdata.pm").exists()


def test_extract_source_wrong_layout(dirs, tmp_path: pathlib.Path) -> None:
    archive = make_source_archive(tmp_path / "bad", dirname="openssl-master")
    workspace = WorkspaceManager(clean=True)
    dest = dirs.source("iphoneos")
    with pytest.raises(ExtractionError) as exc:
        extract_source(archive, "openssl-3.4.0", dest, workspace, platform="iphoneos")
    assert exc.value.platform == "iphoneos"
    assert not dest.exists()


def test_extract_source_corrupt(dirs, tmp_path: pathlib.Path) -> None:
    archive = tmp_path / "openssl-3.4.0.tar.gz"
    archive.write_bytes(b"not a tarball")
    with pytest.raises(ExtractionError):
        extract_source(archive, "openssl-3.4.0", dirs.source("android"), WorkspaceManager())


def test_job_writes_install_marker(dirs, dist, fake_toolchain) -> None:
    job = make_job(dirs, dist)
    job.run()
    assert (job.spec.install / INSTALL_MARKER).is_file()
    assert not (dist.root / "android" / "arm64" / INSTALL_MARKER).exists()


@pytest.mark.parametrize("fail_on", ["./Configure", "make -j8", "install_sw"])
def test_failed_build_is_not_reused(dirs, dist, fake_toolchain, fail_on) -> None:
    fake_toolchain.fail_on = fail_on
    with pytest.raises(ExternalCommandError):
        make_job(dirs, dist, platform="iphonesim").run()
    fake_toolchain.fail_on = None
    fake_toolchain.calls.clear()
    job = make_job(dirs, dist, platform="iphonesim")
    job.run()
    assert not job.reused
    assert [_[0] for _ in fake_toolchain.commands()] == ["./Configure", "make", "make", "make"]
    assert (dist.root / "iphonesim" / "libssl.a").read_text() == (
        "iossimulator-arm64-xcrun:libssl.a"
    )


def test_partial_install_is_rebuilt(dirs, dist, fake_toolchain) -> None:
    job = make_job(dirs, dist)
    (job.spec.install / "lib").mkdir(parents=True)
    (job.spec.install / "lib" / "libssl.a").write_text("stale")
    job.run()
    assert not job.reused
    assert len(fake_toolchain.calls) == 4
    assert (job.spec.install / "lib" / "libssl.a").read_text() == "android-arm64:libssl.a"


def test_job_dist_write_failure(dirs, dist, fake_toolchain) -> None:
    (dist.root / "android").mkdir(parents=True)
    (dist.root / "android" / "arm64").write_text("not a directory")
    job = make_job(dirs, dist)
    with pytest.raises(WorkspaceError) as exc:
        job.run()
    assert exc.value.platform == "android"
    assert exc.value.arch == "arm64"
    assert str(exc.value).startswith("android arm64: ")
    assert job.state is JobState.FAILED
