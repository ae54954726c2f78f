# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
"""
Test doubles for the external OpenSSL build tools.
"""
import io
import pathlib
import tarfile
from typing import List, Optional, Tuple

from sslcross.common import BuildCancelled, ExternalCommandError

OPENSSL_VERSION = "3.4.0"

ALL_LIBS = ("libssl.a", "libcrypto.a", "libssl.so", "libcrypto.so")


def install_target(prefix: pathlib.Path) -> Tuple[str, str]:
    """
    The platform and architecture an ``openssl-<platform>-<arch>`` prefix is for.
    """
    _, platform, arch = prefix.name.split("-", 2)
    return platform, arch


class FakeToolchain:
    """
    Stands in for ``runcmd`` and plays the part of Configure, make and lipo.

    ``make install_sw`` writes every library into the configured prefix with
    the Configure target as its contents, so tests can tell which
    architecture produced a file. Each call is recorded with the platform and
    architecture of the prefix last configured in its working directory.
    """

    def __init__(self) -> None:
        self.calls: List[dict] = []
        self.prefixes: dict = {}
        self.configs: dict = {}
        self.skip_libs: set = set()
        self.fail_on: Optional[str] = None
        self.fail_arch: Optional[str] = None
        self.cancel_after: Optional[str] = None

    def __call__(self, cmd, env=None, cwd=None, cancel=None, **kwargs):
        argv = [str(_) for _ in cmd]
        if cancel is not None and cancel.is_set():
            raise BuildCancelled("Not running '{}', build cancelled".format(" ".join(argv)))
        if argv[0] == "./Configure":
            prefix = [_ for _ in argv if _.startswith("--prefix=")][0].split("=", 1)[1]
            self.prefixes[cwd] = pathlib.Path(prefix)
            self.configs[cwd] = argv[1]
        platform = arch = None
        if argv[0] != "lipo" and cwd in self.prefixes:
            platform, arch = install_target(self.prefixes[cwd])
        self.calls.append(
            {
                "cmd": argv,
                "env": dict(env or {}),
                "cwd": cwd,
                "platform": platform,
                "arch": arch,
            }
        )
        joined = " ".join(argv)
        if self.fail_on and self.fail_on in joined:
            if self.fail_arch is None or self.fail_arch == arch:
                raise ExternalCommandError(f"Build cmd '{joined}' failed", returncode=2)
        if argv[:1] == ["make"] and "install_sw" in argv:
            prefix = self.prefixes[cwd]
            config = self.configs[cwd]
            (prefix / "lib").mkdir(parents=True, exist_ok=True)
            for lib in ALL_LIBS:
                if lib in self.skip_libs:
                    continue
                (prefix / "lib" / lib).write_text(f"{config}:{lib}")
            include = prefix / "include" / "openssl"
            include.mkdir(parents=True, exist_ok=True)
            (include / "opensslv.h").write_text(config)
        elif argv[0] == "lipo":
            output = pathlib.Path(argv[argv.index("-output") + 1])
            inputs = argv[1 : argv.index("-create")]
            output.write_text("|".join(pathlib.Path(_).read_text() for _ in inputs))
        if self.cancel_after and self.cancel_after in joined and cancel is not None:
            cancel.set()
        return None

    def commands(self, arch=None) -> List[List[str]]:
        return [call["cmd"] for call in self.calls if arch is None or call["arch"] == arch]


def make_source_archive(
    dest: pathlib.Path, version: str = OPENSSL_VERSION, dirname: Optional[str] = None
) -> pathlib.Path:
    """
    Write a small tarball shaped like an OpenSSL release.
    """
    dest.mkdir(parents=True, exist_ok=True)
    archive = dest / f"openssl-{version}.tar.gz"
    if dirname is None:
        dirname = f"openssl-{version}"
    with tarfile.open(archive, "w:gz") as tar:
        data = b"#!/usr/bin/env perl\n"
        info = tarfile.TarInfo(f"{dirname}/Configure")
        info.size = len(data)
        info.mode = 0o755
        tar.addfile(info, io.BytesIO(data))
    return archive
