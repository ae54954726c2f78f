# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Resolve the toolchain environment each target platform builds with.
"""
from __future__ import annotations

import logging
import os
import pathlib
import subprocess
from typing import Callable, Dict, Mapping, MutableMapping, Optional

from .common import (
    ANDROID,
    DEFAULT_ANDROID_API,
    AmbiguousToolchainError,
    ConfigurationError,
    ToolchainNotFoundError,
    XcodeNotFoundError,
)
from .platforms import Platform

log = logging.getLogger(__name__)

NDK_ENV = "ANDROID_NDK_HOME"


class Toolchain:
    """
    The resolved build environment for one platform.

    :param platform: The platform the toolchain builds for
    :type platform: ``sslcross.platforms.Platform``
    :param env: Environment variables the toolchain needs
    :type env: dict
    :param bin_path: Directory prepended to ``PATH``, if any
    :type bin_path: ``pathlib.Path``
    """

    def __init__(
        self,
        platform: Platform,
        env: Mapping[str, str],
        bin_path: Optional[pathlib.Path] = None,
    ) -> None:
        self.platform = platform
        self.env: Dict[str, str] = dict(env)
        self.bin_path = bin_path

    def job_env(self) -> Dict[str, str]:
        """
        A fresh environment map for one job's external commands.

        Each job gets its own copy so nothing is shared through ``os.environ``.
        """
        return dict(self.env)

    def __repr__(self) -> str:
        return f"<Toolchain {self.platform.name} bin={self.bin_path}>"


def _developer_dir() -> str:
    proc = subprocess.run(
        ["xcode-select", "-print-path"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        universal_newlines=True,
        check=True,
    )
    return proc.stdout.strip()


class ToolchainResolver:
    """
    Resolve a platform's toolchain from the host environment.

    :param environ: The environment to read from, defaults to ``os.environ``
    :type environ: dict
    :param android_api: The Android API level to build against
    :type android_api: str
    :param developer_dir: Callable returning the active Xcode developer directory
    :type developer_dir: types.FunctionType
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        android_api: str = DEFAULT_ANDROID_API,
        developer_dir: Callable[[], str] = _developer_dir,
    ) -> None:
        self.environ = os.environ if environ is None else environ
        self.android_api = str(android_api)
        self.developer_dir = developer_dir

    def base_env(self) -> MutableMapping[str, str]:
        """
        The calling process' environment, which the toolchain variables overlay.
        """
        env = dict(self.environ)
        env.setdefault("PATH", os.defpath)
        return env

    def resolve(self, platform: Platform) -> Toolchain:
        """
        Resolve the toolchain for a platform.

        :raises HostEnvironmentError: If the toolchain is missing or ambiguous
        """
        if platform.name == ANDROID:
            return self.android(platform)
        return self.xcode(platform)

    def android_bin(self) -> pathlib.Path:
        """
        Find the NDK's prebuilt LLVM ``bin`` directory for this host.

        :raises ToolchainNotFoundError: If ``ANDROID_NDK_HOME`` is unset or wrong
        :raises AmbiguousToolchainError: If there is not exactly one host toolchain
        """
        ndk_home = self.environ.get(NDK_ENV)
        if not ndk_home:
            raise ToolchainNotFoundError(
                f"Please set {NDK_ENV} environment variable"
            )
        prebuilt = pathlib.Path(ndk_home) / "toolchains" / "llvm" / "prebuilt"
        if not prebuilt.is_dir():
            raise ToolchainNotFoundError(
                f"Please set {NDK_ENV} environment variable to the correct path, "
                f"{prebuilt} does not exist"
            )
        # Host directories look like darwin-x86_64 or linux-x86_64
        try:
            hosts = sorted(_ for _ in prebuilt.iterdir() if _.is_dir())
        except OSError as exc:
            raise ToolchainNotFoundError(f"Unable to read {prebuilt}: {exc}")
        if len(hosts) != 1:
            raise AmbiguousToolchainError(
                "Failed to find a suitable toolchain, expected one host "
                "directory in {} and found {}: {}".format(
                    prebuilt, len(hosts), ", ".join(_.name for _ in hosts) or "none"
                )
            )
        return hosts[0] / "bin"

    def android(self, platform: Platform) -> Toolchain:
        if not self.android_api.isdigit():
            raise ConfigurationError(f"Invalid Android API level {self.android_api!r}")
        bin_path = self.android_bin()
        ndk_home = str(self.environ[NDK_ENV])
        env = self.base_env()
        env["PATH"] = os.pathsep.join([str(bin_path), env["PATH"]])
        env[NDK_ENV] = ndk_home
        env["ANDROID_NDK_ROOT"] = ndk_home
        env["ANDROID_API"] = self.android_api
        log.debug("Using Android toolchain %s", bin_path)
        return Toolchain(platform, env, bin_path)

    def xcode(self, platform: Platform) -> Toolchain:
        """
        Query the active Xcode developer directory.

        :raises XcodeNotFoundError: If the developer directory can not be queried
        """
        try:
            developer = self.developer_dir()
        except (OSError, subprocess.CalledProcessError) as exc:
            raise XcodeNotFoundError(f"Error getting Xcode developer path: {exc}")
        if not developer:
            raise XcodeNotFoundError("Xcode developer path is empty")
        env = self.base_env()
        env["DEVELOPER_DIR"] = developer
        log.debug("Using Xcode developer directory %s", developer)
        return Toolchain(platform, env)
