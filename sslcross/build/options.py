# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The resolved options of a build run.
"""
from __future__ import annotations

import argparse
import pathlib
from typing import Any, Dict, Optional

from sslcross.common import (
    ALL,
    ANDROID,
    DEFAULT_ANDROID_API,
    DEFAULT_OPENSSL,
    IPHONEOS,
    IPHONESIM,
    ConfigurationError,
    PathLike,
    WorkDirs,
    work_dirs,
)
from sslcross.platforms import TARGETS, Platform, selected_platforms


class BuildOptions:
    """
    Options for one run, immutable once created.

    :param openssl_version: The OpenSSL version to build
    :type openssl_version: str
    :param target: android, iphoneos, iphonesim or all
    :type target: str
    :param clean: Start from scratch and remove scratch directories afterwards
    :type clean: bool
    :param dist_path: The root of the output tree
    :type dist_path: str
    :param android_api: The Android API level
    :type android_api: str
    :param android_archs: Comma separated Android architectures
    :type android_archs: str
    :param iphoneos_archs: Comma separated iOS device architectures
    :type iphoneos_archs: str
    :param iphonesim_archs: Comma separated iOS simulator architectures
    :type iphonesim_archs: str
    :param work_dir: Root of the scratch directories, defaults to ``$SSLCROSS_DATA``
    :type work_dir: str
    :param force_download: Download the source archive even if it is cached
    :type force_download: bool
    :param checksum: SHA-256 or SHA-1 of the source archive
    :type checksum: str
    """

    _frozen = False

    def __init__(
        self,
        openssl_version: str = DEFAULT_OPENSSL,
        target: str = ALL,
        clean: bool = False,
        dist_path: PathLike = "dist",
        android_api: str = DEFAULT_ANDROID_API,
        android_archs: str = "arm64",
        iphoneos_archs: str = "",
        iphonesim_archs: str = "",
        work_dir: Optional[PathLike] = None,
        force_download: bool = False,
        checksum: Optional[str] = None,
    ) -> None:
        if not openssl_version:
            raise ConfigurationError("OpenSSL version not specified")
        if target not in TARGETS:
            raise ConfigurationError(
                "Invalid target {!r}, expected one of: {}".format(
                    target, ", ".join(TARGETS)
                )
            )
        self.openssl_version = str(openssl_version)
        self.target = target
        # Taken literally, never forced on.
        self.clean = bool(clean)
        self.dist_path = pathlib.Path(dist_path).resolve()
        self.android_api = str(android_api)
        self.archs: Dict[str, str] = {
            ANDROID: android_archs or "",
            IPHONEOS: iphoneos_archs or "",
            IPHONESIM: iphonesim_archs or "",
        }
        self.dirs: WorkDirs = work_dirs(work_dir)
        self.force_download = force_download
        self.checksum = checksum
        self._frozen = True

    def __setattr__(self, name: str, value: Any) -> None:
        if self._frozen:
            raise AttributeError(f"BuildOptions are read only, can not set {name}")
        super().__setattr__(name, value)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "BuildOptions":
        """
        Create options from the ``build`` command's parsed arguments.
        """
        return cls(
            openssl_version=args.openssl_version,
            target=args.target,
            clean=args.clean,
            dist_path=args.dist_path,
            android_api=args.android_api,
            android_archs=args.android_archs,
            iphoneos_archs=args.iphoneos_archs,
            iphonesim_archs=args.iphonesim_archs,
            work_dir=args.work_dir,
            force_download=args.force_download,
            checksum=args.checksum,
        )

    @property
    def platforms(self) -> list[Platform]:
        return selected_platforms(self.target)

    def archs_for(self, platform: Platform) -> str:
        return self.archs[platform.name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "openssl_version": self.openssl_version,
            "target": self.target,
            "clean": self.clean,
            "dist_path": str(self.dist_path),
            "android_api": self.android_api,
            "android_archs": self.archs[ANDROID],
            "iphoneos_archs": self.archs[IPHONEOS],
            "iphonesim_archs": self.archs[IPHONESIM],
            "work_dir": str(self.dirs.root),
            "force_download": self.force_download,
        }

    def __repr__(self) -> str:
        return "<BuildOptions {}>".format(
            " ".join(f"{k}={v}" for k, v in self.to_dict().items())
        )
