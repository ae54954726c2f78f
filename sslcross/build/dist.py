# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Write built artifacts into the distribution tree.

Layout::

    <dist>/android/<arch>/{libssl.a,libcrypto.a,libssl.so,libcrypto.so}
    <dist>/android/include/
    <dist>/iphoneos/{libssl.a,libcrypto.a}
    <dist>/iphoneos/include/
    <dist>/iphonesim/{libssl.a,libcrypto.a}
    <dist>/iphonesim/include/
"""
from __future__ import annotations

import logging
import os
import pathlib
import shutil

from sslcross.common import MissingArtifactError, PathLike
from sslcross.platforms import Platform

from .workspace import remove_path

log = logging.getLogger(__name__)


class DistLayout:
    """
    The only writer of the distribution tree.

    :param root: The root of the distribution tree
    :type root: str
    """

    def __init__(self, root: PathLike) -> None:
        self.root = pathlib.Path(root).resolve()

    def platform_dir(self, platform: Platform) -> pathlib.Path:
        return self.root / platform.name

    def library_dir(self, platform: Platform, arch: str) -> pathlib.Path:
        """
        The directory an architecture's libraries end up in.
        """
        if platform.per_arch_layout:
            return self.platform_dir(platform) / arch
        return self.platform_dir(platform)

    def include_dir(self, platform: Platform) -> pathlib.Path:
        return self.platform_dir(platform) / "include"

    def library_path(
        self, platform: Platform, arch: str, library: str, staged: bool = False
    ) -> pathlib.Path:
        """
        Where a library is written.

        Staged libraries carry an architecture suffix until they are merged.
        """
        path = self.library_dir(platform, arch) / library
        if staged:
            return path.with_name(f"{library}.{arch}")
        return path

    def reset(self, platform: Platform) -> None:
        """
        Remove a platform's previous output.
        """
        path = self.platform_dir(platform)
        if path.exists():
            log.info("Removing previous %s output %s", platform.name, path)
            remove_path(path)

    def write_library(
        self,
        src: PathLike,
        platform: Platform,
        arch: str,
        library: str,
        staged: bool = False,
    ) -> pathlib.Path:
        """
        Copy one library into the tree.

        :raises MissingArtifactError: If the source library does not exist
        """
        src = pathlib.Path(src)
        if not src.is_file():
            raise MissingArtifactError(library, src)
        dest = self.library_path(platform, arch, library, staged)
        dest.parent.mkdir(parents=True, exist_ok=True)
        log.debug("Copying %s to %s", src, dest)
        if dest.is_symlink():
            dest.unlink()
        shutil.copy2(src, dest, follow_symlinks=True)
        return dest

    def write_headers(self, src: PathLike, platform: Platform) -> pathlib.Path:
        """
        Replace the platform's include directory with ``src``.

        Headers are not architecture specific; whichever architecture writes
        last wins.
        """
        src = pathlib.Path(src)
        if not src.is_dir():
            raise MissingArtifactError("include", src)
        dest = self.include_dir(platform)
        remove_path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(src, dest, symlinks=True)
        return dest

    def __fspath__(self) -> str:
        return os.fspath(self.root)
