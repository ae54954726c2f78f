# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Fetch and cache the OpenSSL source archive.
"""
from __future__ import annotations

import hashlib
import logging
import os
import pathlib
from typing import Optional, Tuple

from sslcross.common import (
    ChecksumValidationError,
    DownloadError,
    PathLike,
    SslCrossException,
    download_url,
)

from .workspace import WorkspaceManager

# Environment flag for CI/CD detection
CICD = "CI" in os.environ

OPENSSL_URL = "https://www.openssl.org/source/openssl-{version}.tar.gz"
OPENSSL_FALLBACK_URL = (
    "https://github.com/openssl/openssl/releases/download/"
    "openssl-{version}/openssl-{version}.tar.gz"
)

log = logging.getLogger(__name__)


def verify_checksum(file: PathLike, checksum: Optional[str]) -> bool:
    """
    Verify the checksum of a file.

    Supports both SHA-1 (40 hex chars) and SHA-256 (64 hex chars) checksums.
    The hash algorithm is auto-detected based on checksum length.

    :param file: The path to the file to check.
    :type file: str
    :param checksum: The checksum to verify against (SHA-1 or SHA-256)
    :type checksum: str

    :raises ChecksumValidationError: If the checksum verification failed

    :return: True if it succeeded, or False if the checksum was None
    :rtype: bool
    """
    if checksum is None:
        log.error("Can't verify checksum because none was given")
        return False

    checksum = checksum.strip().lower()
    if len(checksum) == 64:
        hash_algo = hashlib.sha256()
        hash_name = "sha256"
    elif len(checksum) == 40:
        hash_algo = hashlib.sha1()
        hash_name = "sha1"
    else:
        raise ChecksumValidationError(
            f"Invalid checksum length {len(checksum)}. Expected 40 (SHA-1) or 64 (SHA-256)"
        )

    with open(file, "rb") as fp:
        for block in iter(lambda: fp.read(1024 * 1024), b""):
            hash_algo.update(block)
    file_checksum = hash_algo.hexdigest()
    if checksum != file_checksum:
        raise ChecksumValidationError(
            f"{hash_name} checksum verification failed. expected={checksum} found={file_checksum}"
        )
    return True


class SourceArchive:
    """
    The versioned OpenSSL source tarball.

    :param version: The OpenSSL version, e.g. ``3.4.0``
    :type version: str
    :param destination: The directory to download the archive to
    :type destination: str
    :param url: The url template, ``{version}`` is substituted
    :type url: str
    :param fallback_url: Tried when the main url fails
    :type fallback_url: str
    :param checksum: The SHA-256 or SHA-1 sum of the archive
    :type checksum: str
    """

    def __init__(
        self,
        version: str,
        destination: PathLike = "",
        url: str = OPENSSL_URL,
        fallback_url: Optional[str] = OPENSSL_FALLBACK_URL,
        checksum: Optional[str] = None,
    ) -> None:
        self.version = version
        self.url_tpl = url
        self.fallback_url_tpl = fallback_url
        self.checksum = checksum
        self._destination: pathlib.Path = pathlib.Path()
        if destination:
            self._destination = pathlib.Path(destination)

    @property
    def destination(self) -> pathlib.Path:
        return self._destination

    @destination.setter
    def destination(self, value: Optional[PathLike]) -> None:
        if value:
            self._destination = pathlib.Path(value)
        else:
            self._destination = pathlib.Path()

    @property
    def url(self) -> str:
        return self.url_tpl.format(version=self.version)

    @property
    def fallback_url(self) -> Optional[str]:
        if self.fallback_url_tpl:
            return self.fallback_url_tpl.format(version=self.version)
        return None

    @property
    def filepath(self) -> pathlib.Path:
        """Get the full file path where the download will be saved."""
        _, name = self.url.rsplit("/", 1)
        return self.destination / name

    @property
    def dirname(self) -> str:
        """
        The top level directory the archive extracts to.
        """
        return f"openssl-{self.version}"

    def exists(self) -> bool:
        """
        True when the artifact already exists on disk.
        """
        return self.filepath.exists()

    def fetch_file(self) -> Tuple[str, bool]:
        """
        Download the file.

        :return: The path to the downloaded content, and whether it was downloaded.
        :rtype: tuple(str, bool)
        """
        try:
            return download_url(self.url, self.destination, CICD), True
        except SslCrossException as exc:
            fallback = self.fallback_url
            if fallback:
                log.warning("Download failed %s (%s); trying fallback url", self.url, exc)
                return download_url(fallback, self.destination, CICD), True
            raise

    @staticmethod
    def validate_checksum(archive: PathLike, checksum: Optional[str]) -> bool:
        """
        True when when the archive matches the checksum.
        """
        try:
            verify_checksum(archive, checksum)
            return True
        except SslCrossException as exc:
            log.error("checksum validation failed on %s: %s", archive, exc)
            return False

    def __call__(
        self,
        workspace: Optional[WorkspaceManager] = None,
        force_download: bool = False,
    ) -> pathlib.Path:
        """
        Return the path to the archive, downloading it when needed.

        An existing archive is reused unless a download is forced or the
        workspace asks for a clean build. A reused archive that fails its
        checksum is downloaded again.

        :param workspace: The run's workspace, consulted for reuse and cleanup
        :type workspace: ``sslcross.build.workspace.WorkspaceManager``

        :raises DownloadError: If the archive can not be downloaded
        :raises ChecksumValidationError: If the download does not match the checksum

        :return: The path to the archive
        :rtype: ``pathlib.Path``
        """
        os.makedirs(self.filepath.parent, exist_ok=True)
        if workspace is not None:
            reuse = workspace.lookup(self.filepath)
        else:
            reuse = self.exists()
        if force_download:
            reuse = False
        if reuse and self.checksum and not self.validate_checksum(
            self.filepath, self.checksum
        ):
            reuse = False
        if reuse:
            log.info("Using existing OpenSSL archive %s", self.filepath)
        else:
            log.info("Downloading OpenSSL %s to %s", self.version, self.filepath)
            path, _ = self.fetch_file()
            if pathlib.Path(path) != self.filepath:
                os.replace(path, self.filepath)
            if self.checksum is not None:
                verify_checksum(self.filepath, self.checksum)
        if not self.filepath.is_file():
            raise DownloadError(f"OpenSSL archive missing at {self.filepath}")
        if workspace is not None:
            workspace.track_file(self.filepath)
        return self.filepath
