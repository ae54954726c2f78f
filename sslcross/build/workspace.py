# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Scratch directory management for builds.
"""
from __future__ import annotations

import atexit
import logging
import os
import pathlib
import shutil
import threading
from types import TracebackType
from typing import Dict, Optional, Type

from sslcross.common import PathLike

log = logging.getLogger(__name__)


def remove_path(path: PathLike) -> bool:
    """
    Remove a file or directory tree, logging instead of raising on failure.

    :return: True when nothing is left at the path
    :rtype: bool
    """
    path = pathlib.Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("Unable to remove %s: %s", path, exc)
        return False
    return True


class ScopedDir:
    """
    A working directory whose release removes it when cleanup was requested.

    Release is idempotent; it runs at most once no matter how many exit paths
    reach it.

    :param path: The directory
    :type path: ``pathlib.Path``
    :param cleanup: Remove the directory on release
    :type cleanup: bool
    :param reused: True when the directory was served from the cache
    :type reused: bool
    """

    def __init__(
        self,
        path: PathLike,
        cleanup: bool,
        reused: bool = False,
        manager: Optional["WorkspaceManager"] = None,
    ) -> None:
        self.path = pathlib.Path(path)
        self.cleanup = cleanup
        self.reused = reused
        self.released = False
        self._manager = manager
        self._lock = threading.Lock()

    def release(self) -> None:
        with self._lock:
            if self.released:
                return
            self.released = True
        if self._manager is not None:
            self._manager._forget(self)
        if not self.cleanup:
            return
        log.debug("Cleaning up %s", self.path)
        remove_path(self.path)

    def __fspath__(self) -> str:
        return os.fspath(self.path)

    def __enter__(self) -> "ScopedDir":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if exc is not None and self.cleanup:
            log.debug("Best effort cleanup of %s after %r", self.path, exc)
        self.release()

    def __repr__(self) -> str:
        return f"<ScopedDir {self.path} cleanup={self.cleanup} reused={self.reused}>"


class WorkspaceManager:
    """
    Hands out working directories and makes sure they are released.

    When ``clean`` is false an existing directory is a cache hit and is reused
    as is; when ``clean`` is true every directory is reset before use and
    removed when its scope ends.

    :param clean: Whether the caller opted into cleanup
    :type clean: bool
    """

    def __init__(self, clean: bool = False) -> None:
        self.clean = clean
        self._scopes: Dict[int, ScopedDir] = {}
        self._lock = threading.Lock()
        self._registered = False

    def lookup(self, path: PathLike) -> bool:
        """
        Decide whether an existing resource can be reused.

        :return: True when the resource exists and cleanup was not requested
        :rtype: bool
        """
        path = pathlib.Path(path)
        if self.clean:
            return False
        return path.exists()

    def acquire(self, path: PathLike, reuse: bool = False) -> ScopedDir:
        """
        Reset a working directory and return a scope for it.

        :param path: The directory to acquire
        :type path: str
        :param reuse: Keep the existing directory contents
        :type reuse: bool

        :return: A handle whose release removes the directory if cleaning
        :rtype: ``ScopedDir``
        """
        path = pathlib.Path(path)
        if reuse:
            log.info("Reusing existing build in %s", path)
        else:
            remove_path(path)
            path.mkdir(parents=True, exist_ok=True)
        scope = ScopedDir(path, cleanup=self.clean, reused=reuse, manager=self)
        with self._lock:
            self._scopes[id(scope)] = scope
        return scope

    def track_file(self, path: PathLike) -> ScopedDir:
        """
        Scope an existing file, like a downloaded archive, for cleanup.
        """
        scope = ScopedDir(path, cleanup=self.clean, reused=True, manager=self)
        with self._lock:
            self._scopes[id(scope)] = scope
        return scope

    def _forget(self, scope: ScopedDir) -> None:
        with self._lock:
            self._scopes.pop(id(scope), None)

    @property
    def outstanding(self) -> list[ScopedDir]:
        with self._lock:
            return list(self._scopes.values())

    def release_all(self) -> None:
        """
        Release every scope that has not been released yet.
        """
        for scope in reversed(self.outstanding):
            scope.release()

    def __enter__(self) -> "WorkspaceManager":
        if not self._registered:
            atexit.register(self.release_all)
            self._registered = True
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        try:
            self.release_all()
        finally:
            if self._registered:
                atexit.unregister(self.release_all)
                self._registered = False
