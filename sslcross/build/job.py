# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Build OpenSSL for a single platform architecture.

A job walks through these states::

    Extracted -> Configured -> Compiled -> Installed -> Collected -> (Cleaned)

and ends in ``Failed`` when any step raises. A cached install directory
takes the job from ``Extracted`` straight to ``Installed``; only installs
that completed, marked by ``INSTALL_MARKER``, count as cached.
"""
from __future__ import annotations

import enum
import logging
import pathlib
import tarfile
import threading
from typing import Dict, List, Mapping, Optional, Sequence, Type

from sslcross.common import (
    MAKE_JOBS,
    ConfigureError,
    CompileError,
    ExternalCommandError,
    ExtractionError,
    InstallError,
    MissingArtifactError,
    PathLike,
    WorkDirs,
    WorkspaceError,
    extract_archive,
    runcmd,
)

from .dist import DistLayout
from .matrix import JobSpec
from .workspace import ScopedDir, WorkspaceManager

log = logging.getLogger(__name__)


class JobState(enum.Enum):
    EXTRACTED = "extracted"
    CONFIGURED = "configured"
    COMPILED = "compiled"
    INSTALLED = "installed"
    COLLECTED = "collected"
    CLEANED = "cleaned"
    FAILED = "failed"


TERMINAL_STATES = (JobState.CLEANED, JobState.FAILED)

# Written into the install directory once ``make install_sw`` succeeded.
INSTALL_MARKER = ".sslcross-installed"

# The states a job may move to from each state.
TRANSITIONS: Dict[JobState, Sequence[JobState]] = {
    JobState.EXTRACTED: (JobState.CONFIGURED, JobState.INSTALLED),
    JobState.CONFIGURED: (JobState.COMPILED,),
    JobState.COMPILED: (JobState.INSTALLED,),
    JobState.INSTALLED: (JobState.COLLECTED,),
    JobState.COLLECTED: (JobState.CLEANED,),
    JobState.CLEANED: (),
    JobState.FAILED: (),
}


def extract_source(
    archive: PathLike,
    dirname: str,
    dest: PathLike,
    workspace: WorkspaceManager,
    platform: Optional[str] = None,
) -> ScopedDir:
    """
    Unpack the source archive into a platform's source directory.

    An existing extraction is reused when the workspace allows it.

    :param archive: The source archive
    :type archive: str
    :param dirname: The versioned directory the archive holds, e.g. ``openssl-3.4.0``
    :type dirname: str
    :param dest: The platform's source directory
    :type dest: str
    :param workspace: The run's workspace
    :type workspace: ``sslcross.build.workspace.WorkspaceManager``

    :raises ExtractionError: If the archive can not be read or lacks ``dirname``

    :return: The scope of the source directory
    :rtype: ``sslcross.build.workspace.ScopedDir``
    """
    dest = pathlib.Path(dest)
    reuse = workspace.lookup(dest / dirname)
    scope = workspace.acquire(dest, reuse=reuse)
    try:
        if not reuse:
            log.debug("Extracting OpenSSL from %s to %s", archive, dest)
            try:
                extract_archive(dest, archive)
            except (OSError, tarfile.TarError, EOFError) as exc:
                raise ExtractionError(
                    f"Failed to untar {archive}: {exc}", platform=platform
                )
        if not (dest / dirname).is_dir():
            raise ExtractionError(
                f"Failed to extract OpenSSL to {dest / dirname}", platform=platform
            )
    except BaseException:
        scope.release()
        raise
    return scope


class BuildJob:
    """
    Configure, compile, install and collect one architecture.

    :param spec: What to build and where
    :type spec: ``sslcross.build.matrix.JobSpec``
    :param env: The complete environment for this job's external commands
    :type env: dict
    :param dist: The distribution tree writer
    :type dist: ``sslcross.build.dist.DistLayout``
    :param workspace: The run's workspace
    :type workspace: ``sslcross.build.workspace.WorkspaceManager``
    :param staged: Write libraries under architecture suffixed names for a later merge
    :type staged: bool
    :param cancel: The run's cancellation signal
    :type cancel: ``threading.Event``
    :param dirs: Working directories, used for the job log file
    :type dirs: ``sslcross.common.WorkDirs``
    """

    def __init__(
        self,
        spec: JobSpec,
        env: Mapping[str, str],
        dist: DistLayout,
        workspace: WorkspaceManager,
        staged: bool = False,
        cancel: Optional[threading.Event] = None,
        dirs: Optional[WorkDirs] = None,
    ) -> None:
        self.spec = spec
        self.env = dict(env)
        self.dist = dist
        self.workspace = workspace
        self.staged = staged
        self.cancel = cancel
        self.dirs = dirs
        self.state = JobState.EXTRACTED
        self.history: List[JobState] = [self.state]
        self.outputs: List[pathlib.Path] = []
        self.reused = False

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def platform(self) -> str:
        return self.spec.platform.name

    @property
    def arch(self) -> str:
        return self.spec.arch

    @property
    def libdir(self) -> pathlib.Path:
        return self.spec.install / "lib"

    @property
    def marker(self) -> pathlib.Path:
        return self.spec.install / INSTALL_MARKER

    def _advance(self, state: JobState) -> None:
        if state is not JobState.FAILED and state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid transition for {self.name}: {self.state.value} -> {state.value}"
            )
        log.debug("%s %s -> %s", self.name, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _run(self, cmd: Sequence[PathLike], error: Type[ExternalCommandError]) -> None:
        try:
            runcmd(cmd, env=self.env, cwd=self.spec.source, cancel=self.cancel)
        except ExternalCommandError as exc:
            raise error(
                exc.message,
                platform=self.platform,
                arch=self.arch,
                returncode=exc.returncode,
            )

    def configure(self) -> None:
        cmd = [
            "./Configure",
            self.spec.config,
            *self.spec.platform.configure_args,
            f"--prefix={self.spec.install}",
        ]
        log.debug(
            "Configuring %s with %s, will install in %s",
            self.name,
            self.spec.config,
            self.spec.install,
        )
        self._run(cmd, ConfigureError)
        self._advance(JobState.CONFIGURED)

    def compile(self) -> None:
        self._run(["make", f"-j{MAKE_JOBS}"], CompileError)
        self._advance(JobState.COMPILED)

    def install(self) -> None:
        self._run(["make", f"-j{MAKE_JOBS}", "install_sw"], InstallError)
        self._run(["make", f"-j{MAKE_JOBS}", "install_ssldirs"], InstallError)
        self.marker.touch()
        self._advance(JobState.INSTALLED)

    def collect(self) -> List[pathlib.Path]:
        """
        Verify the installed libraries and copy them into the dist tree.

        Every library is checked before anything is copied.

        :raises MissingArtifactError: Naming the first missing library
        """
        platform = self.spec.platform
        for library in platform.libraries:
            path = self.libdir / library
            if not path.is_file():
                raise MissingArtifactError(library, path)
        include = self.spec.install / "include"
        if not include.is_dir():
            raise MissingArtifactError("include", include)
        outputs = []
        for library in platform.libraries:
            outputs.append(
                self.dist.write_library(
                    self.libdir / library,
                    platform,
                    self.arch,
                    library,
                    staged=self.staged,
                )
            )
        self.dist.write_headers(include, platform)
        self.outputs = outputs
        self._advance(JobState.COLLECTED)
        return outputs

    def _log_handler(self) -> Optional[logging.Handler]:
        if self.dirs is None:
            return None
        self.dirs.logs.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.dirs.log_file(self.name), mode="w")
        handler.setFormatter(logging.Formatter(f"%(asctime)s {self.name} %(message)s"))
        logging.getLogger(None).addHandler(handler)
        return handler

    def run(self) -> List[pathlib.Path]:
        """
        Run the job to completion.

        The install directory is acquired for the duration of the job and
        released on every exit path; with ``clean`` set that removes it. An
        install directory left behind by an unfinished build is rebuilt.

        :raises WorkspaceError: If a working or dist directory can not be written

        :return: The files written to the dist tree
        :rtype: list
        """
        log.info("Building OpenSSL for %s %s", self.spec.platform.description, self.arch)
        handler = self._log_handler()
        try:
            return self._run_steps()
        except OSError as exc:
            if self.state is not JobState.FAILED:
                self._advance(JobState.FAILED)
            raise WorkspaceError(str(exc), platform=self.platform, arch=self.arch)
        finally:
            if handler is not None:
                logging.getLogger(None).removeHandler(handler)
                handler.close()

    def _run_steps(self) -> List[pathlib.Path]:
        self.reused = self.workspace.lookup(self.marker)
        scope = self.workspace.acquire(self.spec.install, reuse=self.reused)
        with scope:
            try:
                if self.reused:
                    log.info("Reusing existing build of %s", self.name)
                    self._advance(JobState.INSTALLED)
                else:
                    self.configure()
                    self.compile()
                    self.install()
                outputs = self.collect()
            except BaseException:
                self._advance(JobState.FAILED)
                raise
        if scope.cleanup:
            self._advance(JobState.CLEANED)
        return outputs

    def __repr__(self) -> str:
        return f"<BuildJob {self.name} {self.state.value}>"
