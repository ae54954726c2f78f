# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Drive the builds of every requested platform.
"""
from __future__ import annotations

import json
import logging
import threading
from typing import Callable, List, Optional

from sslcross.common import BuildCancelled, SslCrossException, WorkspaceError
from sslcross.platforms import Platform
from sslcross.toolchain import Toolchain, ToolchainResolver

from .dist import DistLayout
from .download import SourceArchive
from .job import BuildJob, JobState, extract_source
from .matrix import JobSpec, expand_matrix
from .merge import FatBinaryMerger
from .options import BuildOptions
from .workspace import WorkspaceManager

log = logging.getLogger(__name__)


class PlatformResult:
    """
    The outcome of one platform's pipeline.
    """

    def __init__(
        self,
        platform: Platform,
        error: Optional[BaseException] = None,
        jobs: Optional[List[BuildJob]] = None,
    ) -> None:
        self.platform = platform
        self.error = error
        self.jobs: List[BuildJob] = jobs if jobs is not None else []
        self.specs: List[JobSpec] = []
        self.toolchain: Optional[Toolchain] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def arch(self) -> Optional[str]:
        """
        The architecture being built when the platform failed, if any.
        """
        if self.error is None:
            return None
        arch = getattr(self.error, "arch", None)
        if arch:
            return arch
        for job in self.jobs:
            if job.state is JobState.FAILED:
                return job.arch
        return None

    def __repr__(self) -> str:
        status = "ok" if self.ok else f"failed: {self.error}"
        return f"<PlatformResult {self.platform.name} {status}>"


class BuildReport:
    """
    The outcome of a run, one result per attempted platform.
    """

    def __init__(self) -> None:
        self.results: List[PlatformResult] = []
        self.error: Optional[BaseException] = None

    def add(self, result: PlatformResult) -> None:
        self.results.append(result)

    @property
    def failures(self) -> List[PlatformResult]:
        return [_ for _ in self.results if not _.ok]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class Orchestrator:
    """
    Expand, build, merge and lay out each requested platform.

    Platforms are isolated from each other, a failing platform is reported
    and the next one is attempted. Within a platform the first failing
    architecture stops the platform.

    :param options: The options of this run
    :type options: ``sslcross.build.options.BuildOptions``
    :param resolver: Resolves each platform's toolchain
    :type resolver: ``sslcross.toolchain.ToolchainResolver``
    :param cancel: The run's cancellation signal
    :type cancel: ``threading.Event``
    """

    def __init__(
        self,
        options: BuildOptions,
        resolver: Optional[ToolchainResolver] = None,
        source: Optional[SourceArchive] = None,
        merger: Optional[FatBinaryMerger] = None,
        cancel: Optional[threading.Event] = None,
        job_factory: Callable[..., BuildJob] = BuildJob,
    ) -> None:
        self.options = options
        self.dirs = options.dirs
        self.cancel = cancel if cancel is not None else threading.Event()
        if resolver is None:
            resolver = ToolchainResolver(android_api=options.android_api)
        self.resolver = resolver
        if source is None:
            source = SourceArchive(
                options.openssl_version,
                destination=self.dirs.download,
                checksum=options.checksum,
            )
        self.source = source
        if merger is None:
            merger = FatBinaryMerger(cancel=self.cancel)
        self.merger = merger
        self.dist = DistLayout(options.dist_path)
        self.job_factory = job_factory

    def prepare(self) -> None:
        """
        Create the dist tree, resetting requested platforms when cleaning.
        """
        if self.options.clean:
            for platform in self.options.platforms:
                self.dist.reset(platform)
        self.dist.root.mkdir(parents=True, exist_ok=True)

    def expand(self, platform: Platform) -> List[JobSpec]:
        return expand_matrix(
            platform,
            self.options.archs_for(platform),
            self.dirs.source(platform.name) / self.source.dirname,
            self.dirs,
        )

    def plan(self, platform: Platform) -> PlatformResult:
        """
        Validate a platform's inputs and resolve its toolchain.

        Nothing is downloaded or run yet. A platform that can not be built is
        returned with its error set.
        """
        result = PlatformResult(platform)
        try:
            result.specs = self.expand(platform)
            result.toolchain = self.resolver.resolve(platform)
        except SslCrossException as exc:
            result.error = exc
            log.error("Unable to build OpenSSL for %s: %s", platform.name, exc)
        return result

    def build_platform(
        self, platform: Platform, workspace: WorkspaceManager, result: PlatformResult
    ) -> None:
        """
        Run one planned platform's pipeline.
        """
        log.info("Building OpenSSL for %s", platform.description)
        specs = result.specs
        toolchain = result.toolchain
        archive = self.source.filepath
        staged = platform.merges and len(specs) > 1
        source_scope = extract_source(
            archive,
            self.source.dirname,
            self.dirs.source(platform.name),
            workspace,
            platform=platform.name,
        )
        with source_scope:
            for spec in specs:
                job = self.job_factory(
                    spec,
                    toolchain.job_env(),
                    self.dist,
                    workspace,
                    staged=staged,
                    cancel=self.cancel,
                    dirs=self.dirs,
                )
                result.jobs.append(job)
                try:
                    job.run()
                except SslCrossException as exc:
                    if getattr(exc, "platform", None) is None:
                        setattr(exc, "platform", platform.name)
                    if getattr(exc, "arch", None) is None:
                        setattr(exc, "arch", spec.arch)
                    raise
        if staged:
            log.info("Creating a fat binary for %s", platform.name)
            output_dir = self.dist.platform_dir(platform)
            for library in platform.libraries:
                inputs = [
                    self.dist.library_path(platform, job.arch, library, staged=True)
                    for job in result.jobs
                ]
                self.merger.merge(output_dir, library, inputs, platform=platform.name)

    @staticmethod
    def _abort(
        report: BuildReport, plans: List[PlatformResult], error: BaseException
    ) -> BuildReport:
        report.error = error
        for result in plans:
            if not result.ok:
                report.add(result)
        return report

    def run(self) -> BuildReport:
        """
        Build every requested platform in order.

        Every platform is planned before the source archive is fetched, so a
        run with no buildable platform never touches the network.

        :return: The per platform outcome of the run
        :rtype: ``BuildReport``
        """
        report = BuildReport()
        log.info("Options: %s", json.dumps(self.options.to_dict(), indent=2))
        with WorkspaceManager(clean=self.options.clean) as workspace:
            plans = [self.plan(platform) for platform in self.options.platforms]
            if not any(_.ok for _ in plans):
                for result in plans:
                    report.add(result)
                return report
            try:
                self.prepare()
            except OSError as exc:
                log.error("Unable to create %s: %s", self.dist.root, exc)
                return self._abort(report, plans, WorkspaceError(str(exc)))
            try:
                self.source(workspace, force_download=self.options.force_download)
            except SslCrossException as exc:
                log.error("Unable to fetch OpenSSL %s: %s", self.options.openssl_version, exc)
                return self._abort(report, plans, exc)
            for result in plans:
                platform = result.platform
                report.add(result)
                if not result.ok:
                    continue
                try:
                    self.build_platform(platform, workspace, result)
                except BuildCancelled as exc:
                    result.error = exc
                    log.error("Build of %s cancelled", platform.name)
                    break
                except OSError as exc:
                    result.error = WorkspaceError(str(exc), platform=platform.name)
                except SslCrossException as exc:
                    result.error = exc
                if result.error is not None:
                    log.error(
                        "Failed to build OpenSSL for %s%s: %s",
                        platform.name,
                        f" {result.arch}" if result.arch else "",
                        result.error,
                    )
                    continue
                log.info("Built OpenSSL for %s", platform.name)
        return report
