# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Expand a platform and its architecture list into build jobs.
"""
from __future__ import annotations

import pathlib
from typing import List, NamedTuple, Sequence, Union

from sslcross.common import EmptyArchitectureList, InvalidArchitecture, WorkDirs
from sslcross.platforms import Platform


class JobSpec(NamedTuple):
    """
    Everything one architecture build needs to know about its inputs and outputs.
    """

    platform: Platform
    arch: str
    source: pathlib.Path
    install: pathlib.Path
    config: str

    @property
    def name(self) -> str:
        return f"{self.platform.name}-{self.arch}"


def split_arches(arches: Union[str, Sequence[str], None]) -> List[str]:
    """
    Split a comma separated architecture list, dropping empty entries.
    """
    if not arches:
        return []
    if isinstance(arches, str):
        arches = arches.split(",")
    return [_.strip() for _ in arches if _ and _.strip()]


def expand_matrix(
    platform: Platform,
    arches: Union[str, Sequence[str], None],
    source: pathlib.Path,
    dirs: WorkDirs,
) -> List[JobSpec]:
    """
    Expand a platform's architectures into job specs, preserving their order.

    The order matters, the last architecture built provides the platform's
    headers.

    :param platform: The platform to build
    :type platform: ``sslcross.platforms.Platform``
    :param arches: Comma separated architectures, or a list of them
    :type arches: str
    :param source: The extracted source tree shared by the platform's jobs
    :type source: ``pathlib.Path``
    :param dirs: The working directories of this run
    :type dirs: ``sslcross.common.WorkDirs``

    :raises EmptyArchitectureList: If no architecture was given
    :raises InvalidArchitecture: If an architecture is unknown to the platform or repeated

    :return: One job spec per architecture
    :rtype: list
    """
    names = split_arches(arches)
    if not names:
        raise EmptyArchitectureList(platform.name)
    jobs: List[JobSpec] = []
    seen = set()
    for arch in names:
        if arch not in platform.configs:
            raise InvalidArchitecture(platform.name, arch, platform.arches)
        if arch in seen:
            raise InvalidArchitecture(platform.name, f"{arch} (listed twice)")
        seen.add(arch)
        jobs.append(
            JobSpec(
                platform,
                arch,
                source,
                dirs.install(platform.name, arch),
                platform.config_for(arch),
            )
        )
    return jobs
