# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Combine single architecture static libraries into fat binaries.
"""
from __future__ import annotations

import logging
import pathlib
import threading
from typing import Any, Callable, Optional, Sequence

from sslcross.common import (
    ExternalCommandError,
    MergeError,
    MissingArtifactError,
    PathLike,
    runcmd,
)

from .workspace import remove_path

log = logging.getLogger(__name__)

LIPO = "lipo"


class FatBinaryMerger:
    """
    Run ``lipo`` over the staged per architecture libraries of a platform.

    :param cancel: The run's cancellation signal
    :type cancel: ``threading.Event``
    :param run: The command runner, defaults to ``runcmd``
    :type run: types.FunctionType
    """

    def __init__(
        self,
        cancel: Optional[threading.Event] = None,
        run: Optional[Callable[..., Any]] = None,
        lipo: str = LIPO,
    ) -> None:
        self.cancel = cancel
        self.run = run
        self.lipo = lipo

    def merge(
        self,
        output_dir: PathLike,
        library: str,
        staged: Sequence[PathLike],
        platform: Optional[str] = None,
    ) -> pathlib.Path:
        """
        Merge the staged libraries and remove them.

        :param output_dir: The platform's output directory
        :type output_dir: str
        :param library: The library name, e.g. ``libssl.a``
        :type library: str
        :param staged: The architecture suffixed library files
        :type staged: list

        :raises MissingArtifactError: If a staged library is missing
        :raises MergeError: If ``lipo`` fails

        :return: The path to the fat binary
        :rtype: ``pathlib.Path``
        """
        staged_paths = [pathlib.Path(_) for _ in staged]
        for path in staged_paths:
            if not path.is_file():
                raise MissingArtifactError(path.name, path)
        output = pathlib.Path(output_dir) / library
        log.info("Creating a fat binary %s from %d architectures", output, len(staged))
        run = self.run if self.run is not None else runcmd
        cmd = [self.lipo, *staged_paths, "-create", "-output", output]
        try:
            run(cmd, cancel=self.cancel)
        except ExternalCommandError as exc:
            raise MergeError(
                f"Unable to create {library}: {exc}",
                platform=platform,
                returncode=exc.returncode,
            )
        if not output.is_file():
            raise MissingArtifactError(library, output)
        for path in staged_paths:
            log.debug("Removing staged library %s", path)
            remove_path(path)
        return output
