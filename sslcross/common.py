# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Common classes and values used around sslcross.
"""
from __future__ import annotations

import http.client
import logging
import os
import pathlib
import selectors
import subprocess
import tarfile
import tempfile
import threading
import time
from typing import IO, Any, BinaryIO, Literal, Mapping, Optional, Sequence, Union, cast

# sslcross package version
__version__ = "0.3.0"

log = logging.getLogger(__name__)

MODULE_DIR = pathlib.Path(__file__).resolve().parent

DEFAULT_OPENSSL = "3.4.0"
DEFAULT_ANDROID_API = "21"

ANDROID = "android"
IPHONEOS = "iphoneos"
IPHONESIM = "iphonesim"
ALL = "all"

# Fixed processing order when every platform is requested.
PLATFORM_ORDER = (ANDROID, IPHONEOS, IPHONESIM)

MAKE_JOBS = 8

DATA_ENV = "SSLCROSS_DATA"

DEFAULT_DATA_DIR = pathlib.Path(tempfile.gettempdir()) / "sslcross"

REQUEST_HEADERS = {"User-Agent": f"sslcross {__version__}"}

PathLike = Union[str, os.PathLike[str]]


class SslCrossException(Exception):
    """
    Base class for exeptions generated from sslcross.
    """


class ConfigurationError(SslCrossException):
    """
    Invalid build options.
    """


class InvalidArchitecture(ConfigurationError):
    """
    An architecture is not valid for the requested platform.
    """

    def __init__(self, platform: str, arch: str, valid: Sequence[str] = ()) -> None:
        self.platform = platform
        self.arch = arch
        msg = f"Invalid {platform} architecture: {arch!r}"
        if valid:
            msg += " (expected one of: {})".format(", ".join(valid))
        super().__init__(msg)


class EmptyArchitectureList(ConfigurationError):
    """
    A platform was requested without any architectures.
    """

    def __init__(self, platform: str) -> None:
        self.platform = platform
        super().__init__(f"No {platform} architectures specified")


class HostEnvironmentError(SslCrossException):
    """
    The host is missing a toolchain or SDK required by a platform.
    """


class ToolchainNotFoundError(HostEnvironmentError):
    """
    The Android NDK could not be found.
    """


class AmbiguousToolchainError(HostEnvironmentError):
    """
    The Android NDK does not hold exactly one prebuilt host toolchain.
    """


class XcodeNotFoundError(HostEnvironmentError):
    """
    The active Xcode developer directory could not be queried.
    """


class ExternalCommandError(SslCrossException):
    """
    An external command finished with a non zero exit code.

    The platform, architecture and step are filled in as the error is wrapped
    on its way up to the platform handler.
    """

    step = "command"

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        arch: Optional[str] = None,
        returncode: Optional[int] = None,
        step: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.arch = arch
        self.returncode = returncode
        if step is not None:
            self.step = step

    def __str__(self) -> str:
        context = [_ for _ in (self.platform, self.arch) if _]
        if context:
            return "{} {} failed: {}".format(" ".join(context), self.step, self.message)
        return self.message


class DownloadError(ExternalCommandError):
    step = "download"


class ExtractionError(ExternalCommandError):
    step = "extract"


class ConfigureError(ExternalCommandError):
    step = "configure"


class CompileError(ExternalCommandError):
    step = "compile"


class InstallError(ExternalCommandError):
    step = "install"


class MergeError(ExternalCommandError):
    step = "merge"


class ArtifactError(SslCrossException):
    """
    An expected output file is missing after a step that claimed success.
    """


class MissingArtifactError(ArtifactError):
    """
    A library was not produced by the install step.
    """

    def __init__(self, library: str, path: PathLike) -> None:
        self.library = library
        self.path = pathlib.Path(path)
        super().__init__(f"Library {library} not found at {self.path}")


class WorkspaceError(ArtifactError):
    """
    A working or distribution directory could not be written.

    Raised in place of the ``OSError`` so the failure is reported against the
    platform and architecture being built.
    """

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        arch: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.arch = arch

    def __str__(self) -> str:
        where = " ".join(_ for _ in (self.platform, self.arch) if _)
        if where:
            return f"{where}: {self.message}"
        return self.message


class ChecksumValidationError(SslCrossException):
    """
    A downloaded file does not match its expected digest.
    """


class BuildCancelled(SslCrossException):
    """
    The build was cancelled before it could finish.
    """


def data_dir() -> pathlib.Path:
    """
    The default root for sslcross scratch directories.

    Honors the ``SSLCROSS_DATA`` environment variable.
    """
    return pathlib.Path(os.environ.get(DATA_ENV, DEFAULT_DATA_DIR)).resolve()


class WorkDirs:
    """
    Simple class used to hold references to working directories sslcross uses relative to a given root.

    :param root: The root of the working directories tree
    :type root: str
    """

    def __init__(self: "WorkDirs", root: PathLike) -> None:
        self.root: pathlib.Path = pathlib.Path(root)
        self.download: pathlib.Path = self.root / "download"
        self.src: pathlib.Path = self.root / "src"
        self.build: pathlib.Path = self.root / "build"
        self.logs: pathlib.Path = self.root / "logs"

    def source(self, platform: str) -> pathlib.Path:
        """
        The directory a platform's source archive is extracted into.
        """
        return self.src / platform

    def install(self, platform: str, arch: str) -> pathlib.Path:
        """
        The install prefix for one platform architecture.
        """
        return self.build / f"openssl-{platform}-{arch}"

    def log_file(self, name: str) -> pathlib.Path:
        return self.logs / f"{name}.log"


def work_dirs(root: Optional[PathLike] = None) -> WorkDirs:
    """
    Returns a WorkDirs instance based on the given root.

    :param root: The desired root of sslcross's working directories
    :type root: str

    :return: A WorkDirs instance based on the given root
    :rtype: ``sslcross.common.WorkDirs``
    """
    if root is None:
        return WorkDirs(data_dir())
    return WorkDirs(pathlib.Path(root).resolve())


def extract_archive(to_dir: PathLike, archive: PathLike) -> None:
    """
    Extract an archive to a specific location.

    :param to_dir: The directory to extract to
    :type to_dir: str
    :param archive: The archive to extract
    :type archive: str
    """
    archive_path = pathlib.Path(archive)
    archive_str = str(archive_path)
    to_path = pathlib.Path(to_dir)
    TarReadMode = Literal["r:gz", "r:xz", "r:bz2", "r"]
    read_type: TarReadMode = "r"
    if archive_str.endswith(".tgz"):
        log.debug("Found tgz archive")
        read_type = "r:gz"
    elif archive_str.endswith(".tar.gz"):
        log.debug("Found tar.gz archive")
        read_type = "r:gz"
    elif archive_str.endswith(".xz"):
        log.debug("Found xz archive")
        read_type = "r:xz"
    elif archive_str.endswith(".bz2"):
        log.debug("Found bz2 archive")
        read_type = "r:bz2"
    else:
        log.warning("Found unknown archive type: %s", archive_path)
    with tarfile.open(str(archive_path), mode=read_type) as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(str(to_path), filter="data")
        else:
            tar.extractall(str(to_path))


def get_download_location(url: str, dest: PathLike) -> str:
    """
    Get the full path to where the url will be downloaded to.

    :param url: The url to donwload
    :type url: str
    :param dest: Where to download the url to
    :type dest: str

    :return: The path to where the url will be downloaded to
    :rtype: str
    """
    return os.path.join(os.fspath(dest), os.path.basename(url))


def fetch_url(url: str, fp: BinaryIO, backoff: int = 3, timeout: float = 30) -> None:
    """
    Fetch the contents of a url.

    This method will store the contents in the given file like object.
    """
    import urllib.error
    import urllib.request

    last = time.time()
    attempts = max(backoff, 1)
    response: http.client.HTTPResponse | None = None
    request = urllib.request.Request(url, headers=REQUEST_HEADERS)
    for attempt in range(1, attempts + 1):
        try:
            response = urllib.request.urlopen(request, timeout=timeout)
            break
        except (
            urllib.error.HTTPError,
            urllib.error.URLError,
            http.client.RemoteDisconnected,
        ) as exc:
            if attempt >= attempts:
                raise DownloadError(f"Error fetching url {url} {exc}")
            log.debug("Unable to connect %s", url)
            time.sleep(attempt * 10)
    if response is None:
        raise DownloadError(f"Unable to open url {url}")
    log.info("url opened %s", url)
    try:
        total = 0
        size = 1024 * 300
        block = response.read(size)
        while block:
            total += len(block)
            if time.time() - last > 10:
                log.info("%s > %d", url, total)
                last = time.time()
            fp.write(block)
            block = response.read(size)
    finally:
        response.close()
    log.info("Download complete %s", url)


def download_url(
    url: str,
    dest: PathLike,
    verbose: bool = True,
    backoff: int = 3,
    timeout: float = 60,
) -> str:
    """
    Download the url to the provided destination.

    This method assumes the last part of the url is a filename. (https://foo.com/bar/myfile.tar.gz)

    :param url: The url to download
    :type url: str
    :param dest: Where to download the url to
    :type dest: str
    :param verbose: Log download url and destination
    :type verbose: bool

    :raises DownloadError: If the url was unable to be downloaded

    :return: The path to the downloaded content
    :rtype: str
    """
    local = get_download_location(url, dest)
    if verbose:
        log.debug("Downloading %s -> %s", url, local)
    try:
        with open(local, "wb") as fout:
            fetch_url(url, fout, backoff, timeout)
    except Exception as exc:
        if verbose:
            log.error("Unable to download: %s\n%s", url, exc)
        try:
            os.unlink(local)
        except OSError:
            pass
        raise
    finally:
        log.debug("Finished downloading %s -> %s", url, local)
    return local


def runcmd(
    cmd: Sequence[PathLike],
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[PathLike] = None,
    cancel: Optional[threading.Event] = None,
    **kwargs: Any,
) -> subprocess.Popen[str]:
    """
    Run a command.

    Run the provided command, raising an Exception when the command finishes
    with a non zero exit code. Output is streamed to the logging system, stdout
    at INFO and stderr at ERROR. Extra keyword arguments are passed through to
    ``subprocess.Popen``.

    :param cmd: The command and its arguments
    :type cmd: list
    :param env: The complete environment of the child process
    :type env: dict
    :param cwd: The directory to run the command in
    :type cwd: str
    :param cancel: When set, no command is launched and a running one is terminated
    :type cancel: ``threading.Event``

    :return: The finished process
    :rtype: ``subprocess.Popen``

    :raises BuildCancelled: If the cancel event is set
    :raises ExternalCommandError: If the command finishes with a non zero exit code
    """
    if not cmd:
        raise ExternalCommandError("No command provided to runcmd")
    argv = [os.fspath(_) for _ in cmd]
    if cancel is not None and cancel.is_set():
        raise BuildCancelled("Not running '{}', build cancelled".format(" ".join(argv)))
    log.debug("Running command: %s", " ".join(argv))
    kwargs["stdout"] = subprocess.PIPE
    kwargs["stderr"] = subprocess.PIPE
    if "universal_newlines" not in kwargs:
        kwargs["universal_newlines"] = True
    if env is not None:
        kwargs["env"] = dict(env)
    if cwd is not None:
        kwargs["cwd"] = os.fspath(cwd)
    try:
        p = subprocess.Popen(argv, **kwargs)
    except OSError as exc:
        raise ExternalCommandError(f"Unable to run '{argv[0]}': {exc}")
    stdout_stream = p.stdout
    stderr_stream = p.stderr
    if stdout_stream is None or stderr_stream is None:
        p.wait()
        raise ExternalCommandError("Process pipes are unavailable")
    # Read both stdout and stderr simultaneously
    sel = selectors.DefaultSelector()
    sel.register(stdout_stream, selectors.EVENT_READ)
    sel.register(stderr_stream, selectors.EVENT_READ)
    open_streams = 2
    cancelled = False
    try:
        while open_streams:
            if cancel is not None and cancel.is_set() and not cancelled:
                log.warning("Terminating %s, build cancelled", argv[0])
                p.terminate()
                cancelled = True
            for key, val1 in sel.select(timeout=0.5):
                del val1  # unused
                stream = cast(IO[str], key.fileobj)
                line = stream.readline()
                if not line:
                    sel.unregister(stream)
                    open_streams -= 1
                    continue
                if line.endswith("\n"):
                    line = line[:-1]
                if stream is stdout_stream:
                    log.info(line)
                else:
                    log.error(line)
    finally:
        sel.close()
        p.wait()
        stdout_stream.close()
        stderr_stream.close()
    if cancelled:
        raise BuildCancelled("Build cmd '{}' cancelled".format(" ".join(argv)))
    if p.returncode != 0:
        raise ExternalCommandError(
            "Build cmd '{}' failed".format(" ".join(argv)),
            returncode=p.returncode,
        )
    return p


def setup_logging(
    level: str = "WARNING", logfile: Optional[PathLike] = None
) -> list[logging.Handler]:
    """
    Attach the console and run-wide log file handlers to the root logger.

    :return: The handlers that were added, so the caller can remove them
    :rtype: list
    """
    root_log = logging.getLogger(None)
    root_log.setLevel(logging.NOTSET)
    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.getLevelName(level.upper()))
    stream_handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
    handlers.append(stream_handler)
    if logfile is not None:
        os.makedirs(os.path.dirname(os.fspath(logfile)), exist_ok=True)
        file_handler = logging.FileHandler(logfile)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        handlers.append(file_handler)
    for handler in handlers:
        root_log.addHandler(handler)
    return handlers


def teardown_logging(handlers: Sequence[logging.Handler]) -> None:
    root_log = logging.getLogger(None)
    for handler in handlers:
        root_log.removeHandler(handler)
        handler.close()
