# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Target platforms and the OpenSSL configurations used to build them.

See https://github.com/openssl/openssl/blob/070b6a9/Configurations/15-android.conf
and https://github.com/openssl/openssl/blob/070b6a9/Configurations/15-ios.conf
"""
from __future__ import annotations

from typing import Dict, Mapping, Tuple

from .common import ALL, ANDROID, IPHONEOS, IPHONESIM, PLATFORM_ORDER, ConfigurationError

STATIC_LIBS = ("libssl.a", "libcrypto.a")
SHARED_LIBS = ("libssl.so", "libcrypto.so")

COMMON_FEATURES = ("no-ui-console", "no-engine", "no-filenames")


class Platform:
    """
    A build target and the fixed facts about building OpenSSL for it.

    :param name: The platform name, also the name of its dist subdirectory
    :type name: str
    :param configs: Mapping of valid architecture to ``Configure`` target
    :type configs: dict
    :param libraries: The library files every architecture must produce
    :type libraries: tuple
    :param configure_args: Feature flags passed to ``Configure``
    :type configure_args: tuple
    :param per_arch_layout: True when libraries are kept per architecture instead of merged
    :type per_arch_layout: bool
    """

    def __init__(
        self,
        name: str,
        description: str,
        configs: Mapping[str, str],
        libraries: Tuple[str, ...],
        configure_args: Tuple[str, ...],
        per_arch_layout: bool = False,
    ) -> None:
        self.name = name
        self.description = description
        self.configs: Dict[str, str] = dict(configs)
        self.libraries = libraries
        self.configure_args = configure_args
        self.per_arch_layout = per_arch_layout

    @property
    def arches(self) -> Tuple[str, ...]:
        return tuple(self.configs)

    @property
    def merges(self) -> bool:
        """
        True when several architectures are combined into one fat binary.
        """
        return not self.per_arch_layout

    def config_for(self, arch: str) -> str:
        """
        The ``Configure`` target for an architecture of this platform.
        """
        try:
            return self.configs[arch]
        except KeyError:
            raise ConfigurationError(f"No {self.name} configuration for {arch}")

    def __repr__(self) -> str:
        return f"<Platform {self.name}>"


platforms: Dict[str, Platform] = {
    ANDROID: Platform(
        ANDROID,
        "Android",
        {
            "arm": "android-arm",
            "arm64": "android-arm64",
            "x86": "android-x86",
            "x86_64": "android-x86_64",
        },
        STATIC_LIBS + SHARED_LIBS,
        ("-fPIC",) + COMMON_FEATURES + ("no-stdio",),
        per_arch_layout=True,
    ),
    IPHONEOS: Platform(
        IPHONEOS,
        "iPhone OS",
        {
            "arm64": "ios64-xcrun",
            "x86_64": "ios-xcrun",
        },
        STATIC_LIBS,
        COMMON_FEATURES + ("no-shared",),
    ),
    IPHONESIM: Platform(
        IPHONESIM,
        "iOS simulator",
        {
            "arm64": "iossimulator-arm64-xcrun",
            "x86_64": "iossimulator-x86_64-xcrun",
        },
        STATIC_LIBS,
        COMMON_FEATURES + ("no-shared",),
    ),
}

TARGETS = PLATFORM_ORDER + (ALL,)


def get_platform(name: str) -> Platform:
    try:
        return platforms[name]
    except KeyError:
        raise ConfigurationError(f"Unknown platform {name}")


def selected_platforms(target: str) -> list[Platform]:
    """
    The platforms a target selector stands for, in build order.

    :param target: One of android, iphoneos, iphonesim or all
    :type target: str

    :raises ConfigurationError: If the target is unknown
    """
    if target == ALL:
        return [platforms[_] for _ in PLATFORM_ORDER]
    return [get_platform(target)]
