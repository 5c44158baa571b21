"""Ready-made source lists for common deployment layouts."""

from __future__ import annotations

import os
from collections.abc import Iterable

from eggkit.manager import DEFAULT_DEBOUNCE, ConfigManager, ManagerOptions, new_manager
from eggkit.sources import (
    EnvOptions,
    EnvSource,
    FileOptions,
    FileSource,
    K8sConfigMapSource,
    K8sOptions,
    Logger,
    Source,
)

_CONFIG_MAP_VARIABLES = ("APP_CONFIGMAP_NAME", "CACHE_CONFIGMAP_NAME", "ACL_CONFIGMAP_NAME")


def _config_map_names() -> list[str]:
    return [name for name in map(os.environ.get, _CONFIG_MAP_VARIABLES) if name]


def _config_map_sources(logger: Logger | None) -> list[Source]:
    namespace = os.environ.get("NAMESPACE", "")
    return [
        K8sConfigMapSource(name, K8sOptions(namespace=namespace, logger=logger))
        for name in _config_map_names()
    ]


def build_sources(logger: Logger | None) -> list[Source]:
    """Environment variables followed by a source for each named ConfigMap.

    ConfigMap names come from ``APP_CONFIGMAP_NAME``, ``CACHE_CONFIGMAP_NAME``
    and ``ACL_CONFIGMAP_NAME``; the namespace from ``NAMESPACE``.
    """
    return [EnvSource(EnvOptions()), *_config_map_sources(logger)]


def build_env_only_sources() -> list[Source]:
    """Environment variables only."""
    return [EnvSource(EnvOptions())]


def build_file_sources(
    config_paths: Iterable[str | os.PathLike[str]], opts: FileOptions | None = None
) -> list[Source]:
    """Environment variables followed by one source per configuration file."""
    return [EnvSource(EnvOptions()), *(FileSource(path, opts) for path in config_paths)]


def build_hybrid_sources(
    logger: Logger | None,
    config_paths: Iterable[str | os.PathLike[str]],
    file_opts: FileOptions | None = None,
) -> list[Source]:
    """Environment variables, then files, then named ConfigMaps."""
    return [*build_file_sources(config_paths, file_opts), *_config_map_sources(logger)]


def default_manager(logger: Logger) -> ConfigManager:
    """A manager over the environment and any ConfigMaps named in it."""
    return new_manager(
        ManagerOptions(logger=logger, sources=build_sources(logger), debounce=DEFAULT_DEBOUNCE)
    )