"""Configuration sources: environment variables, files and Kubernetes ConfigMaps."""

from __future__ import annotations

import json
import logging
import os
import threading
import tomllib
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import yaml

Snapshot = dict[str, str]

_DEFAULT_FILE_INTERVAL = 1.0


class Logger(Protocol):
    """The logging interface used by sources and managers."""

    def debug(self, msg: str, **fields: Any) -> None: ...

    def info(self, msg: str, **fields: Any) -> None: ...

    def warn(self, msg: str, **fields: Any) -> None: ...

    def error(self, err: BaseException | None, msg: str, **fields: Any) -> None: ...


def _silent_logger() -> logging.Logger:
    log = logging.getLogger("eggkit.silent")
    if not log.handlers:
        log.addHandler(logging.NullHandler())
    log.propagate = False
    return log


class NoopLogger:
    """A logger whose records go to a handler that discards them."""

    def __init__(self) -> None:
        self._log = _silent_logger()

    def debug(self, msg: str, **fields: Any) -> None:
        self._log.debug(msg, extra={"fields": fields})

    def info(self, msg: str, **fields: Any) -> None:
        self._log.info(msg, extra={"fields": fields})

    def warn(self, msg: str, **fields: Any) -> None:
        self._log.warning(msg, extra={"fields": fields})

    def error(self, err: BaseException | None, msg: str, **fields: Any) -> None:
        self._log.error("%s: %s", msg, err, extra={"fields": fields})


class SourceError(Exception):
    """A source could not read or parse its configuration."""


class Source(ABC):
    """A configuration source that can be loaded and watched for updates."""

    @abstractmethod
    def load(self) -> Snapshot | None:
        """Return the current key-value snapshot, or ``None`` for no data."""

    @abstractmethod
    def watch(self, stop: threading.Event) -> Iterator[Snapshot]:
        """Yield new snapshots as they appear until ``stop`` is set."""


def _until_stopped(stop: threading.Event) -> Iterator[Snapshot]:
    stop.wait()
    yield from ()


@dataclass
class EnvOptions:
    """Environment source behaviour; ``lowercase`` wins over ``uppercase``."""

    prefix: str = ""
    lowercase: bool = False
    uppercase: bool = False


class EnvSource(Source):
    """Reads configuration from the process environment."""

    def __init__(self, opts: EnvOptions | None = None) -> None:
        opts = opts or EnvOptions()
        self.prefix = opts.prefix
        self.lowercase = opts.lowercase
        self.uppercase = opts.uppercase

    def load(self) -> Snapshot:
        """Return the matching environment variables, prefix removed."""
        config: Snapshot = {}
        for key, value in os.environ.items():
            if self.prefix:
                if not key.startswith(self.prefix):
                    continue
                key = key[len(self.prefix):]
            if self.lowercase:
                key = key.lower()
            elif self.uppercase:
                key = key.upper()
            config[key] = value
        return config

    def watch(self, stop: threading.Event) -> Iterator[Snapshot]:
        """The environment is static: yield nothing and end once stopped."""
        return _until_stopped(stop)


@dataclass
class FileOptions:
    """File source behaviour; ``interval`` is the polling period in seconds."""

    watch: bool = True
    format: str = ""
    interval: float = 0.0


class FileSource(Source):
    """Reads configuration from a JSON, YAML or TOML file, flattening nested keys."""

    def __init__(
        self,
        path: str | os.PathLike[str],
        opts: FileOptions | None = None,
        logger: Logger | None = None,
    ) -> None:
        opts = opts or FileOptions()
        self.path = os.fspath(path)
        self.format = opts.format or detect_file_format(self.path)
        self.watch_enabled = opts.watch
        self.interval = opts.interval or _DEFAULT_FILE_INTERVAL
        self.logger: Logger = logger or NoopLogger()

    def load(self) -> Snapshot:
        """Parse the file; a missing file gives an empty snapshot."""
        try:
            with open(self.path, "rb") as handle:
                data = handle.read()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise SourceError(f"failed to read file {self.path}: {exc}") from exc
        return parse_config_file(data, self.format)

    def watch(self, stop: threading.Event) -> Iterator[Snapshot]:
        """Poll the file and yield its contents whenever it is modified."""
        if not self.watch_enabled:
            yield from _until_stopped(stop)
            return

        last_mtime: int | None = None
        while not stop.wait(self.interval):
            try:
                mtime = os.stat(self.path).st_mtime_ns
            except FileNotFoundError:
                continue
            except OSError as exc:
                self.logger.error(exc, "failed to stat file", path=self.path)
                continue

            if last_mtime is not None and mtime <= last_mtime:
                continue
            last_mtime = mtime

            try:
                config = self.load()
            except SourceError as exc:
                self.logger.error(exc, "failed to load file", path=self.path)
                continue
            yield config


def detect_file_format(path: str | os.PathLike[str]) -> str:
    """Guess the format from the file extension, defaulting to ``json``."""
    ext = os.path.splitext(os.fspath(path))[1].lower()
    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".toml":
        return "toml"
    return "json"


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def _flatten(mapping: Mapping[Any, Any], prefix: str = "") -> Snapshot:
    flat: Snapshot = {}
    for key, value in mapping.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, name + "."))
        else:
            flat[name] = _scalar(value)
    return flat


def parse_config_file(data: bytes | str, fmt: str) -> Snapshot:
    """Parse file content into a flat snapshot; nested keys are joined with dots."""
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    try:
        if fmt == "json":
            parsed = json.loads(text) if text.strip() else {}
        elif fmt == "yaml":
            parsed = yaml.safe_load(text)
        elif fmt == "toml":
            parsed = tomllib.loads(text)
        else:
            raise SourceError(f"unsupported format: {fmt}")
    except (json.JSONDecodeError, yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
        raise SourceError(f"invalid {fmt} configuration: {exc}") from exc

    if parsed is None:
        return {}
    if not isinstance(parsed, Mapping):
        raise SourceError(f"{fmt} configuration must be a mapping at the top level")
    return _flatten(parsed)


@dataclass
class K8sOptions:
    """ConfigMap source behaviour; the namespace defaults to ``default``."""

    namespace: str = ""
    logger: Logger | None = None


class K8sConfigMapSource(Source):
    """A ConfigMap source that contributes no data outside a cluster."""

    def __init__(self, name: str, opts: K8sOptions | None = None) -> None:
        opts = opts or K8sOptions()
        self.name = name
        self.namespace = opts.namespace or "default"
        self.logger: Logger = opts.logger or NoopLogger()

    def load(self) -> Snapshot | None:
        """Return ``None`` so that other sources keep their values."""
        self.logger.info("loading ConfigMap", name=self.name, namespace=self.namespace)
        return None

    def watch(self, stop: threading.Event) -> Iterator[Snapshot]:
        """Yield nothing; log when watching starts and stops."""
        self.logger.info("watching ConfigMap", name=self.name, namespace=self.namespace)
        stop.wait()
        self.logger.info(
            "stopped watching ConfigMap", name=self.name, namespace=self.namespace
        )
        yield from ()