"""Configuration manager: merges sources, binds dataclasses and publishes hot updates."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from eggkit.binding import BindError, bind_to_struct, env_field
from eggkit.sources import Logger, Snapshot, Source

DEFAULT_DEBOUNCE = 0.2

UpdateCallback = Callable[[Snapshot], None]


class ConfigError(Exception):
    """The manager could not be created or could not load its sources."""


@dataclass
class DatabaseConfig:
    """Database connection settings."""

    driver: str = env_field("DB_DRIVER", "mysql")
    dsn: str = env_field("DB_DSN", "")
    max_idle: int = env_field("DB_MAX_IDLE", 10)
    max_open: int = env_field("DB_MAX_OPEN", 100)
    max_lifetime: timedelta = env_field("DB_MAX_LIFETIME", timedelta(hours=1))


@dataclass
class BaseConfig:
    """Settings common to every service, read from environment keys."""

    service_name: str = env_field("SERVICE_NAME", "app")
    service_version: str = env_field("SERVICE_VERSION", "0.0.0")
    env: str = env_field("ENV", "dev")

    http_port: str = env_field("HTTP_PORT", ":8080")
    health_port: str = env_field("HEALTH_PORT", ":8081")
    metrics_port: str = env_field("METRICS_PORT", ":9091")

    otlp_endpoint: str = env_field("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    config_map_name: str = env_field("APP_CONFIGMAP_NAME", "")
    debounce_millis: int = env_field("CONFIG_DEBOUNCE_MS", 200)

    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def get_http_port(self) -> str:
        """The HTTP server address."""
        return self.http_port

    def get_health_port(self) -> str:
        """The health check server address."""
        return self.health_port

    def get_metrics_port(self) -> str:
        """The metrics server address."""
        return self.metrics_port


@dataclass
class BindOptions:
    """Options collected for one :meth:`ConfigManager.bind` call."""

    on_update: Callable[[], None] | None = None


BindOption = Callable[[BindOptions], None]


def with_update_callback(fn: Callable[[], None]) -> BindOption:
    """Register a callback to run when the configuration changes."""

    def apply(options: BindOptions) -> None:
        options.on_update = fn

    return apply


@dataclass
class ManagerOptions:
    """Manager settings; later sources override earlier ones. ``debounce`` is in seconds."""

    logger: Logger | None = None
    sources: Sequence[Source] = ()
    debounce: float = DEFAULT_DEBOUNCE


def _merge_into(merged: dict[str, str], snapshot: Mapping[str, str] | None) -> None:
    # Empty values never override, so an empty ConfigMap key keeps the env value.
    for key, value in (snapshot or {}).items():
        if value != "":
            merged[key] = value


class ConfigManager:
    """Merges configuration sources and keeps the result current while they change."""

    def __init__(self, opts: ManagerOptions) -> None:
        if opts.logger is None:
            raise ConfigError("logger is required")
        if not opts.sources:
            raise ConfigError("at least one source is required")

        self.logger: Logger = opts.logger
        self.sources: list[Source] = list(opts.sources)
        self.debounce = opts.debounce or DEFAULT_DEBOUNCE

        self._lock = threading.RLock()
        self._snapshot: Snapshot = {}
        self._subs_lock = threading.Lock()
        self._subscribers: dict[int, UpdateCallback] = {}
        self._next_sub_id = 0

        self._stop = threading.Event()
        self._timers_lock = threading.Lock()
        self._timers: dict[int, threading.Timer] = {}
        self._threads: list[threading.Thread] = []

        try:
            self._load_initial()
        except ConfigError as exc:
            raise ConfigError(f"failed to load initial configuration: {exc}") from exc
        try:
            self._start_watching()
        except ConfigError as exc:
            self.close()
            raise ConfigError(f"failed to start watching: {exc}") from exc

    def _load_initial(self) -> None:
        merged: dict[str, str] = {}
        for index, source in enumerate(self.sources):
            try:
                snapshot = source.load()
            except Exception as exc:
                raise ConfigError(f"source {index} load failed: {exc}") from exc
            _merge_into(merged, snapshot)

        with self._lock:
            self._snapshot = merged
        self.logger.info("configuration loaded", keys=len(merged))

    def _start_watching(self) -> None:
        for index, source in enumerate(self.sources):
            try:
                updates = source.watch(self._stop)
            except Exception as exc:
                raise ConfigError(f"source {index} watch failed: {exc}") from exc
            thread = threading.Thread(
                target=self._watch_source,
                args=(index, updates),
                name=f"config-watch-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def _watch_source(self, index: int, updates: Iterable[Snapshot]) -> None:
        iterator: Iterator[Snapshot] = iter(updates)
        while not self._stop.is_set():
            try:
                snapshot = next(iterator)
            except StopIteration:
                return
            except Exception as exc:
                self.logger.error(exc, "source watch failed", source=index)
                return
            if self._stop.is_set():
                return
            self._schedule_update(index, snapshot)

    def _schedule_update(self, index: int, snapshot: Snapshot) -> None:
        timer = threading.Timer(self.debounce, self._apply_update, args=(index, snapshot))
        timer.daemon = True
        with self._timers_lock:
            previous = self._timers.get(index)
            if previous is not None:
                previous.cancel()
            self._timers[index] = timer
        timer.start()

    def _apply_update(self, index: int, update: Mapping[str, str] | None) -> None:
        with self._lock:
            merged: dict[str, str] = {}
            for position, source in enumerate(self.sources):
                if position == index:
                    snapshot = update
                else:
                    try:
                        snapshot = source.load()
                    except Exception as exc:
                        self.logger.error(
                            exc, "failed to reload source for update", source=position
                        )
                        continue
                _merge_into(merged, snapshot)

            self._snapshot = merged
            self.logger.info("configuration updated", keys=len(merged))
            self._notify_subscribers(dict(merged))

    def _notify_subscribers(self, snapshot: Snapshot) -> None:
        with self._subs_lock:
            subscribers = list(self._subscribers.values())
        for callback in subscribers:
            threading.Thread(target=callback, args=(dict(snapshot),), daemon=True).start()

    def snapshot(self) -> Snapshot:
        """A copy of the current merged configuration."""
        with self._lock:
            return dict(self._snapshot)

    def value(self, key: str) -> str | None:
        """The value for ``key``, or ``None`` when it is not set."""
        with self._lock:
            return self._snapshot.get(key)

    def bind(self, target: Any, *args: BindOption) -> None:
        """Set the fields of a dataclass instance from the current configuration."""
        if target is None:
            raise BindError("target cannot be None")
        options = BindOptions()
        for option in args:
            option(options)
        bind_to_struct(self.snapshot(), target, options.on_update)

    def on_update(self, fn: UpdateCallback) -> Callable[[], None]:
        """Subscribe to configuration updates; returns a function that unsubscribes."""
        with self._subs_lock:
            sub_id = self._next_sub_id
            self._next_sub_id += 1
            self._subscribers[sub_id] = fn

        def unsubscribe() -> None:
            with self._subs_lock:
                self._subscribers.pop(sub_id, None)

        return unsubscribe

    def close(self) -> None:
        """Stop watching the sources and drop pending updates."""
        self._stop.set()
        with self._timers_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout=1.0)

    def __enter__(self) -> ConfigManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def new_manager(opts: ManagerOptions) -> ConfigManager:
    """Create a manager, load every source and start watching them."""
    return ConfigManager(opts)