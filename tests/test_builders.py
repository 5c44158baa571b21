import pytest

from eggkit.builders import (
    build_env_only_sources,
    build_file_sources,
    build_hybrid_sources,
    build_sources,
    default_manager,
)
from eggkit.manager import ConfigError
from eggkit.sources import EnvSource, FileOptions, FileSource, K8sConfigMapSource

CONFIG_MAP_KEYS = ["APP_CONFIGMAP_NAME", "CACHE_CONFIGMAP_NAME", "ACL_CONFIGMAP_NAME", "NAMESPACE"]


class RecordingLogger:
    def __init__(self):
        self.logs = []

    def debug(self, msg, **fields):
        self.logs.append(("DEBUG", msg))

    def info(self, msg, **fields):
        self.logs.append(("INFO", msg))

    def warn(self, msg, **fields):
        self.logs.append(("WARN", msg))

    def error(self, err, msg, **fields):
        self.logs.append(("ERROR", msg))


@pytest.fixture
def clean_env(monkeypatch):
    for key in CONFIG_MAP_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_build_sources_without_config_maps(clean_env):
    sources = build_sources(RecordingLogger())
    assert len(sources) == 1
    assert isinstance(sources[0], EnvSource)


def test_build_sources_with_config_maps(clean_env):
    clean_env.setenv("APP_CONFIGMAP_NAME", "app-config")
    clean_env.setenv("CACHE_CONFIGMAP_NAME", "cache-config")
    sources = build_sources(RecordingLogger())
    assert len(sources) == 3
    assert [s.name for s in sources[1:]] == ["app-config", "cache-config"]
    assert all(isinstance(s, K8sConfigMapSource) for s in sources[1:])


def test_config_map_namespace(clean_env):
    clean_env.setenv("ACL_CONFIGMAP_NAME", "acl")
    assert build_sources(None)[1].namespace == "default"
    clean_env.setenv("NAMESPACE", "prod")
    assert build_sources(None)[1].namespace == "prod"


def test_build_env_only_sources():
    sources = build_env_only_sources()
    assert len(sources) == 1
    assert isinstance(sources[0], EnvSource)
    assert sources[0].prefix == ""


def test_build_file_sources():
    sources = build_file_sources(["a.json", "b.yaml"], FileOptions())
    assert isinstance(sources[0], EnvSource)
    assert [(s.path, s.format) for s in sources[1:]] == [("a.json", "json"), ("b.yaml", "yaml")]


def test_build_hybrid_sources(clean_env):
    clean_env.setenv("APP_CONFIGMAP_NAME", "app-config")
    sources = build_hybrid_sources(RecordingLogger(), ["c.toml"], FileOptions())
    assert [type(s) for s in sources] == [EnvSource, FileSource, K8sConfigMapSource]
    assert sources[1].format == "toml"
    assert sources[2].name == "app-config"


def test_default_manager_reads_environment(clean_env):
    clean_env.setenv("EGGKIT_BUILDER_KEY", "value")
    clean_env.setenv("APP_CONFIGMAP_NAME", "app-config")
    logger = RecordingLogger()
    with default_manager(logger) as manager:
        assert manager.value("EGGKIT_BUILDER_KEY") == "value"
        assert len(manager.sources) == 2
        assert manager.debounce == 0.2
    assert ("INFO", "configuration loaded") in logger.logs


def test_default_manager_requires_logger(clean_env):
    with pytest.raises(ConfigError, match="logger is required"):
        default_manager(None)