from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

import pytest

from eggkit.binding import BindError, bind_to_struct, env_field, parse_duration


@dataclass
class Database:
    driver: str = env_field("DB_DRIVER", "mysql")
    max_idle: int = env_field("DB_MAX_IDLE", "10")
    max_lifetime: timedelta = env_field("DB_MAX_LIFETIME", "1h")


@dataclass
class Sample:
    name: str = env_field("SERVICE_NAME", "app")
    debug: bool = env_field("DEBUG", "")
    ratio: float = env_field("RATIO", "")
    count: int = env_field("COUNT", 7)
    untagged: str = "fixed"
    database: Database = field(default_factory=Database)


def test_parse_duration_hour():
    assert parse_duration("1h") == timedelta(hours=1)


def test_parse_duration_zero():
    assert parse_duration("0") == timedelta(0)


@pytest.mark.parametrize(
    "left, right",
    [
        ("1h30m", "90m"),
        ("1.5h", "90m"),
        ("1500ms", "1.5s"),
        ("300us", "0.3ms"),
        ("300\u00b5s", "300us"),
        ("+1m", "1m"),
        ("1.s", "1s"),
    ],
)
def test_parse_duration_equivalences(left, right):
    assert parse_duration(left) == parse_duration(right)


def test_parse_duration_negative():
    assert parse_duration("-1m") == -parse_duration("1m")


@pytest.mark.parametrize("value", ["", "1", "h", "1x", ".s", "-", "1h-2m"])
def test_parse_duration_invalid(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_defaults_applied_when_keys_missing():
    cfg = Sample()
    bind_to_struct({}, cfg)
    assert cfg.name == "app"
    assert cfg.count == 7
    assert cfg.database.driver == "mysql"
    assert cfg.database.max_idle == 10
    assert cfg.database.max_lifetime == parse_duration("1h")


def test_snapshot_values_override_defaults():
    cfg = Sample()
    snapshot = {
        "SERVICE_NAME": "svc",
        "DEBUG": "true",
        "RATIO": "0.5",
        "COUNT": "42",
        "DB_MAX_IDLE": "25",
        "DB_MAX_LIFETIME": "30m",
    }
    bind_to_struct(snapshot, cfg)
    assert cfg.name == "svc"
    assert cfg.debug is True
    assert cfg.ratio == 0.5
    assert cfg.count == 42
    assert cfg.database.max_idle == 25
    assert cfg.database.max_lifetime == parse_duration("30m")


def test_empty_value_keeps_current_field():
    cfg = Sample(name="keep")
    bind_to_struct({"SERVICE_NAME": ""}, cfg)
    assert cfg.name == "keep"


def test_untagged_field_is_untouched():
    cfg = Sample(untagged="mine")
    bind_to_struct({"untagged": "other"}, cfg)
    assert cfg.untagged == "mine"


@pytest.mark.parametrize("text, expected", [("1", True), ("t", True), ("TRUE", True), ("0", False), ("F", False)])
def test_bool_parsing(text, expected):
    cfg = Sample()
    bind_to_struct({"DEBUG": text}, cfg)
    assert cfg.debug is expected


def test_invalid_bool_raises():
    with pytest.raises(BindError, match="failed to set field debug"):
        bind_to_struct({"DEBUG": "yes"}, Sample())


def test_invalid_int_raises():
    with pytest.raises(BindError, match="failed to set field count"):
        bind_to_struct({"COUNT": "abc"}, Sample())


def test_nested_error_is_wrapped():
    with pytest.raises(BindError, match="failed to bind nested struct database"):
        bind_to_struct({"DB_MAX_LIFETIME": "soon"}, Sample())


@dataclass
class Unsupported:
    items: list = env_field("ITEMS", "")


def test_unsupported_type_with_value_raises():
    with pytest.raises(BindError, match="unsupported field type"):
        bind_to_struct({"ITEMS": "a,b"}, Unsupported())


def test_unsupported_type_without_value_is_kept():
    cfg = Unsupported()
    bind_to_struct({}, cfg)
    assert cfg.items == ""


@dataclass
class WithOptional:
    port: Optional[int] = env_field("PORT", None)


def test_optional_field():
    cfg = WithOptional()
    bind_to_struct({"PORT": "9000"}, cfg)
    assert cfg.port == 9000


def test_target_must_be_dataclass_instance():
    with pytest.raises(BindError, match="dataclass instance"):
        bind_to_struct({}, {"SERVICE_NAME": "x"})
    with pytest.raises(BindError, match="dataclass instance"):
        bind_to_struct({}, Sample)


def test_on_update_not_invoked_by_binding():
    calls = []
    cfg = Sample()
    bind_to_struct({"SERVICE_NAME": "svc"}, cfg, lambda: calls.append(1))
    assert calls == []
    assert cfg.name == "svc"