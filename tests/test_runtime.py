from pathlib import Path

import pytest

from evbus.runtime import RuntimeSettings, parse_string_option


def _sample() -> dict:
    return {
        "prefix": "/opt/everest",
        "etc_dir": "/opt/everest/etc/everest",
        "data_dir": "/opt/everest/share/everest",
        "modules_dir": "/opt/everest/libexec/everest/modules",
        "telemetry_prefix": "telemetry/",
        "telemetry_enabled": True,
        "validate_schema": False,
    }


def test_from_json_reads_all_fields():
    settings = RuntimeSettings.from_json(_sample())
    assert settings.prefix == Path("/opt/everest")
    assert settings.etc_dir == Path("/opt/everest/etc/everest")
    assert settings.data_dir == Path("/opt/everest/share/everest")
    assert settings.modules_dir == Path("/opt/everest/libexec/everest/modules")
    assert settings.telemetry_prefix == "telemetry/"
    assert settings.telemetry_enabled is True
    assert settings.validate_schema is False


def test_json_round_trip():
    data = _sample()
    assert RuntimeSettings.from_json(data).to_json() == data


def test_to_json_omits_logging_config_file():
    settings = RuntimeSettings(
        prefix="/p",
        etc_dir="/p/etc",
        data_dir="/p/share",
        modules_dir="/p/modules",
        logging_config_file="/p/etc/logging.ini",
        telemetry_prefix="t/",
        telemetry_enabled=False,
        validate_schema=True,
    )
    out = settings.to_json()
    assert "logging_config_file" not in out
    assert set(out) == set(_sample())
    assert RuntimeSettings.from_json(out).validate_schema is True


def test_constructor_converts_paths():
    settings = RuntimeSettings("/a", "/b", "/c", "/d")
    assert isinstance(settings.prefix, Path)
    assert settings.modules_dir == Path("/d")


@pytest.mark.parametrize("key", sorted(_sample()))
def test_from_json_missing_key(key):
    data = _sample()
    del data[key]
    with pytest.raises(KeyError):
        RuntimeSettings.from_json(data)


def test_from_json_wrong_string_type():
    data = _sample()
    data["prefix"] = 5
    with pytest.raises(TypeError):
        RuntimeSettings.from_json(data)


def test_from_json_wrong_bool_type():
    data = _sample()
    data["validate_schema"] = "yes"
    with pytest.raises(TypeError):
        RuntimeSettings.from_json(data)


def test_parse_string_option_present():
    assert parse_string_option({"module": "evse_manager"}, "module") == "evse_manager"


def test_parse_string_option_absent():
    assert parse_string_option({"module": "x"}, "prefix") == ""


def test_parse_string_option_wrong_type():
    with pytest.raises(TypeError):
        parse_string_option({"prefix": 3}, "prefix")