from pathlib import Path

import pytest

from presence.config.settings import build_engine, load_settings, parse_settings
from presence.errors import DetachNotSupported, ValidationFailed
from presence.merge.collections import MatchByKey, ReplaceAll
from presence.quality.validate import ValidationResult
from presence.records.schema import partial_model_from_schema

SETTINGS_TOML = """
[merge]
copy_entities = true
collect_errors = false
required = ["billing_address"]

[merge.collections]
contacts = { strategy = "match_by_key", key = "kind", remove_unmatched = true }
tags = { strategy = "replace_all" }

[merge.rules]
email = "email"

[paths]
data_root = "var/entities"
"""

PATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "email": {"type": "string"},
        "nickname": {"type": "string"},
        "billing_address": {"type": "object", "properties": {"city": {"type": "string"}}},
    },
}


def test_load_settings_from_toml(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(SETTINGS_TOML, encoding="utf-8")
    settings = load_settings(path)
    assert settings.copy_entities is True
    assert settings.required == ["billing_address"]
    assert settings.paths.data_root == Path("var/entities")
    assert settings.paths.quarantine_dir == Path("data/quarantine")
    policies = settings.collection_policies()
    assert isinstance(policies["contacts"], MatchByKey)
    assert policies["contacts"].remove_unmatched is True
    assert isinstance(policies["tags"], ReplaceAll)


def test_missing_file_yields_defaults(tmp_path):
    settings = load_settings(tmp_path / "absent.toml")
    assert settings.collect_errors is False
    assert settings.collections == {}


def test_bundled_settings_parse():
    settings = load_settings(Path("config/settings.toml"))
    assert "contacts" in settings.collections


@pytest.mark.parametrize(
    "data",
    [
        {"merge": {"collections": {"contacts": {"strategy": "zip"}}}},
        {"merge": {"collections": {"contacts": {"strategy": "match_by_key"}}}},
        {"merge": {"rules": {"email": "mx_lookup"}}},
        {"merge": {"copy_entities": "sometimes"}},
        {"paths": {"data_root": []}},
    ],
)
def test_invalid_settings_raise_value_error(data):
    with pytest.raises(ValueError):
        parse_settings(data)


def test_build_engine_wires_settings():
    settings = parse_settings(
        {"merge": {"copy_entities": True, "required": ["billing_address"], "rules": {"email": "email"}}}
    )
    patch_model = partial_model_from_schema(PATCH_SCHEMA, "ProfilePatch")
    engine = build_engine(settings)
    entity = {"email": "a@x.com", "nickname": "al", "billing_address": {"city": "X"}}

    result = engine.merge(entity, patch_model.from_presence_map({"nickname": "bob"}))
    assert result.entity["nickname"] == "bob"
    assert entity["nickname"] == "al"

    with pytest.raises(ValidationFailed):
        engine.merge(entity, patch_model.from_presence_map({"email": "nope"}))
    with pytest.raises(DetachNotSupported):
        engine.merge(entity, patch_model.from_presence_map({"billing_address": None}))


def test_build_engine_chains_extra_validator():
    def no_admins(path, value):
        if value == "admin":
            return ValidationResult.failure("reserved nickname")
        return ValidationResult.success()

    settings = parse_settings({"merge": {"rules": {"email": "email"}}})
    engine = build_engine(settings, validator=no_admins)
    patch_model = partial_model_from_schema(PATCH_SCHEMA, "ProfilePatch")
    with pytest.raises(ValidationFailed) as excinfo:
        engine.merge({}, patch_model.from_presence_map({"nickname": "admin"}))
    assert excinfo.value.path == "nickname"
    with pytest.raises(ValidationFailed) as excinfo:
        engine.merge({}, patch_model.from_presence_map({"email": "nope"}))
    assert excinfo.value.path == "email"
