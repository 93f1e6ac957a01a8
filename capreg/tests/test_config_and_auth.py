import pytest

from capreg.api.auth import _parse_api_keys, authenticate, requires_auth
from capreg.core.registry.config import RegistryConfig
from capreg.core.security.identity import Principal


def test_registry_config_from_env_reads_overrides():
    cfg = RegistryConfig.from_env(
        {
            "CAPREG_NAMESPACE_NAME": "people",
            "CAPREG_NAMESPACE_URI": "https://example.test/ns",
            "CAPREG_EMIT_RENAME_EVENTS": "yes",
        }
    )

    assert cfg.namespace_name == "people"
    assert cfg.namespace_uri == "https://example.test/ns"
    assert cfg.emit_rename_events is True
    assert cfg.root_identity == RegistryConfig().root_identity


def test_registry_config_rejects_blank_derivation_inputs():
    with pytest.raises(ValueError):
        RegistryConfig(namespace_name="  ")


def test_principal_is_verbatim_and_fails_closed():
    assert Principal(" alice").principal_id == " alice"
    assert Principal(" alice") != Principal("alice")

    with pytest.raises(TypeError):
        Principal(7)

    with pytest.raises(ValueError):
        Principal("   ")


def test_api_key_parsing_and_authentication(monkeypatch):
    mapping = _parse_api_keys("k1:alice; bad-entry ;k2:bob;:nobody")

    assert set(mapping) == {"k1", "k2"}
    assert authenticate("k1", mapping) == Principal("alice")
    assert authenticate("nope", mapping) is None
    assert authenticate(None, mapping) is None

    monkeypatch.delenv("CAPREG_REQUIRE_AUTH", raising=False)
    assert requires_auth({}) is False
    assert requires_auth(mapping) is True

    monkeypatch.setenv("CAPREG_REQUIRE_AUTH", "1")
    assert requires_auth({}) is True
