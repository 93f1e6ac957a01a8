import pytest

from capreg.core.addressing import (
    Address,
    address_of,
    namespace_address,
    proxy_address,
    record_address,
)


def test_address_of_is_deterministic_and_well_formed():
    a1 = address_of("root", "records", "alice")
    a2 = address_of("root", "records", "alice")

    assert a1 == a2
    assert a1.value.startswith("0x")
    assert len(a1.value) == 66


def test_address_of_separates_inputs():
    assert address_of("root", "records", "alice") != address_of("root", "records", "bob")
    assert address_of("root", "records", "alice") != address_of("root", "other", "alice")
    # Shifting characters between fields must not collide.
    assert address_of("ro", "ot:records", "alice") != address_of("root", ":records", "alice")


def test_derivation_families_are_disjoint():
    assert proxy_address("root", "seed") != namespace_address("root", "seed")
    assert namespace_address("root", "seed") != address_of("root", "", "seed")


def test_record_address_keys_on_owner_identifier_string():
    proxy = proxy_address("root", "seed")

    assert record_address(proxy, "records", "alice") == record_address(proxy, "records", "alice")
    assert record_address(proxy, "records", 42) == record_address(proxy, "records", "42")
    assert record_address(proxy, "records", "alice") != record_address(
        proxy_address("root", "other-seed"), "records", "alice"
    )


def test_address_normalizes_and_rejects_malformed_values():
    upper = "0x" + "AB" * 32
    assert Address(upper).value == upper.lower()

    with pytest.raises(ValueError):
        Address("0x1234")

    with pytest.raises(TypeError):
        Address(123)

    with pytest.raises(TypeError):
        address_of("root", "records", None)
