from __future__ import annotations

import pytest

from toolgostar.platform.security.passwords import MAX_PASSWORD_BYTES, hash_password, verify_password


def test_hash_round_trip_and_wrong_password() -> None:
    hashed = hash_password("Str0ng-enough", rounds=4)

    assert hashed != "Str0ng-enough"
    assert verify_password("Str0ng-enough", hashed)
    assert not verify_password("wrong-password", hashed)


def test_password_over_72_bytes_is_rejected_for_hashing() -> None:
    with pytest.raises(ValueError):
        hash_password("x" * (MAX_PASSWORD_BYTES + 1), rounds=4)


def test_multibyte_password_counts_bytes_not_characters() -> None:
    password = "é" * 37  # 74 bytes in UTF-8

    with pytest.raises(ValueError):
        hash_password(password, rounds=4)


def test_over_long_password_never_verifies() -> None:
    hashed = hash_password("x" * MAX_PASSWORD_BYTES, rounds=4)

    assert verify_password("x" * MAX_PASSWORD_BYTES, hashed)
    assert not verify_password("x" * (MAX_PASSWORD_BYTES + 1), hashed)


def test_corrupt_hash_does_not_verify() -> None:
    assert not verify_password("anything", "not-a-bcrypt-hash")
