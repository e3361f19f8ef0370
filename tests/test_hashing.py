import pytest

from loransems.core.auth.hashing import CredentialHasher, HashScheme

from conftest import PASSWORD

LEGACY_BCRYPT = "$2y$10$92IXUNpkjO0rOQ5byMi.Ye4oKoEa3Ro9llC/.og/at2.uheWG/igi"


def test_argon2_hash_verifies(hasher):
    stored = hasher.hash("s3cure-pass")
    assert stored.startswith("$argon2id$")
    assert hasher.verify("s3cure-pass", stored)
    assert not hasher.verify("s3cure-pasS", stored)


def test_hashes_are_salted(hasher):
    assert hasher.hash("same-password") != hasher.hash("same-password")


def test_empty_password_cannot_be_hashed(hasher):
    with pytest.raises(ValueError):
        hasher.hash("")


def test_legacy_bcrypt_hash_verifies(hasher):
    assert HashScheme.of(LEGACY_BCRYPT) is HashScheme.BCRYPT
    assert hasher.verify("password", LEGACY_BCRYPT)
    assert not hasher.verify("Password", LEGACY_BCRYPT)


@pytest.mark.parametrize("encoded", ["", "plaintext", "$argon2id$v=19$broken", "$2y$10$short"])
def test_malformed_hashes_never_verify(hasher, encoded):
    assert not hasher.verify("password", encoded)


def test_needs_rehash(hasher):
    assert hasher.needs_rehash(LEGACY_BCRYPT)
    assert hasher.needs_rehash("plaintext")
    assert not hasher.needs_rehash(hasher.hash("fresh-password"))

    stronger = CredentialHasher(memory_cost=2048, time_cost=2, parallelism=1)
    assert stronger.needs_rehash(hasher.hash("fresh-password"))


def test_burn_does_not_raise(hasher):
    hasher.burn("anything")
    hasher.burn("")


@pytest.mark.parametrize("kwargs", [
    {"parallelism": 0},
    {"time_cost": 0},
    {"memory_cost": 4, "parallelism": 1},
    {"hash_length": 8},
    {"salt_length": 4},
])
def test_rejects_weak_parameters(kwargs):
    with pytest.raises(ValueError):
        CredentialHasher(**kwargs)


def test_parameters_reports_settings(hasher):
    assert hasher.parameters["memory_cost"] == 1024
    assert hasher.parameters["parallelism"] == 1


def test_unencodable_password_never_matches(hasher):
    encoded = hasher.hash(PASSWORD)
    assert not hasher.verify("\ud800", encoded)
    hasher.burn("\ud800")
