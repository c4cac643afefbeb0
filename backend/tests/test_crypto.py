import re
import pytest
from idserver.core.crypto import Hash, random_string, SUPPORTED_HASHES

# Reference values published with the Matrix identity service API (v2 lookup)
SHA256_RESULTS = {
    "alice@example.com email matrixrocks": "4kenr7N9drpCJ4AfalmlGQVsOn3o2RHjkADUpXJWZUc",
    "bob@example.com email matrixrocks": "LJwSazmv46n0hlMlsb_iYxI0_HXEqy_yj6Jm636cdT8",
    "18005552067 msisdn matrixrocks": "nlo35_T5fzSGZzJApqu8lgIudJvmOQtDaHtr-I4rU7I",
}

def test_sha256_matches_reference():
    hasher = Hash()
    for text, expected in SHA256_RESULTS.items():
        assert hasher.sha256(text) == expected
        assert hasher.digest("sha256", *text.split(" ")) == expected

def test_sha512_is_unpadded_urlsafe():
    digest = Hash().sha512("alice@example.com", "email", "matrixrocks")
    assert "=" not in digest
    assert re.fullmatch(r"[A-Za-z0-9_-]{86}", digest)

def test_unknown_algorithm_rejected():
    with pytest.raises(ValueError):
        Hash().digest("md5", "x")

def test_supported_hashes():
    assert Hash.supported_algorithms() == list(SUPPORTED_HASHES)
    assert all(Hash().supports(a) for a in SUPPORTED_HASHES)

def test_random_string():
    res = random_string(64)
    assert re.fullmatch(r"[a-zA-Z0-9]{64}", res)
    assert random_string(32) != random_string(32)
