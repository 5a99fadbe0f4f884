"""
test_keys.py - Unit tests for Ed25519 keys and threshold key lists

Tests:
- PrivateKey / PublicKey: generation, hex encodings (raw and DER), sign/verify
- KeyList: threshold bounds, satisfaction, nesting
"""

import pytest

from token_harness import PrivateKey, PublicKey, KeyList
from token_harness.keys import (
    DER_PRIVATE_PREFIX, DER_PUBLIC_PREFIX, ECDSA_DER_PRIVATE_PREFIX, ECDSA_DER_PUBLIC_PREFIX,
)


class TestPrivateKey:
    """Tests for PrivateKey encodings and signing."""

    def test_raw_hex_round_trip(self):
        key = PrivateKey.generate()
        raw = key.to_string_raw()
        assert len(raw) == 64
        assert PrivateKey.from_string(raw) == key

    def test_der_hex_round_trip(self):
        key = PrivateKey.generate()
        der = key.to_string_der()
        assert der.startswith(DER_PRIVATE_PREFIX.hex())
        assert PrivateKey.from_string(der) == key

    def test_0x_prefix_accepted(self):
        key = PrivateKey.generate()
        assert PrivateKey.from_string("0x" + key.to_string_raw()) == key

    @pytest.mark.parametrize("text", ["", "zz", "00" * 31, "00" * 33])
    def test_invalid_hex_rejected(self, text):
        with pytest.raises(ValueError):
            PrivateKey.from_string(text)

    def test_ecdsa_der_key_rejected(self):
        ecdsa_der = ECDSA_DER_PRIVATE_PREFIX.hex() + "11" * 32
        with pytest.raises(ValueError, match="ECDSA"):
            PrivateKey.from_string(ecdsa_der)
        with pytest.raises(ValueError, match="ECDSA"):
            PublicKey.from_string(ECDSA_DER_PUBLIC_PREFIX.hex() + "02" + "11" * 32)

    def test_repr_hides_secret(self):
        key = PrivateKey.generate()
        assert key.to_string_raw() not in repr(key)

    def test_sign_and_verify(self):
        key = PrivateKey.generate()
        signature = key.sign(b"body")
        assert key.public_key.verify(signature, b"body")
        assert not key.public_key.verify(signature, b"other body")
        assert not PrivateKey.generate().public_key.verify(signature, b"body")


class TestPublicKey:
    """Tests for PublicKey encodings and identity."""

    def test_der_and_raw_parse_to_same_key(self):
        public = PrivateKey.generate().public_key
        assert PublicKey.from_string(public.to_string_raw()) == public
        assert PublicKey.from_string(public.to_string_der()) == public
        assert public.to_string_der().startswith(DER_PUBLIC_PREFIX.hex())

    def test_equal_keys_hash_equal(self):
        private = PrivateKey.generate()
        copy = PublicKey.from_bytes(private.public_key.to_bytes_raw())
        assert copy == private.public_key
        assert len({copy, private.public_key}) == 1

    def test_satisfied_only_by_itself(self):
        a = PrivateKey.generate().public_key
        b = PrivateKey.generate().public_key
        assert a.is_satisfied_by({a})
        assert not a.is_satisfied_by({b})
        assert not a.is_satisfied_by(set())


class TestKeyList:
    """Tests for threshold key lists."""

    @pytest.fixture
    def publics(self):
        return [PrivateKey.generate().public_key for _ in range(3)]

    @pytest.mark.parametrize("threshold", [0, 4, -1])
    def test_threshold_out_of_range_rejected(self, publics, threshold):
        with pytest.raises(ValueError, match="threshold"):
            KeyList(publics, threshold=threshold)

    def test_empty_list_rejected(self):
        with pytest.raises(ValueError):
            KeyList([])

    def test_non_key_entries_rejected(self):
        with pytest.raises(TypeError):
            KeyList(["not a key"])

    def test_one_of_two(self, publics):
        key_list = KeyList(publics[:2], threshold=1)
        assert key_list.is_satisfied_by({publics[0]})
        assert key_list.is_satisfied_by({publics[1]})
        assert not key_list.is_satisfied_by({publics[2]})

    def test_two_of_three(self, publics):
        key_list = KeyList(publics, threshold=2)
        assert not key_list.is_satisfied_by({publics[0]})
        assert key_list.is_satisfied_by({publics[0], publics[2]})

    def test_no_threshold_requires_all(self, publics):
        key_list = KeyList(publics)
        assert key_list.threshold == 3
        assert not key_list.is_satisfied_by(set(publics[:2]))
        assert key_list.is_satisfied_by(set(publics))

    def test_nested_list_counts_as_one_key(self, publics):
        extra = PrivateKey.generate().public_key
        inner = KeyList(publics[:2], threshold=2)
        outer = KeyList([inner, extra], threshold=1)
        assert outer.is_satisfied_by({publics[0], publics[1]})
        assert not outer.is_satisfied_by({publics[0]})
        assert outer.is_satisfied_by({extra})

    def test_order_preserved_and_equality(self, publics):
        key_list = KeyList(publics, threshold=1)
        assert list(key_list) == publics
        assert key_list == KeyList(publics, threshold=1)
        assert key_list != KeyList(list(reversed(publics)), threshold=1)
        assert publics[1] in key_list
        assert len(key_list) == 3
