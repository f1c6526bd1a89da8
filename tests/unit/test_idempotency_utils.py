"""Unit tests for request hashing and idempotency key helpers."""

from decimal import Decimal
from uuid import UUID

import pytest

from crate_kernel.models.conflict import PaymentMode
from crate_kernel.utils.hashing import canonicalize_json, hash_payload, hash_request
from crate_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)

CONFLICT = UUID("11111111-2222-3333-4444-555555555555")


class TestHashing:

    def test_canonical_json_sorts_keys(self):
        assert canonicalize_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_equal_amounts_hash_equal(self):
        a = hash_request("register_payment", {"amount": Decimal("100")})
        b = hash_request("register_payment", {"amount": Decimal("100.00")})
        assert a == b

    def test_enum_and_string_hash_equal(self):
        a = hash_request("register_payment", {"payment_mode": PaymentMode.CASH})
        b = hash_request("register_payment", {"payment_mode": "cash"})
        assert a == b

    def test_uuid_serialized(self):
        assert canonicalize_json({"id": CONFLICT}) == f'{{"id":"{CONFLICT}"}}'

    def test_operation_is_part_of_the_hash(self):
        args = {"quantity": 5}
        assert hash_request("purchase", args) != hash_request("initialize", args)

    def test_hash_payload_is_sha256_hex(self):
        digest = hash_payload({"x": 1})
        assert len(digest) == 64
        int(digest, 16)

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})


class TestIdempotencyKeys:

    def test_generate(self):
        assert generate_idempotency_key("register_payment", "pay-7f3a") == "register_payment:pay-7f3a"

    def test_parse_round_trip_keeps_colons_in_client_key(self):
        key = generate_idempotency_key("adjust", "batch:42")
        assert parse_idempotency_key(key) == ("adjust", "batch:42")

    @pytest.mark.parametrize("operation", ["", "bad:op"])
    def test_invalid_operation(self, operation):
        with pytest.raises(ValueError):
            generate_idempotency_key(operation, "k")

    @pytest.mark.parametrize("client_key", ["", "   "])
    def test_blank_client_key(self, client_key):
        with pytest.raises(ValueError):
            generate_idempotency_key("adjust", client_key)

    @pytest.mark.parametrize("key", ["no-separator", ":missing-op", "missing-key:"])
    def test_parse_invalid(self, key):
        with pytest.raises(ValueError):
            parse_idempotency_key(key)
