"""Unit tests for tenantauth/auth/state_signer.py."""

from __future__ import annotations

import time

import pytest

from tenantauth.auth.state_signer import StateSigner, canonical_json


@pytest.mark.unit
class TestCanonicalJson:
    def test_key_order_does_not_matter(self) -> None:
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})

    def test_no_whitespace(self) -> None:
        assert canonical_json({"a": [1, 2]}) == b'{"a":[1,2]}'


@pytest.mark.unit
class TestStateSigner:
    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            StateSigner("")

    def test_sign_then_verify_returns_payload(self) -> None:
        signer = StateSigner("secret")
        token = signer.sign({"provider": "google", "return_domain": "acme.example.com"})
        payload = signer.verify(token)
        assert payload is not None
        assert payload["provider"] == "google"
        assert payload["return_domain"] == "acme.example.com"

    def test_sign_adds_nonce_and_timestamp(self) -> None:
        signer = StateSigner("secret")
        payload = signer.verify(signer.sign({"a": 1}))
        assert payload is not None
        assert isinstance(payload["nonce"], str)
        assert len(payload["nonce"]) == 32
        assert isinstance(payload["ts"], int)

    def test_caller_supplied_nonce_is_kept(self) -> None:
        signer = StateSigner("secret")
        payload = signer.verify(signer.sign({"nonce": "fixed"}))
        assert payload is not None
        assert payload["nonce"] == "fixed"

    def test_tokens_are_unique(self) -> None:
        signer = StateSigner("secret")
        assert signer.sign({"a": 1}) != signer.sign({"a": 1})

    def test_wrong_secret_rejected(self) -> None:
        token = StateSigner("secret-1").sign({"a": 1})
        assert StateSigner("secret-2").verify(token) is None

    def test_tampered_body_rejected(self) -> None:
        signer = StateSigner("secret")
        token = signer.sign({"return_domain": "acme.example.com"})
        body, sig = token.split(".")
        forged = StateSigner("other").sign({"return_domain": "evil.example.com"})
        forged_body = forged.split(".")[0]
        assert signer.verify(f"{forged_body}.{sig}") is None
        assert signer.verify(f"{body}.{sig}") is not None

    def test_tampered_signature_rejected(self) -> None:
        signer = StateSigner("secret")
        token = signer.sign({"a": 1})
        flipped = token[:-1] + ("0" if token[-1] != "0" else "1")
        assert signer.verify(flipped) is None

    @pytest.mark.parametrize("token", ["", "no-dot", "a.b.c", "!!!.abc", "e30.deadbeef"])
    def test_malformed_tokens_return_none(self, token: str) -> None:
        assert StateSigner("secret").verify(token) is None

    def test_non_object_payload_rejected(self) -> None:
        signer = StateSigner("secret")
        raw = b"[1,2,3]"
        import base64

        body = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        token = f"{body}.{signer._signature(raw)}"
        assert signer.verify(token) is None


@pytest.mark.unit
class TestIsFresh:
    def test_fresh_payload(self) -> None:
        now = time.time()
        payload = {"ts": int(now * 1000) - 1_000}
        assert StateSigner.is_fresh(payload, 300, now=now) is True

    def test_stale_payload(self) -> None:
        now = time.time()
        payload = {"ts": int(now * 1000) - 301_000}
        assert StateSigner.is_fresh(payload, 300, now=now) is False

    def test_exactly_max_age_is_stale(self) -> None:
        now = 1_000.0
        payload = {"ts": 1_000_000 - 300_000}
        assert StateSigner.is_fresh(payload, 300, now=now) is False

    def test_future_timestamp_is_not_fresh(self) -> None:
        now = time.time()
        payload = {"ts": int(now * 1000) + 60_000}
        assert StateSigner.is_fresh(payload, 300, now=now) is False

    @pytest.mark.parametrize("ts", [None, "123", 1.5, True])
    def test_bad_timestamp_types(self, ts: object) -> None:
        assert StateSigner.is_fresh({"ts": ts}, 300) is False

    def test_signed_payload_is_fresh_now(self) -> None:
        signer = StateSigner("secret")
        payload = signer.verify(signer.sign({}))
        assert payload is not None
        assert StateSigner.is_fresh(payload, 300) is True


def _mutations(token: str):
    """Every single-bit change of every character of ``token``."""
    for i, ch in enumerate(token):
        for bit in range(8):
            flipped = chr(ord(ch) ^ (1 << bit))
            if flipped != ch:
                yield i, token[:i] + flipped + token[i + 1 :]


@pytest.mark.unit
class TestStateSignerMutations:
    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"a": 1},
            {"provider": "google", "return_domain": "acme.example.com"},
            {"callback_path": "/dashboard?x=1", "popup": True, "nonce": "n"},
        ],
    )
    def test_no_single_bit_flip_verifies_or_raises(self, payload: dict) -> None:
        signer = StateSigner("secret")
        token = signer.sign(payload)
        accepted = []
        for index, mutated in _mutations(token):
            if signer.verify(mutated) is not None:
                accepted.append(index)
        assert accepted == []

    @pytest.mark.parametrize(
        "signature", ["é", "é" * 64, "A" * 64, "0" * 63, "0" * 65, "0" * 64 + "\n"]
    )
    def test_odd_signatures_return_none(self, signature: str) -> None:
        assert StateSigner("secret").verify(f"e30.{signature}") is None

    def test_non_canonical_body_rejected(self) -> None:
        signer = StateSigner("secret")
        token = signer.sign({"a": 1})
        body, sig = token.split(".")
        assert signer.verify(f"{body}==.{sig}") is None
        assert signer.verify(f"{body}\n.{sig}") is None
