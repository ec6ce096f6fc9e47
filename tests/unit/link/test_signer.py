"""
Unit tests for the state signer and the signed state envelope.

These tests are CI-safe (no network), cover:
* sign / verify round trip and single-bit tamper detection
* state build / parse happy path and wire format
* every malformed-state branch collapsing to InvalidStateError
"""

from __future__ import annotations

import base64
import json

import pytest

from oauth_link_broker.link.errors import InvalidStateError
from oauth_link_broker.link.signer import StateSigner, build_state, parse_state


def _flip_bit(text: str, index: int) -> str:
    return text[:index] + chr(ord(text[index]) ^ 0x01) + text[index + 1 :]


def _envelope(state: str) -> dict:
    return json.loads(base64.b64decode(state))


def _encode(envelope: dict) -> str:
    return base64.b64encode(json.dumps(envelope).encode()).decode()


# --------------------------------------------------------------------------- #
# sign / verify                                                               #
# --------------------------------------------------------------------------- #
def test_empty_secret_rejected() -> None:
    with pytest.raises(ValueError):
        StateSigner("")


def test_sign_is_deterministic_hex(signer: StateSigner) -> None:
    sig = signer.sign("payload")
    assert sig == signer.sign("payload")
    assert len(sig) == 64
    int(sig, 16)


def test_verify_round_trip(signer: StateSigner) -> None:
    payload = json.dumps({"linkSessionId": "s1", "nonce": "n1"})
    assert signer.verify(payload, signer.sign(payload)) is True


@pytest.mark.parametrize("index", [0, 17, 63])
def test_verify_rejects_mutated_signature(signer: StateSigner, index: int) -> None:
    payload = "some-payload"
    assert signer.verify(payload, _flip_bit(signer.sign(payload), index)) is False


def test_verify_rejects_mutated_payload(signer: StateSigner) -> None:
    payload = json.dumps({"linkSessionId": "s1", "nonce": "n1"})
    sig = signer.sign(payload)
    assert signer.verify(_flip_bit(payload, 5), sig) is False


def test_verify_rejects_other_secret(signer: StateSigner) -> None:
    assert StateSigner("other").verify("p", signer.sign("p")) is False


@pytest.mark.parametrize("signature", ["", "abc", "é" * 64, None, 123])
def test_verify_rejects_malformed_signature(signer: StateSigner, signature) -> None:
    assert signer.verify("p", signature) is False


# --------------------------------------------------------------------------- #
# state envelope                                                              #
# --------------------------------------------------------------------------- #
def test_state_wire_format(signer: StateSigner) -> None:
    state = build_state("s1", "n1", signer)
    envelope = _envelope(state)
    assert set(envelope) == {"data", "signature"}
    assert json.loads(envelope["data"]) == {"linkSessionId": "s1", "nonce": "n1"}
    assert signer.verify(envelope["data"], envelope["signature"])


def test_state_round_trip(signer: StateSigner) -> None:
    payload = parse_state(build_state("s1", "n1", signer), signer)
    assert payload.link_session_id == "s1"
    assert payload.nonce == "n1"


def test_tampered_signature_rejected(signer: StateSigner) -> None:
    envelope = _envelope(build_state("s1", "n1", signer))
    envelope["signature"] = _flip_bit(envelope["signature"], 0)
    with pytest.raises(InvalidStateError) as exc_info:
        parse_state(_encode(envelope), signer)
    assert exc_info.value.reason == "Invalid or corrupted state parameter"


def test_substituted_payload_rejected(signer: StateSigner) -> None:
    envelope = _envelope(build_state("s1", "n1", signer))
    envelope["data"] = json.dumps({"linkSessionId": "s2", "nonce": "n1"})
    with pytest.raises(InvalidStateError):
        parse_state(_encode(envelope), signer)


@pytest.mark.parametrize(
    "state",
    [
        "not base64 !!",
        base64.b64encode(b"not json").decode(),
        base64.b64encode(b"[1, 2]").decode(),
        base64.b64encode(b"\xff\xfe").decode(),
        _encode({"data": "x"}),
        _encode({"signature": "x"}),
        base64.b64encode(b"[" * 5000).decode(),
    ],
)
def test_malformed_state_rejected(signer: StateSigner, state: str) -> None:
    with pytest.raises(InvalidStateError):
        parse_state(state, signer)


def test_signed_payload_without_fields_rejected(signer: StateSigner) -> None:
    data = json.dumps({"linkSessionId": "s1"})
    state = _encode({"data": data, "signature": signer.sign(data)})
    with pytest.raises(InvalidStateError):
        parse_state(state, signer)


def test_signed_non_json_payload_rejected(signer: StateSigner) -> None:
    data = "plain text"
    state = _encode({"data": data, "signature": signer.sign(data)})
    with pytest.raises(InvalidStateError):
        parse_state(state, signer)
