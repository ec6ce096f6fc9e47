"""Signed ``state`` parameter for the popup linking flow.

The *state* parameter is round-tripped through the external provider and is
the only thing tying a provider redirect back to a pending link session.  It
carries two values:

1. ``linkSessionId`` – handle of the pending :class:`~oauth_link_broker.link.models.LinkSession`
2. ``nonce`` – independent random value re-checked against the stored session

Wire format::

    base64( {"data": "<payload json>", "signature": "<hmac-sha256 hex>"} )

where ``<payload json>`` is ``{"linkSessionId": ..., "nonce": ...}``.

Every decoding problem (bad base64, bad JSON, missing keys, signature
mismatch) surfaces as the same :class:`InvalidStateError` so callers cannot
tell an attacker which check failed.

Logging
-------
Only the (truncated) ``linkSessionId`` is ever logged; the full state string as
well as the HMAC secret are *never* written to logs.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
from dataclasses import dataclass
from hashlib import sha256

from oauth_link_broker.link.errors import InvalidStateError

_LOG = logging.getLogger("oauth-link-broker.link.signer")


@dataclass(frozen=True, slots=True)
class StatePayload:
    """Verified contents of a state parameter."""

    link_session_id: str
    nonce: str


class StateSigner:
    """HMAC-SHA256 signer bound to a server-held secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("state signing secret must not be empty")
        self._key = secret.encode("utf-8")

    def sign(self, payload: str) -> str:
        """Return the hex HMAC-SHA256 of *payload*."""
        return hmac.new(self._key, msg=payload.encode("utf-8"), digestmod=sha256).hexdigest()

    def verify(self, payload: str, signature: str) -> bool:
        """Return *True* if *signature* matches *payload* (constant time)."""
        if not isinstance(payload, str) or not isinstance(signature, str):
            return False
        expected = self.sign(payload)
        try:
            return hmac.compare_digest(
                expected.encode("ascii"), signature.encode("ascii")
            )
        except UnicodeEncodeError:
            return False


def build_state(link_session_id: str, nonce: str, signer: StateSigner) -> str:
    """Build the signed state string for an authorization request.

    Parameters
    ----------
    link_session_id:
        Identifier of the link session being started.
    nonce:
        The session's nonce, re-checked on callback.
    signer:
        Signer holding the broker secret.

    Returns
    -------
    str
        Base64-encoded JSON envelope.
    """
    data = json.dumps({"linkSessionId": link_session_id, "nonce": nonce})
    envelope = json.dumps({"data": data, "signature": signer.sign(data)})
    _LOG.debug("Built state for link_session_id=%s****", link_session_id[:6])
    return base64.b64encode(envelope.encode("utf-8")).decode("ascii")


def parse_state(state: str, signer: StateSigner) -> StatePayload:
    """Validate and decode a state received in the provider callback.

    Raises
    ------
    InvalidStateError
        If the state is malformed or the signature does not validate.
    """
    try:
        envelope = json.loads(base64.b64decode(state, validate=True).decode("utf-8"))
        if not isinstance(envelope, dict):
            raise InvalidStateError(detail="envelope is not an object")

        data = envelope.get("data")
        signature = envelope.get("signature")
        if not signer.verify(data, signature):
            raise InvalidStateError(detail="signature mismatch")

        fields = json.loads(data)
        if not isinstance(fields, dict):
            raise InvalidStateError(detail="payload is not an object")
        link_session_id = fields.get("linkSessionId")
        nonce = fields.get("nonce")
        if not isinstance(link_session_id, str) or not isinstance(nonce, str):
            raise InvalidStateError(detail="payload missing fields")
        if not link_session_id or not nonce:
            raise InvalidStateError(detail="payload missing fields")
    except (ValueError, TypeError, binascii.Error, RecursionError):
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors;
        # deeply nested JSON hits the recursion limit
        raise InvalidStateError(detail="state cannot be decoded") from None

    _LOG.debug("Parsed state for link_session_id=%s****", link_session_id[:6])
    return StatePayload(link_session_id=link_session_id, nonce=nonce)
