"""Destination sealing for ephemeral records.

An OTP or magic-link record must let the verifier recover the phone/email it
was issued for, without that value sitting in Redis in clear text. The
destination is sealed as a compact JWE (A256KW + A256GCM) under a key derived
from CREDENTIAL_SEAL_KEY.
"""

import hashlib

from jwcrypto import jwe, jwk
from jwcrypto.common import JWException, base64url_encode, json_encode

from bndy_api.config.env import get_credential_seal_key

_PROTECTED_HEADER = json_encode({"alg": "A256KW", "enc": "A256GCM"})


class SealError(Exception):
    """Sealed value could not be opened (wrong key or tampered record)."""


def _seal_key() -> jwk.JWK:
    material = hashlib.sha256(get_credential_seal_key().encode("utf-8")).digest()
    return jwk.JWK(kty="oct", k=base64url_encode(material))


def seal(value: str) -> str:
    token = jwe.JWE(value.encode("utf-8"), protected=_PROTECTED_HEADER)
    token.add_recipient(_seal_key())
    return token.serialize(compact=True)


def unseal(sealed: str) -> str:
    token = jwe.JWE()
    try:
        token.deserialize(sealed, key=_seal_key())
    except JWException as e:
        raise SealError("Sealed destination could not be opened") from e
    return token.plaintext.decode("utf-8")
