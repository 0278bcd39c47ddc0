"""Signature trailer format.

A signed script ends with::

    # SIG # Begin signature block
    # SIG # <base64 of the canonical JSON envelope, 64 chars per line>
    # SIG # End signature block

The body is every byte before the begin line. A file carries at most one
trailer; ``split_trailer`` treats a well-formed block after the last begin line
as the trailer, so writing ``body + new trailer`` replaces an old one.
"""
from __future__ import annotations

import base64
import json
from typing import Literal, Optional, Tuple

from pydantic import BaseModel

BEGIN = b"# SIG # Begin signature block"
END = b"# SIG # End signature block"
LINE_PREFIX = b"# SIG # "
WRAP = 64

SIG_ALG = "rsa-pkcs1v15-sha256"


class SignatureEnvelope(BaseModel):
    v: int = 1
    alg: Literal["rsa-pkcs1v15-sha256"] = SIG_ALG
    thumbprint: str
    subject: str
    signed_at: str
    digest_sha256_b64: str
    cert_der_b64: str
    sig_b64: Optional[str] = None

    def signing_input(self) -> bytes:
        """Canonical bytes covered by the signature (everything but sig_b64)."""
        return canonicalize(self.model_dump(exclude={"sig_b64"}))


def canonicalize(obj) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def newline_of(body: bytes) -> bytes:
    return b"\r\n" if b"\r\n" in body else b"\n"


def _begin_offset(data: bytes) -> int:
    if data.startswith(BEGIN):
        return 0
    idx = data.rfind(b"\n" + BEGIN)
    return -1 if idx < 0 else idx + 1


def _is_block(tail: bytes) -> bool:
    lines = [ln.rstrip(b"\r") for ln in tail.split(b"\n")]
    while lines and not lines[-1]:
        lines.pop()
    if len(lines) < 2 or lines[0] != BEGIN or lines[-1] != END:
        return False
    return all(ln.startswith(LINE_PREFIX) for ln in lines[1:-1])


def split_trailer(data: bytes) -> Tuple[bytes, Optional[bytes]]:
    """Return (body, trailer) where trailer is None for an unsigned file.

    Only a block made of ``# SIG #`` lines that closes with the end line at the
    very end of the file counts; a stray begin line is ordinary content.
    """
    off = _begin_offset(data)
    if off < 0 or not _is_block(data[off:]):
        return data, None
    return data[:off], data[off:]


def encode_trailer(envelope: SignatureEnvelope, newline: bytes = b"\n") -> bytes:
    blob = base64.b64encode(canonicalize(envelope.model_dump())).decode("ascii")
    lines = [BEGIN]
    lines.extend(LINE_PREFIX + blob[i:i + WRAP].encode("ascii") for i in range(0, len(blob), WRAP))
    lines.append(END)
    return newline.join(lines) + newline


def decode_trailer(trailer: bytes) -> SignatureEnvelope:
    """Parse a trailer block; raises ValueError when malformed."""
    lines = [ln.rstrip(b"\r") for ln in trailer.split(b"\n")]
    while lines and not lines[-1]:
        lines.pop()
    if len(lines) < 3 or lines[0] != BEGIN or lines[-1] != END:
        raise ValueError("malformed signature block")
    chunks = []
    for ln in lines[1:-1]:
        if not ln.startswith(LINE_PREFIX):
            raise ValueError("unexpected line inside signature block")
        chunks.append(ln[len(LINE_PREFIX):].strip())
    try:
        raw = base64.b64decode(b"".join(chunks), validate=True)
    except ValueError as e:
        raise ValueError("signature block is not valid base64") from e
    # pydantic's ValidationError is a ValueError
    return SignatureEnvelope.model_validate_json(raw)


def prepare_body(data: bytes) -> bytes:
    """Body of ``data`` with any old trailer removed, ending in a newline."""
    body, _ = split_trailer(data)
    if body and not body.endswith(b"\n"):
        body += newline_of(body)
    return body
