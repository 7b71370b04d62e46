# cws/utils/encoding.py
"""Small helpers shared by the server and the client: base64 and timestamps."""
import base64
import time


def now_ms() -> int:
    """Return current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


def b64_encode(data: bytes) -> str:
    """Base64-encode bytes without line breaks."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(s: str) -> bytes:
    """Strict base64 decode; raises binascii.Error on non-alphabet input."""
    return base64.b64decode(s.encode("ascii"), validate=True)
