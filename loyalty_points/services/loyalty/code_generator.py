from __future__ import annotations

import re
import secrets

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def _tail(value: str, n: int) -> str:
    cleaned = _NON_ALNUM.sub("", str(value or ""))
    return cleaned[-n:]


class CodeGenerator:
    """
    Loyalty discount codes: PREFIX + customer tail + cart tail + random hex.

    The prefix lets webhook handlers skip foreign codes without a store
    lookup; the 32 random bits make codes unguessable and collision-free
    in practice.
    """

    def __init__(self, prefix: str = "PSKLTY", *, random_bytes: int = 4, tail_len: int = 4):
        prefix = _NON_ALNUM.sub("", prefix or "").upper()
        if not prefix:
            raise ValueError("CodeGenerator requires an alphanumeric prefix")
        self.prefix = prefix
        self.random_bytes = random_bytes
        self.tail_len = tail_len

    def generate(self, customer_id: str, cart_token: str) -> str:
        return (
            f"{self.prefix}"
            f"{_tail(customer_id, self.tail_len)}"
            f"{_tail(cart_token, self.tail_len)}"
            f"{secrets.token_hex(self.random_bytes)}"
        ).upper()

    def is_loyalty_code(self, code: str) -> bool:
        return bool(code) and code.upper().startswith(self.prefix)


def normalize_code(code: str) -> str:
    """Issued codes are stored upper-cased; shoppers may type them in any case."""
    return str(code or "").strip().upper()
