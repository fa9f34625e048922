import re

import pytest

from loyalty_points.services.loyalty.code_generator import CodeGenerator


def test_code_layout():
    code = CodeGenerator("PSKLTY").generate("gid://shopify/Customer/7712345678", "c1-abcd-ef99")
    assert code.startswith("PSKLTY5678EF99")
    assert len(code) == len("PSKLTY") + 4 + 4 + 8
    assert re.fullmatch(r"[A-Z0-9]+", code)


def test_codes_do_not_repeat():
    gen = CodeGenerator()
    codes = {gen.generate("42", "cart") for _ in range(500)}
    assert len(codes) == 500


def test_short_inputs_are_used_whole():
    code = CodeGenerator().generate("7", "")
    assert code.startswith("PSKLTY7")
    assert len(code) == len("PSKLTY7") + 8


def test_is_loyalty_code():
    gen = CodeGenerator("psk-lty")
    assert gen.prefix == "PSKLTY"
    assert gen.is_loyalty_code("PSKLTY0042CART1A2B3C4D")
    assert gen.is_loyalty_code("psklty0042")
    assert not gen.is_loyalty_code("SUMMER10")
    assert not gen.is_loyalty_code("")


def test_prefix_required():
    with pytest.raises(ValueError):
        CodeGenerator("--")
