import re

from storefront.errors import ErrorKind, status_for
from storefront.utils import clean_text, escape_like, generate_order_number, slugify


def test_clean_text_strips_markup():
    s = "<script>alert(1)</script>Bob"
    out = clean_text(s)
    assert "<" not in out
    assert "bob" in out.lower()


def test_clean_text_collapses_whitespace_and_nul():
    assert clean_text("  wireless \x00\n  mouse ") == "wireless mouse"
    assert clean_text(None) == ""
    assert clean_text("tom & jerry") == "tom & jerry"
    assert len(clean_text("a" * 500)) == 200


def test_escape_like_escapes_wildcards():
    assert escape_like("50%_off") == "50\\%\\_off"
    assert escape_like("C:\\temp") == "C:\\\\temp"
    assert escape_like("plain") == "plain"


def test_slugify():
    assert slugify("Laptops & Computers") == "laptops-computers"
    assert slugify("  --Smart Home--  ") == "smart-home"
    assert slugify("!!!") == ""


def test_order_numbers_are_unique_and_well_formed():
    numbers = {generate_order_number() for _ in range(200)}
    assert len(numbers) == 200
    for number in numbers:
        assert re.fullmatch(r"ORD-\d{13}-[0-9A-Z]{9}", number)


def test_error_kinds_map_to_status_codes():
    assert status_for(ErrorKind.VALIDATION) == 400
    assert status_for(ErrorKind.EMPTY_CART) == 400
    assert status_for(ErrorKind.INSUFFICIENT_STOCK) == 400
    assert status_for(ErrorKind.INVALID_CREDENTIALS) == 401
    assert status_for(ErrorKind.UNAUTHORIZED) == 401
    assert status_for(ErrorKind.FORBIDDEN) == 403
    assert status_for(ErrorKind.NOT_FOUND) == 404
