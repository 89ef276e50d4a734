import re
from decimal import Decimal

import pytest

from storefront import config, crud, models, schemas
from storefront.errors import ErrorKind, ShopError


def _order_payload(address, **extra):
    return schemas.OrderCreate.model_validate({"shippingAddress": address, **extra})


def _line_sum(cart):
    return sum((Decimal(i.price) * i.quantity for i in cart.items), Decimal("0"))


def test_amount_rounding_regression():
    # Guard against regressions: 2-decimal rounding half up
    assert str(crud.round_amount(Decimal("2.675"))) == "2.68"
    assert str(crud.round_amount(Decimal("10.125"))) == "10.13"


def test_order_totals_under_free_shipping_threshold():
    assert crud.order_totals(Decimal("25")) == (
        Decimal("25.00"), Decimal("2.50"), Decimal("10.00"), Decimal("37.50")
    )


def test_order_totals_free_shipping_above_threshold():
    subtotal, tax, shipping, total = crud.order_totals(Decimal("150"))
    assert shipping == Decimal("0")
    assert total == Decimal("165.00")


def test_order_totals_threshold_is_exclusive():
    _, _, shipping, total = crud.order_totals(Decimal("100"))
    assert shipping == Decimal("10.00")
    assert total == Decimal("120.00")


def test_cart_totals_recomputed_after_each_mutation(db_session, user, make_product):
    a = make_product("A", "10.00", stock=5)
    b = make_product("B", "5.00", stock=5)

    cart = crud.add_item(db_session, user, a.id, 2)
    assert (cart.total_items, cart.total_price) == (2, Decimal("20.00"))

    cart = crud.add_item(db_session, user, b.id, 1)
    assert (cart.total_items, cart.total_price) == (3, Decimal("25.00"))

    # same product again merges into the existing line
    cart = crud.add_item(db_session, user, a.id, 1)
    assert len(cart.items) == 2
    assert (cart.total_items, cart.total_price) == (4, Decimal("35.00"))

    cart = crud.update_item(db_session, user, a.id, 1)
    assert (cart.total_items, cart.total_price) == (2, Decimal("15.00"))

    for c in (cart, crud.get_cart(db_session, user)):
        assert c.total_price == _line_sum(c)
        assert c.total_items == sum(i.quantity for i in c.items)


def test_add_then_remove_restores_totals(db_session, user, make_product):
    a = make_product("A", "19.99", stock=5)
    b = make_product("B", "3.50", stock=5)
    before = crud.add_item(db_session, user, a.id, 1)
    totals_before = (before.total_items, before.total_price)

    crud.add_item(db_session, user, b.id, 3)
    after = crud.remove_item(db_session, user, b.id)
    assert (after.total_items, after.total_price) == totals_before


def test_cart_keeps_snapshot_price(db_session, user, make_product):
    product = make_product("Lamp", "40.00", stock=5)
    crud.add_item(db_session, user, product.id, 1)

    product.price = Decimal("55.00")
    db_session.commit()

    cart = crud.add_item(db_session, user, product.id, 1)
    assert cart.items[0].price == Decimal("40.00")
    assert cart.total_price == Decimal("80.00")


def test_add_item_rejects_missing_inactive_and_short_stock(db_session, user, make_product):
    with pytest.raises(ShopError) as exc:
        crud.add_item(db_session, user, 9999, 1)
    assert exc.value.kind is ErrorKind.NOT_FOUND

    retired = make_product("Retired", stock=5, is_active=False)
    with pytest.raises(ShopError) as exc:
        crud.add_item(db_session, user, retired.id, 1)
    assert exc.value.kind is ErrorKind.NOT_FOUND

    scarce = make_product("Scarce", stock=1)
    with pytest.raises(ShopError) as exc:
        crud.add_item(db_session, user, scarce.id, 2)
    assert exc.value.kind is ErrorKind.INSUFFICIENT_STOCK


def test_update_item_to_zero_removes_line(db_session, user, make_product):
    product = make_product(stock=5)
    crud.add_item(db_session, user, product.id, 2)
    cart = crud.update_item(db_session, user, product.id, 0)
    assert cart.items == []
    assert (cart.total_items, cart.total_price) == (0, Decimal("0"))


def test_update_item_not_in_cart(db_session, user, make_product):
    product = make_product(stock=5)
    with pytest.raises(ShopError) as exc:
        crud.update_item(db_session, user, product.id, 2)
    assert exc.value.kind is ErrorKind.NOT_FOUND


def test_place_order_example_cart(db_session, user, make_product, address):
    a = make_product("A", "10.00", stock=5)
    b = make_product("B", "5.00", stock=4)
    crud.add_item(db_session, user, a.id, 2)
    crud.add_item(db_session, user, b.id, 1)

    order = crud.place_order(db_session, user, _order_payload(address))

    assert order.subtotal == Decimal("25.00")
    assert order.tax == Decimal("2.50")
    assert order.shipping_cost == Decimal("10.00")
    assert order.total_amount == Decimal("37.50")
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.payment_method == "credit_card"
    assert order.billing_address == order.shipping_address == address
    assert re.fullmatch(r"ORD-\d{13}-[0-9A-Z]{9}", order.order_number)
    assert [(i.product_id, i.quantity, i.price) for i in order.items] == [
        (a.id, 2, Decimal("10.00")),
        (b.id, 1, Decimal("5.00")),
    ]

    db_session.refresh(a)
    db_session.refresh(b)
    assert (a.stock, b.stock) == (3, 3)

    cart = crud.get_cart(db_session, user)
    assert cart.items == []
    assert cart.total_items == 0


def test_place_order_free_shipping(db_session, user, make_product, address):
    product = make_product("Chair", "75.00", stock=5)
    crud.add_item(db_session, user, product.id, 2)
    order = crud.place_order(db_session, user, _order_payload(address, paymentMethod="paypal"))
    assert order.shipping_cost == Decimal("0")
    assert order.total_amount == Decimal("165.00")
    assert order.payment_method == "paypal"


def test_place_order_empty_cart(db_session, user, address):
    with pytest.raises(ShopError) as exc:
        crud.place_order(db_session, user, _order_payload(address))
    assert exc.value.kind is ErrorKind.EMPTY_CART


def test_failed_checkout_rolls_back_every_decrement(db_session, user, make_product, address):
    a = make_product("A", "10.00", stock=5)
    b = make_product("B", "5.00", stock=1)
    crud.add_item(db_session, user, a.id, 2)
    crud.add_item(db_session, user, b.id, 1)

    # b sells out between add-to-cart and checkout
    b.stock = 0
    db_session.commit()

    with pytest.raises(ShopError) as exc:
        crud.place_order(db_session, user, _order_payload(address))
    assert exc.value.kind is ErrorKind.INSUFFICIENT_STOCK

    db_session.refresh(a)
    assert a.stock == 5
    assert db_session.query(models.Order).count() == 0
    assert len(crud.get_cart(db_session, user).items) == 2


def test_checkout_of_deactivated_product_is_not_found(db_session, user, make_product, address):
    product = make_product(stock=5)
    crud.add_item(db_session, user, product.id, 1)
    crud.delete_product(db_session, product.id)

    with pytest.raises(ShopError) as exc:
        crud.place_order(db_session, user, _order_payload(address))
    assert exc.value.kind is ErrorKind.NOT_FOUND


def test_stock_never_negative_across_competing_carts(db_session, make_user, make_product, address):
    product = make_product("Console", "300.00", stock=3)
    first, second = make_user(), make_user()
    crud.add_item(db_session, first, product.id, 2)
    crud.add_item(db_session, second, product.id, 2)

    crud.place_order(db_session, first, _order_payload(address))
    with pytest.raises(ShopError) as exc:
        crud.place_order(db_session, second, _order_payload(address))
    assert exc.value.kind is ErrorKind.INSUFFICIENT_STOCK

    db_session.refresh(product)
    assert product.stock == 1


def test_update_order_status_accepts_any_transition(db_session, user, make_product, address):
    product = make_product(stock=5)
    crud.add_item(db_session, user, product.id, 1)
    order = crud.place_order(db_session, user, _order_payload(address))

    assert crud.update_order_status(db_session, order.id, "delivered").status == "delivered"
    assert crud.update_order_status(db_session, order.id, "pending").status == "pending"

    with pytest.raises(ShopError) as exc:
        crud.update_order_status(db_session, order.id, "lost")
    assert exc.value.kind is ErrorKind.INVALID_STATUS

    with pytest.raises(ShopError) as exc:
        crud.update_order_status(db_session, 9999, "shipped")
    assert exc.value.kind is ErrorKind.NOT_FOUND


def test_get_order_checks_owner(db_session, make_user, make_product, address):
    owner, other, admin = make_user(), make_user(), make_user(role="admin")
    product = make_product(stock=5)
    crud.add_item(db_session, owner, product.id, 1)
    order = crud.place_order(db_session, owner, _order_payload(address))

    assert crud.get_order(db_session, order.id, owner).id == order.id
    assert crud.get_order(db_session, order.id, admin).id == order.id
    with pytest.raises(ShopError) as exc:
        crud.get_order(db_session, order.id, other)
    assert exc.value.kind is ErrorKind.FORBIDDEN


def test_signup_duplicate_email(db_session):
    payload = schemas.SignupRequest.model_validate({
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "Ada@Example.com",
        "password": "engine42",
        "confirmPassword": "engine42",
    })
    user, token = crud.signup(db_session, payload)
    assert user.email == "ada@example.com"
    assert token

    with pytest.raises(ShopError) as exc:
        crud.signup(db_session, payload)
    assert exc.value.kind is ErrorKind.DUPLICATE_EMAIL
    assert db_session.query(models.User).count() == 1


def test_login_records_last_login(db_session, make_user):
    user = make_user(email="grace@example.com", password="cobol1959")
    assert user.last_login is None

    logged_in, _ = crud.login(db_session, schemas.LoginRequest(email="GRACE@example.com", password="cobol1959"))
    assert logged_in.id == user.id
    assert logged_in.last_login is not None

    with pytest.raises(ShopError) as exc:
        crud.login(db_session, schemas.LoginRequest(email="grace@example.com", password="wrong"))
    assert exc.value.kind is ErrorKind.INVALID_CREDENTIALS


def test_order_totals_follow_configured_rates():
    try:
        config.update_settings(
            tax_rate=Decimal("0.20"), free_shipping_threshold=Decimal("50"), shipping_flat_rate=Decimal("4.99")
        )
        assert crud.order_totals(Decimal("40")) == (
            Decimal("40.00"), Decimal("8.00"), Decimal("4.99"), Decimal("52.99")
        )
        assert crud.order_totals(Decimal("60"))[2] == Decimal("0")
    finally:
        config.reset_settings()
    assert config.get_settings().tax_rate == Decimal("0.10")


def test_load_settings_reads_environment_mapping():
    settings = config.load_settings({"LOG_FORMAT": "Console", "LOG_LEVEL": "debug", "TAX_RATE": "0.08"})
    assert settings.log_format == "console"
    assert settings.log_level == "DEBUG"
    assert settings.tax_rate == Decimal("0.08")
    assert settings.jwt_expire_seconds == 604800


def test_update_item_rechecks_stock(db_session, user, make_product):
    product = make_product(stock=3)
    crud.add_item(db_session, user, product.id, 1)

    with pytest.raises(ShopError) as exc:
        crud.update_item(db_session, user, product.id, 4)
    assert exc.value.kind is ErrorKind.INSUFFICIENT_STOCK

    cart = crud.get_cart(db_session, user)
    assert cart.items[0].quantity == 1
    assert cart.total_items == 1
