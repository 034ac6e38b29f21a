"""
Shared test fixtures for all backend tests.

This module provides reusable pytest fixtures for common test objects
like products, combos, tables, customers, promotions and the wired engine.
"""
import pytest
from decimal import Decimal

from core_backend.config import EngineSettings
from core_backend.engine import build_engine
from customers.models import Customer, CustomerGroup
from discounts.models import Promotion
from inventory.models import Recipe, RecipeItem
from orders.models import Order, Table
from products.models import Category, Combo, ComboGroup, ComboItem, Product


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def engine_settings():
    return EngineSettings(currency="VND", allow_partial_payment=True, table_history_limit=10, order_code_prefix="HD")


@pytest.fixture
def engine(db, engine_settings, frozen_clock):
    """Fully wired engine whose services all share the frozen clock"""
    return build_engine(engine_settings, clock=frozen_clock)


@pytest.fixture
def services(engine):
    return engine.services


# ============================================================================
# CATALOGUE FIXTURES
# ============================================================================

@pytest.fixture
def category_drinks(db):
    return Category.objects.create(name="Đồ uống")


@pytest.fixture
def category_food(db):
    return Category.objects.create(name="Đồ ăn")


@pytest.fixture
def product_coffee(category_drinks):
    """Ready-made drink, 50.000 ₫, not stock-tracked"""
    return Product.objects.create(
        code="CF01", name="Cà phê sữa", selling_price=Decimal("50000"), category=category_drinks
    )


@pytest.fixture
def product_tea(category_drinks):
    return Product.objects.create(
        code="TEA01", name="Trà đào", selling_price=Decimal("30000"), category=category_drinks
    )


@pytest.fixture
def product_cake(category_food):
    """Stock-tracked ready-made item"""
    return Product.objects.create(
        code="CAKE01",
        name="Bánh flan",
        selling_price=Decimal("20000"),
        category=category_food,
        track_inventory=True,
    )


@pytest.fixture
def topping_pearl(category_drinks):
    return Product.objects.create(
        code="TP01",
        name="Trân châu",
        selling_price=Decimal("5000"),
        category=category_drinks,
        is_topping=True,
    )


@pytest.fixture
def gift_cookie(category_food):
    return Product.objects.create(
        code="GIFT01", name="Bánh quy", selling_price=Decimal("15000"), category=category_food
    )


@pytest.fixture
def ingredient_beans(db):
    return Product.objects.create(
        code="ING01",
        name="Hạt cà phê",
        selling_price=Decimal("0"),
        item_type=Product.ItemType.INGREDIENT,
        is_sellable=False,
        track_inventory=True,
    )


@pytest.fixture
def ingredient_milk(db):
    return Product.objects.create(
        code="ING02",
        name="Sữa tươi",
        selling_price=Decimal("0"),
        item_type=Product.ItemType.INGREDIENT,
        is_sellable=False,
        track_inventory=True,
    )


@pytest.fixture
def product_latte(category_drinks, ingredient_beans, ingredient_milk):
    """Composite drink made from 0.02 kg beans and 0.15 l milk per cup"""
    latte = Product.objects.create(
        code="LT01",
        name="Latte",
        selling_price=Decimal("45000"),
        category=category_drinks,
        item_type=Product.ItemType.COMPOSITE,
    )
    recipe = Recipe.objects.create(menu_item=latte, name="Latte")
    RecipeItem.objects.create(recipe=recipe, product=ingredient_beans, quantity=Decimal("0.02"), unit="kg")
    RecipeItem.objects.create(recipe=recipe, product=ingredient_milk, quantity=Decimal("0.15"), unit="l")
    return latte


@pytest.fixture
def combo_breakfast(product_coffee, product_tea, gift_cookie):
    """
    Combo 79.000 ₫:
    - "Đồ uống" (must choose 1): coffee (+0) or tea (+5.000)
    - "Ăn kèm" (may choose up to 1): cookie (+10.000)
    """
    combo = Combo.objects.create(
        code="CB01", name="Combo sáng", combo_price=Decimal("79000"), original_price=Decimal("95000")
    )
    drinks = ComboGroup.objects.create(combo=combo, name="Đồ uống", min_select=1, max_select=1)
    sides = ComboGroup.objects.create(combo=combo, name="Ăn kèm", min_select=0, max_select=1, display_order=1)
    ComboItem.objects.create(group=drinks, product=product_coffee, extra_price=Decimal("0"))
    ComboItem.objects.create(group=drinks, product=product_tea, extra_price=Decimal("5000"))
    ComboItem.objects.create(group=sides, product=gift_cookie, extra_price=Decimal("10000"))
    return combo


def combo_item_for(combo, product):
    return ComboItem.objects.get(group__combo=combo, product=product)


# ============================================================================
# TABLE FIXTURES
# ============================================================================

@pytest.fixture
def table_1(db):
    return Table.objects.create(name="Bàn 1", area="Tầng 1")


@pytest.fixture
def table_2(db):
    return Table.objects.create(name="Bàn 2", area="Tầng 1")


@pytest.fixture
def table_3(db):
    return Table.objects.create(name="Bàn 3", area="Sân vườn")


# ============================================================================
# CUSTOMER FIXTURES
# ============================================================================

@pytest.fixture
def vip_group(db):
    return CustomerGroup.objects.create(name="VIP")


@pytest.fixture
def customer_vip(vip_group):
    return Customer.objects.create(code="KH001", name="Nguyễn Văn A", phone="0901000001", group=vip_group)


@pytest.fixture
def customer_regular(db):
    return Customer.objects.create(code="KH002", name="Trần Thị B", phone="0901000002")


# ============================================================================
# PROMOTION FIXTURES
# ============================================================================

@pytest.fixture
def make_promotion(db):
    """
    Factory for promotions. Scope sets are passed as lists of model
    instances; everything else is a Promotion field.

    Usage:
        promo = make_promotion(promotion_type="percentage", discount_value=10, apply_to_all_items=True)
    """
    counter = {"n": 0}

    def _make(items=(), categories=(), combos=(), customers=(), groups=(), gifts=(), **fields):
        counter["n"] += 1
        fields.setdefault("name", f"Khuyến mãi {counter['n']}")
        fields.setdefault("code", f"KM{counter['n']:03d}")
        fields.setdefault("promotion_type", Promotion.PromotionType.PERCENTAGE)
        fields.setdefault("discount_value", Decimal("10"))
        promotion = Promotion.objects.create(**fields)
        promotion.applicable_items.set(items)
        promotion.applicable_categories.set(categories)
        promotion.applicable_combos.set(combos)
        promotion.applicable_customers.set(customers)
        promotion.applicable_customer_groups.set(groups)
        promotion.gift_items.set(gifts)
        return promotion

    return _make


@pytest.fixture
def percent_promotion(make_promotion):
    """10% off everything, no cap"""
    return make_promotion(
        name="Giảm 10%",
        promotion_type=Promotion.PromotionType.PERCENTAGE,
        discount_value=Decimal("10"),
        apply_to_all_items=True,
        apply_to_all_combos=True,
    )


# ============================================================================
# ORDER FIXTURES
# ============================================================================

@pytest.fixture
def open_order(services, table_1, product_coffee):
    """Dine-in order on table 1: 2 x coffee = 100.000 ₫"""
    return services.orders.create_order(
        items=[{"product_id": product_coffee.id, "quantity": 2}],
        order_type=Order.OrderType.DINE_IN,
        table_id=table_1.id,
    )


@pytest.fixture
def takeaway_order(services, product_tea):
    """Takeaway order: 1 x tea = 30.000 ₫"""
    return services.orders.create_order(
        items=[{"product_id": product_tea.id, "quantity": 1}],
        order_type=Order.OrderType.TAKEAWAY,
    )
