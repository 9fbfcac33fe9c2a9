"""Recipe cost tracking from ingredient prices."""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .aggregates import percent_change
from .history import closest_to
from .models import Item, Recipe, RecipeCurrentPrice, RecipePricePoint, as_utc

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _change_since(
    history: list[RecipePricePoint], total: Decimal, as_of: datetime, days: int
) -> float | None:
    earlier = [point for point in history if point.recorded_at < as_of]
    previous = closest_to(earlier, as_of - timedelta(days=days), key=lambda p: p.recorded_at)
    if previous is None or previous.total <= 0:
        return None
    return percent_change(total, previous.total)


def calculate_recipe_cost(recipe: Recipe, items: Mapping[str, Item], as_of: datetime) -> Recipe:
    """Price a recipe from its ingredients' lowest prices.

    Ingredients without a linked, priced item are left out of the total. A
    new history point is recorded at ``as_of`` (replacing one already recorded
    at that instant) and the weekly and monthly changes are measured against
    the closest earlier points. A recipe with no priced ingredient is
    returned unchanged.

    Args:
        recipe: Recipe to price
        items: Tracked items by id
        as_of: Time of the calculation

    Returns:
        Updated copy of the recipe
    """
    as_of = as_utc(as_of)
    ingredient_prices: dict[str, Decimal] = {}
    total = Decimal("0")
    for ingredient in recipe.ingredients:
        item = items.get(ingredient.item_id) if ingredient.item_id else None
        if item is None or item.current_lowest_price is None:
            continue
        cost = item.current_lowest_price.price * ingredient.quantity
        ingredient_prices[item.id] = item.current_lowest_price.price
        total += cost

    if not ingredient_prices:
        logger.debug("Recipe %s has no priced ingredients", recipe.id)
        return recipe

    total = total.quantize(CENT, ROUND_HALF_UP)
    history = [point for point in recipe.price_history if point.recorded_at != as_of]
    current = RecipeCurrentPrice(
        total=total,
        weekly_change_pct=_change_since(history, total, as_of, 7),
        monthly_change_pct=_change_since(history, total, as_of, 30),
        last_updated=as_of,
    )
    history.append(
        RecipePricePoint(recorded_at=as_of, total=total, ingredient_prices=ingredient_prices)
    )
    return recipe.model_copy(update={"price_history": history, "current_price": current})
