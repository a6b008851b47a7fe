"""
Variant option helpers: weight parsing, option filtering against a product's
option matrix, and option-combination generation.
"""
import itertools
import logging
import re

from coffee_commerce.models import Product

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT_GRAMS = 340
UNPARSED_WEIGHT_GRAMS = 1

GRAMS_PER_UNIT = {
    "g": 1,
    "oz": 28,
    "lb": 454,
}

_WEIGHT_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*(g|oz|lb)s?$")


def parse_weight_grams(value: str | None) -> int:
    """
    Convert a weight label to grams.

    Examples:
        "340" -> 340
        "250g" -> 250
        "12oz" -> 336
        "2lb" -> 908
        "a lot" -> 1
    """
    text = (value or "").strip().lower()
    if text.isdigit():
        return int(text)
    match = _WEIGHT_PATTERN.match(text)
    if not match:
        return UNPARSED_WEIGHT_GRAMS
    grams = int(float(match.group(1)) * GRAMS_PER_UNIT[match.group(2)])
    return grams if grams > 0 else UNPARSED_WEIGHT_GRAMS


def filter_options(product: Product, options: dict[str, str]) -> dict[str, str]:
    """Keep only option values the product's option matrix allows."""
    allowed = {}
    for key, value in options.items():
        if product.allows_option(key, value):
            allowed[key] = value
        else:
            logger.warning(f"Dropping option {key}={value!r}, not offered by product {product.id}")
    return allowed


def option_combinations(matrix: dict[str, list[str]] | None) -> list[dict[str, str]]:
    """Every combination of option values, in the matrix's key order.

    An empty matrix yields a single empty combination.
    """
    matrix = {k: v for k, v in (matrix or {}).items() if v}
    if not matrix:
        return [{}]
    keys = list(matrix)
    return [dict(zip(keys, values)) for values in itertools.product(*(matrix[k] for k in keys))]
