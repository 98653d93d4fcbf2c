"""
Ordering of the features within a line stack.

The smaller the order value, the closer a feature is placed to the
original line.
"""

import math
from typing import List, Sequence

from errors import ValidationError


def parse_order_value(value, attribute_name: str = "", feature_id=None) -> int:
    """Parse an order attribute value as an integer.

    Accepts integers, integral floats and numeric strings. Missing values,
    booleans and anything else raise ValidationError.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(
            f"Feature '{feature_id}' has no integer value for the order attribute "
            f"'{attribute_name}' (found {value!r})"
        )
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
    elif isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(
        f"The order attribute '{attribute_name}' of feature '{feature_id}' "
        f"has to be an integer, but is {value!r}"
    )


class FeatureOrderComparator:
    """Compares stack members by an integer order attribute.

    With an empty attribute name all features compare equal, so sorting
    keeps the arrival order.
    """

    def __init__(self, order_attribute: str = ""):
        self.order_attribute = order_attribute or ""

    @property
    def is_enabled(self) -> bool:
        return self.order_attribute != ""

    def order_value(self, feature) -> int:
        if not self.is_enabled:
            return 0
        return parse_order_value(
            feature.attributes.get(self.order_attribute),
            self.order_attribute,
            feature.id
        )

    def compare(self, a, b) -> int:
        """Return -1, 0 or 1 like a classic comparator."""
        va = self.order_value(a)
        vb = self.order_value(b)
        return (va > vb) - (va < vb)

    def sort(self, features: Sequence) -> List:
        """Return the features stably sorted by ascending order value."""
        if not self.is_enabled:
            return list(features)
        return sorted(features, key=self.order_value)
