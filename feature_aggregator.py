"""
Aggregation of features with equal attribute values.

Every distinct combination of the key attribute values becomes one
AggregatedFeature carrying the number of input features merged into it.
"""

import logging
import time
from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from errors import ValidationError
from feature_hasher import GeometryHasher
from features import AggregatedFeature, Feature

logger = logging.getLogger(__name__)


class FeatureAggregator:
    """Merges features sharing equal values on a set of key attributes.

    Args:
        key_attributes: Attribute names forming the aggregation key
        geometry_hasher: If given, the geometry hash becomes part of the key
            so that only features with identical lines are merged
        measuring_enabled: Log the time spent aggregating
    """

    def __init__(
        self,
        key_attributes: Sequence[str],
        geometry_hasher: Optional[GeometryHasher] = None,
        measuring_enabled: bool = False
    ):
        self.key_attributes = list(key_attributes)
        self.geometry_hasher = geometry_hasher
        self.measuring_enabled = measuring_enabled

    def aggregation_key(self, feature: Feature) -> Tuple[Hashable, ...]:
        """Ordered tuple of the feature's key values.

        Each value is paired with its type name, so True and 1 stay apart.
        """
        values = []
        for name in self.key_attributes:
            if name not in feature.attributes:
                raise ValidationError(
                    f"Feature '{feature.id}' has no attribute '{name}' to aggregate by"
                )
            value = feature.attributes[name]
            values.append((type(value).__name__, value))
        if self.geometry_hasher is not None:
            values.insert(0, self.geometry_hasher.hash(feature))
        return tuple(values)

    def aggregate(self, features: Iterable[Feature]) -> List[AggregatedFeature]:
        """Aggregate features in a single forward pass.

        Returns:
            Aggregated features in order of the first occurrence of their key
        """
        started = time.perf_counter()
        aggregated: Dict[Tuple[Hashable, ...], AggregatedFeature] = {}
        input_count = 0

        for feature in features:
            input_count += 1
            key = self.aggregation_key(feature)
            existing = aggregated.get(key)
            if existing is None:
                aggregated[key] = AggregatedFeature(
                    id=feature.id,
                    geometry=feature.geometry,
                    attributes={name: feature.attributes[name] for name in self.key_attributes},
                    count=1
                )
            else:
                existing.count += 1

        if self.measuring_enabled:
            logger.info(
                "Spent %.3f seconds aggregating %d features into %d",
                time.perf_counter() - started, input_count, len(aggregated)
            )
        return list(aggregated.values())
