"""
Property/requirement compatibility scoring.

Weighted sum over seven independently optional criteria:

    property type 20, location 25, price 20, area 15,
    bedrooms 10, bathrooms 5, features 5

A criterion is evaluated only when both the property and the requirement
carry the data it needs. The score is renormalized against the weight that
was actually evaluated, so missing data never penalizes a pair:

    score = round_half_up(100 * earned_weight / evaluated_weight)

Zero evaluated weight yields 0.

score() and match_details() are both projections of one evaluate() call, so
the per-criterion booleans can never disagree with the number.
"""

import math
from dataclasses import dataclass, field

from ..models.match import MatchDetails
from ..models.property import Property
from ..models.requirement import BuyerRequirement, RentRequirement

WEIGHTS: dict[str, int] = {
    'property_type': 20,
    'location': 25,
    'price': 20,
    'area': 15,
    'bedrooms': 10,
    'bathrooms': 5,
    'features': 5,
}

CITY_ONLY_CREDIT = 0.6


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class CriterionResult:
    """Outcome of one evaluated criterion. credit is a fraction in [0, 1]."""

    name: str
    weight: int
    credit: float

    @property
    def earned(self) -> float:
        return self.weight * self.credit

    @property
    def full_match(self) -> bool:
        return self.credit >= 1.0


@dataclass
class MatchEvaluation:
    """Every evaluated criterion for one (property, requirement) pair."""

    criteria: dict[str, CriterionResult] = field(default_factory=dict)
    matched_features: list[str] = field(default_factory=list)

    @property
    def evaluated_weight(self) -> int:
        return sum(c.weight for c in self.criteria.values())

    @property
    def earned_weight(self) -> float:
        return sum(c.earned for c in self.criteria.values())

    @property
    def score(self) -> int:
        total = self.evaluated_weight
        if total <= 0:
            return 0
        normalized = math.floor(self.earned_weight / total * 100 + 0.5)
        return max(0, min(100, normalized))

    def is_full(self, name: str) -> bool:
        result = self.criteria.get(name)
        return result is not None and result.full_match


# =============================================================================
# Criterion helpers
# =============================================================================


def graded_range_credit(value: float, low: float | None, high: float | None) -> float:
    """
    Credit for a value against an optional [low, high] range.

    Full inside the range; otherwise graded by the relative distance to the
    nearest bound: 0.75 within 10%, 0.5 within 20%, else 0.
    """
    if (low is None or value >= low) and (high is None or value <= high):
        return 1.0
    bound = low if low is not None and value < low else high
    if not bound:
        return 0.0
    deviation = abs(value - bound) / bound
    if deviation <= 0.10:
        return 0.75
    if deviation <= 0.20:
        return 0.5
    return 0.0


def _norm(text: str) -> str:
    return text.strip().lower()


def _contains_either(a: str, b: str) -> bool:
    a, b = _norm(a), _norm(b)
    return bool(a) and bool(b) and (a in b or b in a)


def _price_bounds(requirement: BuyerRequirement | RentRequirement) -> tuple[float | None, float | None]:
    if isinstance(requirement, (BuyerRequirement, RentRequirement)):
        return requirement.min_budget or None, requirement.max_budget or None
    raise TypeError(f"Unsupported requirement type: {type(requirement).__name__}")


def _area_bounds(requirement: BuyerRequirement | RentRequirement) -> tuple[float | None, float | None] | None:
    if isinstance(requirement, BuyerRequirement):
        if requirement.min_area is None and requirement.max_area is None:
            return None
        return requirement.min_area or None, requirement.max_area or None
    if isinstance(requirement, RentRequirement):
        return None
    raise TypeError(f"Unsupported requirement type: {type(requirement).__name__}")


def _reference_price(
    prop: Property, requirement: BuyerRequirement | RentRequirement, cycle_price: float | None
) -> float | None:
    if cycle_price:
        return cycle_price
    # A property's reference price is a sale price; it says nothing about rent.
    if isinstance(requirement, BuyerRequirement):
        return prop.price or None
    return None


# =============================================================================
# MatchScorer
# =============================================================================


class MatchScorer:
    """
    Pure scoring of a property (at a cycle price) against a requirement.

    Stateless; safe to share between the batch engine and interactive finders.
    """

    def __init__(self, weights: dict[str, int] | None = None):
        self.weights = dict(WEIGHTS)
        if weights:
            self.weights.update(weights)

    def evaluate(
        self,
        prop: Property,
        requirement: BuyerRequirement | RentRequirement,
        cycle_price: float | None = None,
    ) -> MatchEvaluation:
        if not isinstance(requirement, (BuyerRequirement, RentRequirement)):
            raise TypeError(f"Unsupported requirement type: {type(requirement).__name__}")

        evaluation = MatchEvaluation()

        def add(name: str, credit: float) -> None:
            evaluation.criteria[name] = CriterionResult(name, self.weights[name], credit)

        # 1. Property type
        if requirement.property_types and prop.property_type:
            wanted = {_norm(t) for t in requirement.property_types}
            add('property_type', 1.0 if _norm(prop.property_type) in wanted else 0.0)

        # 2. Location: block/area hit is full credit, city-only hit is partial
        address = prop.address
        if requirement.preferred_locations and address is not None and address.parts():
            local = [p for p in (address.area, address.block) if p]
            if any(_contains_either(loc, part) for loc in requirement.preferred_locations for part in local):
                add('location', 1.0)
            elif address.city and any(
                _contains_either(loc, address.city) for loc in requirement.preferred_locations
            ):
                add('location', CITY_ONLY_CREDIT)
            else:
                add('location', 0.0)

        # 3. Price
        price = _reference_price(prop, requirement, cycle_price)
        low, high = _price_bounds(requirement)
        if price and (low is not None or high is not None):
            add('price', graded_range_credit(price, low, high))

        # 4. Area (buyers only)
        area_bounds = _area_bounds(requirement)
        if area_bounds is not None and prop.area:
            add('area', graded_range_credit(prop.area, *area_bounds))

        # 5. Bedrooms
        min_bed, max_bed = requirement.min_bedrooms, requirement.max_bedrooms
        if prop.bedrooms is not None and (min_bed or max_bed):
            beds = prop.bedrooms
            if (not min_bed or beds >= min_bed) and (not max_bed or beds <= max_bed):
                add('bedrooms', 1.0)
            elif (max_bed and beds > max_bed) or (min_bed and beds == min_bed - 1):
                add('bedrooms', 0.5)
            else:
                add('bedrooms', 0.0)

        # 6. Bathrooms
        if requirement.min_bathrooms and prop.bathrooms is not None:
            if prop.bathrooms >= requirement.min_bathrooms:
                add('bathrooms', 1.0)
            elif prop.bathrooms == requirement.min_bathrooms - 1:
                add('bathrooms', 0.5)
            else:
                add('bathrooms', 0.0)

        # 7. Features
        if requirement.features:
            evaluation.matched_features = [
                f for f in requirement.features
                if any(_contains_either(f, pf) for pf in prop.features)
            ]
            add('features', len(evaluation.matched_features) / len(requirement.features))

        return evaluation

    def score(
        self,
        prop: Property,
        requirement: BuyerRequirement | RentRequirement,
        cycle_price: float | None = None,
    ) -> int:
        """Compatibility score in 0..100."""
        return self.evaluate(prop, requirement, cycle_price).score

    def match_details(
        self,
        prop: Property,
        requirement: BuyerRequirement | RentRequirement,
        cycle_price: float | None = None,
    ) -> MatchDetails:
        """Per-criterion breakdown derived from the same evaluation as score()."""
        return self.details_from(self.evaluate(prop, requirement, cycle_price))

    @staticmethod
    def details_from(evaluation: MatchEvaluation) -> MatchDetails:
        return MatchDetails(
            property_type_match=evaluation.is_full('property_type'),
            location_match=evaluation.is_full('location'),
            price_match=evaluation.is_full('price'),
            area_match=evaluation.is_full('area'),
            bedrooms_match=evaluation.is_full('bedrooms'),
            bathrooms_match=evaluation.is_full('bathrooms'),
            features_match=list(evaluation.matched_features),
            overall_score=evaluation.score,
        )
