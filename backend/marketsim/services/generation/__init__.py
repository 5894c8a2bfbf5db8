from marketsim.services.generation.types import (
    Bar,
    GenerationMode,
    Granularity,
    Horizon,
    SeriesRequest,
    SeriesResult,
)
from marketsim.services.generation.seeds import SEED_PRICES, seed_price_for
from marketsim.services.generation.price_walk import PriceWalkGenerator, VolatilityProfile, profile_for
from marketsim.services.generation.series import SeriesGenerator

__all__ = [
    "Bar",
    "GenerationMode",
    "Granularity",
    "Horizon",
    "SeriesRequest",
    "SeriesResult",
    "SEED_PRICES",
    "seed_price_for",
    "PriceWalkGenerator",
    "VolatilityProfile",
    "profile_for",
    "SeriesGenerator",
]
