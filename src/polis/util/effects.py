"""Effect key constants.

String keys used in effect maps contributed by alliance research,
alliance wonders and stationed heroes.
"""

# -- Production ----------------------------------------------------------
WOOD_PRODUCTION_MODIFIER = "wood_production_modifier"
STONE_PRODUCTION_MODIFIER = "stone_production_modifier"
SILVER_PRODUCTION_MODIFIER = "silver_production_modifier"
FAVOR_PRODUCTION_MODIFIER = "favor_production_modifier"

# -- Capacity ------------------------------------------------------------
WAREHOUSE_CAPACITY_MODIFIER = "warehouse_capacity_modifier"
FARM_CAPACITY_MODIFIER = "farm_capacity_modifier"
CAVE_CAPACITY_MODIFIER = "cave_capacity_modifier"

# -- City ----------------------------------------------------------------
HAPPINESS_OFFSET = "happiness_offset"
RESEARCH_TIME_MODIFIER = "research_time_modifier"

PRODUCTION_MODIFIERS = {
    "wood": WOOD_PRODUCTION_MODIFIER,
    "stone": STONE_PRODUCTION_MODIFIER,
    "silver": SILVER_PRODUCTION_MODIFIER,
}

ALL_EFFECTS = frozenset({
    WOOD_PRODUCTION_MODIFIER,
    STONE_PRODUCTION_MODIFIER,
    SILVER_PRODUCTION_MODIFIER,
    FAVOR_PRODUCTION_MODIFIER,
    WAREHOUSE_CAPACITY_MODIFIER,
    FARM_CAPACITY_MODIFIER,
    CAVE_CAPACITY_MODIFIER,
    HAPPINESS_OFFSET,
    RESEARCH_TIME_MODIFIER,
})


def merge(*maps: dict[str, float]) -> dict[str, float]:
    """Sum several effect maps key by key."""
    total: dict[str, float] = {}
    for m in maps:
        for key, value in m.items():
            total[key] = total.get(key, 0.0) + value
    return total
