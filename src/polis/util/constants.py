"""Game-wide constants that are not tunable through config/game.yaml."""

# -- Resources -----------------------------------------------------------
WOOD = "wood"
STONE = "stone"
SILVER = "silver"
RESOURCES = (WOOD, STONE, SILVER)

# -- Buildings with special roles ----------------------------------------
SENATE = "senate"
FARM = "farm"
WAREHOUSE = "warehouse"
ACADEMY = "academy"
TEMPLE = "temple"
MARKET = "market"
HOSPITAL = "hospital"
CAVE = "cave"
BARRACKS = "barracks"
SHIPYARD = "shipyard"
DIVINE_TEMPLE = "divine_temple"

# Buildings that define population/storage capacity themselves.
CAPACITY_BUILDINGS = frozenset({FARM, WAREHOUSE})

# -- Units & agents ------------------------------------------------------
VILLAGER = "villager"
ARCHITECT = "architect"

# -- Collections in the document store -----------------------------------
CITIES = "cities"
PLAYERS = "players"
MOVEMENTS = "movements"
TRADES = "trades"
ALLIANCES = "alliances"
ALLIANCE_EVENTS = "alliance_events"
CITY_SLOTS = "city_slots"
VILLAGES = "villages"
RUINS = "ruins"
WORLD = "world"
WORLD_STATE_ID = "state"

# -- World clock ---------------------------------------------------------
SEASONS = ("Spring", "Summer", "Autumn", "Winter")
WEATHERS = ("Clear", "Rainy", "Windy", "Foggy", "Stormy")
