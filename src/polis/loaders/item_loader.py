"""Item loader — parses the game-balance YAML tables into frozen models.

Supports two modes:
  1. Directory with per-table files: buildings.yaml, units.yaml,
     research.yaml, gods.yaml, heroes.yaml, agents.yaml,
     alliance_wonders.yaml, alliance_research.yaml
  2. Single file with all of those as top-level sections
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

import yaml

from polis.models.items import (
    AgentDetails,
    AllianceResearchDetails,
    BuildingDetails,
    GodDetails,
    HeroDetails,
    ItemTables,
    ProductionSpec,
    ResearchDetails,
    SpellDetails,
    UnitDetails,
    UnitType,
    WonderDetails,
)

log = logging.getLogger(__name__)

# Per-level growth used when a building omits its own factors.
DEFAULT_GROWTH = {
    "wood": 1.6,
    "stone": 1.6,
    "silver": 1.8,
    "population": 1.1,
    "time": 1.25,
}


def _floats(raw: Any) -> dict[str, float]:
    return {k: float(v) for k, v in (raw or {}).items()}


def _parse_building(bid: str, attrs: dict) -> BuildingDetails:
    production = None
    prod_raw = attrs.get("production")
    if isinstance(prod_raw, dict):
        production = ProductionSpec(
            resource=prod_raw["resource"],
            base=float(prod_raw.get("base", 0)),
            growth=float(prod_raw.get("growth", 1.0)),
        )
    growth = dict(DEFAULT_GROWTH)
    growth.update(_floats(attrs.get("growth")))
    return BuildingDetails(
        building_id=bid,
        name=attrs.get("name", bid),
        max_level=int(attrs.get("max_level", 1)),
        base_cost=_floats(attrs.get("base_cost")),
        growth=growth,
        requirements={k: int(v) for k, v in (attrs.get("requirements") or {}).items()},
        research_requirements=tuple(attrs.get("research_requirements") or ()),
        production=production,
        points=int(attrs.get("points", 0)),
    )


def _parse_unit(uid: str, attrs: dict) -> UnitDetails:
    return UnitDetails(
        unit_id=uid,
        name=attrs.get("name", uid),
        unit_type=UnitType(attrs.get("type", "land")),
        flying=bool(attrs.get("flying", False)),
        mythical=bool(attrs.get("mythical", False)),
        god=attrs.get("god"),
        speed=float(attrs.get("speed", 0)),
        capacity=int(attrs.get("capacity", 0)),
        population=int(attrs.get("population", 1)),
        cost=_floats(attrs.get("cost")),
        time=float(attrs.get("time", 0)),
        heal_cost=_floats(attrs.get("heal_cost")),
        heal_time=float(attrs.get("heal_time", 0)),
    )


def _parse_research(rid: str, attrs: dict) -> ResearchDetails:
    reqs = attrs.get("requirements") or {}
    return ResearchDetails(
        research_id=rid,
        name=attrs.get("name", rid),
        cost=_floats(attrs.get("cost")),
        time=float(attrs.get("time", 0)),
        academy_level=int(reqs.get("academy", 1)),
        required_research=reqs.get("research"),
    )


def _parse_god(gid: str, attrs: dict) -> GodDetails:
    spells = {}
    for sid, spell in (attrs.get("spells") or {}).items():
        spells[sid] = SpellDetails(
            spell_id=sid,
            name=spell.get("name", sid),
            favor_cost=float(spell.get("favor_cost", 0)),
            effect=dict(spell.get("effect") or {}),
            targets_other_city=bool(spell.get("targets_other_city", False)),
        )
    return GodDetails(god_id=gid, name=attrs.get("name", gid), spells=spells)


def _parse_hero(hid: str, attrs: dict) -> HeroDetails:
    return HeroDetails(
        hero_id=hid,
        name=attrs.get("name", hid),
        cost=_floats(attrs.get("cost")),
        effects=_floats(attrs.get("effects")),
    )


def _parse_agent(aid: str, attrs: dict) -> AgentDetails:
    return AgentDetails(agent_id=aid, name=attrs.get("name", aid), cost=_floats(attrs.get("cost")))


def _parse_wonder(wid: str, attrs: dict) -> WonderDetails:
    return WonderDetails(wonder_id=wid, name=attrs.get("name", wid),
                         effects=_floats(attrs.get("effects")))


def _parse_alliance_research(rid: str, attrs: dict) -> AllianceResearchDetails:
    return AllianceResearchDetails(
        research_id=rid,
        name=attrs.get("name", rid),
        max_level=int(attrs.get("max_level", 10)),
        base_cost=_floats(attrs.get("base_cost")),
        cost_multiplier=float(attrs.get("cost_multiplier", 1.5)),
        effects=_floats(attrs.get("effects")),
    )


# Table key (also the file stem) → (parser, ItemTables attribute)
_TABLES: dict[str, tuple[Callable[[str, dict], Any], str]] = {
    "buildings": (_parse_building, "buildings"),
    "units": (_parse_unit, "units"),
    "research": (_parse_research, "research"),
    "gods": (_parse_god, "gods"),
    "heroes": (_parse_hero, "heroes"),
    "agents": (_parse_agent, "agents"),
    "alliance_wonders": (_parse_wonder, "wonders"),
    "alliance_research": (_parse_alliance_research, "alliance_research"),
}


def parse_tables(data: dict) -> ItemTables:
    """Parse already-loaded YAML sections into an ``ItemTables``."""
    tables = ItemTables()
    for key, (parser, attr) in _TABLES.items():
        section = data.get(key) or {}
        target = getattr(tables, attr)
        for iid, attrs in section.items():
            if not isinstance(attrs, dict):
                continue
            target.append(parser(str(iid), attrs))
    return tables


def load_items(path: str | Path = "config") -> ItemTables:
    """Load all balance tables from YAML file(s).

    Args:
        path: Either a directory containing per-table YAML files or a
              single YAML file with all sections.

    Returns:
        Parsed tables, ready for ``GameData.load``.
    """
    path = Path(path)
    data: dict[str, Any] = {}

    if path.is_dir():
        for key in _TABLES:
            table_file = path / f"{key}.yaml"
            if not table_file.exists():
                continue
            with table_file.open() as f:
                data[key] = yaml.safe_load(f) or {}
    else:
        with path.open() as f:
            data = yaml.safe_load(f) or {}

    tables = parse_tables(data)
    log.info("Loaded %d buildings, %d units, %d research from %s",
             len(tables.buildings), len(tables.units), len(tables.research), path)
    return tables
