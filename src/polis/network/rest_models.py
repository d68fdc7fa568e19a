"""Pydantic request/response models for the REST API.

These models define the HTTP request bodies and response shapes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ActionResponse(BaseModel):
    success: bool
    error: str = ""


# ===================================================================
# World
# ===================================================================


class JoinWorldRequest(BaseModel):
    username: str = Field(min_length=1)
    city_name: Optional[str] = None


# ===================================================================
# City actions
# ===================================================================


class BuildingRequest(BaseModel):
    building_id: str


class SpecialBuildingRequest(BaseModel):
    building_type: str


class ResearchRequest(BaseModel):
    research_id: str


class WorshipRequest(BaseModel):
    god_id: str


class SpellRequest(BaseModel):
    spell_id: str
    target_city_id: Optional[str] = None


class WorkerRequest(BaseModel):
    building_id: str


class WorkerPresetBody(BaseModel):
    name: str = Field(min_length=1)
    workers: Dict[str, int] = Field(default_factory=dict)


class TrainRequest(BaseModel):
    unit_id: str
    amount: int = Field(ge=1)


class UnitsRequest(BaseModel):
    units: Dict[str, int]


class CaveSilverRequest(BaseModel):
    amount: float = Field(gt=0)


# ===================================================================
# Movements
# ===================================================================


class TargetModel(BaseModel):
    kind: str
    target_id: str
    x: float
    y: float
    island_id: Optional[str] = None
    owner_id: Optional[str] = None
    name: str = ""
    city_id: Optional[str] = None


class DispatchRequest(BaseModel):
    origin_city_id: str
    mode: str
    target: TargetModel
    units: Dict[str, int] = Field(default_factory=dict)
    resources: Dict[str, float] = Field(default_factory=dict)
    hero: Optional[str] = None
    formation: Dict[str, str] = Field(default_factory=dict)


class FoundCityRequest(BaseModel):
    origin_city_id: str
    slot_id: str
    units: Dict[str, int]
    agent_id: str = "architect"


class WithdrawRequest(BaseModel):
    withdrawals: Dict[str, Dict[str, int]]


# ===================================================================
# Market
# ===================================================================


class TradeCreateRequest(BaseModel):
    city_id: str
    offer_resource: str
    offer_amount: float
    demand_resource: str
    demand_amount: float


class TradeAcceptRequest(BaseModel):
    city_id: str


# ===================================================================
# Alliance
# ===================================================================


class AllianceCreateRequest(BaseModel):
    name: str


class WonderStartRequest(BaseModel):
    city_id: str
    wonder_id: str
    island_id: Optional[str] = None
    x: float = 0.0
    y: float = 0.0


class DonationRequest(BaseModel):
    city_id: str
    wood: float = 0.0
    stone: float = 0.0
    silver: float = 0.0

    def amounts(self) -> Dict[str, Any]:
        return {"wood": self.wood, "stone": self.stone, "silver": self.silver}
