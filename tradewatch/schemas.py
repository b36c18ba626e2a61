# tradewatch/schemas.py
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime


class _Model(BaseModel):
    # accept both snake_case and the camelCase the web form sends
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AffixFilter(_Model):
    id: str = Field(..., min_length=1, max_length=64)
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("affix min must not exceed max")
        return self


class QueryFilter(_Model):
    item_type: List[str] = Field(default_factory=list)
    classes: List[str] = Field(default_factory=list)
    affixes: List[AffixFilter] = Field(default_factory=list)
    power_level_min: int = Field(0, ge=0)
    power_level_max: int = Field(1000, ge=0)
    limit: int = Field(20, ge=1, le=100)
    mode: List[str] = Field(default_factory=lambda: ["season softcore"])
    recipient: Optional[str] = Field(None, max_length=64)

    @field_validator("item_type", "classes", "mode", mode="before")
    @classmethod
    def _listify(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("affixes", mode="before")
    @classmethod
    def _affix_ids(cls, v):
        # plain ids ("5001") or {"effectId": ...} as the web form sends them
        if v is None:
            return []
        out = []
        for a in v:
            if isinstance(a, (str, int)):
                out.append({"id": str(a)})
            elif isinstance(a, dict) and "id" not in a and "effectId" in a:
                out.append({**{k: val for k, val in a.items() if k != "effectId"}, "id": str(a["effectId"])})
            else:
                out.append(a)
        return out

    @model_validator(mode="after")
    def check_power_level(self):
        if self.power_level_min > self.power_level_max:
            raise ValueError("powerLevelMin must not exceed powerLevelMax")
        return self


class AddJobRequest(_Model):
    id: str = Field(..., min_length=1, max_length=191)
    schedule: str = Field(..., min_length=1)
    filter: QueryFilter


class RemoveJobRequest(_Model):
    id: str = Field(..., min_length=1, max_length=191)


class UpdateJobRequest(_Model):
    id: str = Field(..., min_length=1, max_length=191)
    new_schedule: str = Field(..., min_length=1)
    filter: QueryFilter


class RunNowRequest(_Model):
    filter: QueryFilter
    recipient: Optional[str] = Field(None, max_length=64)


class JobOut(_Model):
    id: str
    next_fire_time: Optional[datetime]


class RunOutcomeOut(_Model):
    job_id: Optional[str]
    fetched: int
    fresh: int
    delivered: List[str]
    capture_failures: List[str]
    failed_batches: int
    error: Optional[str]
