from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from bakery.core.enum_utils import VALID_TOGGLE_ACTIONS, normalize_to_uppercase
from bakery.schemas.base import BaseCreateSchema, BaseResponseSchema
from bakery.services.catalog_toggle_service import ToggleAction

TIME_REGEX = r"^([01]\d|2[0-3]):([0-5]\d):([0-5]\d)$"


class CatalogScheduleResponse(BaseModel):
    enabled: bool
    disable_time: str
    enable_time: str
    timezone: str
    jobs: List[dict] = []


class CatalogScheduleUpdate(BaseCreateSchema):
    enabled: Optional[bool] = None
    disable_time: Optional[str] = Field(None, pattern=TIME_REGEX)
    enable_time: Optional[str] = Field(None, pattern=TIME_REGEX)
    timezone: Optional[str] = Field(None, max_length=64)


class CatalogToggleRunRequest(BaseCreateSchema):
    action: ToggleAction

    @field_validator('action', mode='before')
    @classmethod
    def normalize_action(cls, v):
        return normalize_to_uppercase(v, VALID_TOGGLE_ACTIONS)


class CatalogToggleLogResponse(BaseResponseSchema):
    id: UUID
    action: str
    trigger_type: str
    affected_products: int
    affected_categories: int
    notes: Optional[str] = None
    created_at: datetime
