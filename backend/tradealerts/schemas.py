from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from tradealerts.services.alert_rules import AlertCondition, RepeatPolicy

_SYMBOL_PATTERN = r"^[A-Za-z0-9.\-]{1,12}$"


class AlertCreateRequest(BaseModel):
    symbol: str = Field(min_length=1, max_length=12, pattern=_SYMBOL_PATTERN)
    price: float = Field(gt=0)
    condition: AlertCondition
    message: Optional[str] = Field(default=None, max_length=280)
    repeat: RepeatPolicy = RepeatPolicy.UNLIMITED
    is_active: bool = True


class AlertPatchRequest(BaseModel):
    symbol: Optional[str] = Field(default=None, min_length=1, max_length=12, pattern=_SYMBOL_PATTERN)
    price: Optional[float] = Field(default=None, gt=0)
    condition: Optional[AlertCondition] = None
    message: Optional[str] = Field(default=None, max_length=280)
    repeat: Optional[RepeatPolicy] = None
    is_active: Optional[bool] = None


class DeviceRegisterRequest(BaseModel):
    expo_push_token: str = Field(min_length=1, max_length=255)
    platform: Optional[str] = Field(default=None, max_length=20)
    app_version: Optional[str] = Field(default=None, max_length=40)


class StrategyGroupCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class EvaluateResponse(BaseModel):
    ok: bool
    symbols: int
    fired: int


class NotifyResponse(BaseModel):
    ok: bool
    processed: int
    sent: int


class PublishResponse(BaseModel):
    ok: bool
    recipients: int


class FunctionError(BaseModel):
    ok: bool = False
    error: str
