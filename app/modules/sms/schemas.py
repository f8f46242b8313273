from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class SmsFilters(BaseModel):
    is_parsed: Optional[bool] = None
    source: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


class SmsCreate(BaseModel):
    sender: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    timestamp: datetime
    source: Optional[str] = None
    institution_id: Optional[str] = None


class SmsParseUpdate(BaseModel):
    is_parsed: bool = True
    parsed_amount: Optional[float] = None
    parsed_currency: Optional[str] = Field(None, pattern="^[A-Za-z]{3}$")
    parsed_transaction_id: Optional[str] = None
    parsed_counterparty: Optional[str] = None


class SmsLinkRequest(BaseModel):
    transaction_id: str


class SmsResponse(BaseModel):
    id: str
    institution_id: Optional[str] = None
    sender: Optional[str] = None
    body: Optional[str] = None
    source: Optional[str] = None
    timestamp: Optional[datetime] = None
    is_parsed: bool = False
    parsed_amount: Optional[float] = None
    parsed_currency: Optional[str] = None
    parsed_transaction_id: Optional[str] = None
    parsed_counterparty: Optional[str] = None
    linked_transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SmsListResponse(BaseModel):
    items: List[SmsResponse]
    total: Optional[int] = None
