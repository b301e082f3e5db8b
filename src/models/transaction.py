"""
Transaction model as observed by recurring pattern detection.

Transactions are owned by the ingestion pipeline; this view is read-only and
carries only the fields pattern detection needs.
"""
import logging
import uuid
from datetime import datetime, timezone, date as calendar_date
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing_extensions import Self

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class Transaction(BaseModel):
    """
    An immutable bank transaction.

    `amount` is signed: negative values are outflows. `date` is the transaction
    date in milliseconds since epoch; when missing or malformed it falls back
    to `created_at`.
    """
    user_id: str = Field(alias="userId")
    transaction_id: uuid.UUID = Field(default_factory=uuid.uuid4, alias="transactionId")
    merchant_name: Optional[str] = Field(default=None, alias="merchantName")
    amount: Decimal
    date: Optional[int] = None
    category_type: Optional[str] = Field(default=None, alias="categoryType")
    category: Optional[str] = None
    created_at: int = Field(default_factory=_now_ms, alias="createdAt")

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        json_encoders={
            Decimal: str,
            uuid.UUID: str
        }
    )

    @field_validator('merchant_name', mode='before')
    @classmethod
    def coerce_merchant_name(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        logger.warning(f"Ignoring non-string merchant name: {v!r}")
        return None

    @field_validator('date', mode='before')
    @classmethod
    def coerce_date(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        if isinstance(v, calendar_date):
            return int(datetime(v.year, v.month, v.day, tzinfo=timezone.utc).timestamp() * 1000)
        try:
            value = int(v)
        except (TypeError, ValueError, InvalidOperation):
            logger.warning(f"Ignoring malformed transaction date: {v!r}")
            return None
        return value if value >= 0 else None

    @model_validator(mode='after')
    def default_date_to_created_at(self) -> Self:
        if self.date is None:
            object.__setattr__(self, 'date', self.created_at)
        return self

    @property
    def transaction_date(self) -> calendar_date:
        """Calendar date (UTC) of the transaction."""
        return datetime.fromtimestamp((self.date or self.created_at) / 1000, tz=timezone.utc).date()

    @classmethod
    def from_dynamodb_item(cls, data: Dict[str, Any]) -> Self:
        """Create from DynamoDB item data."""
        converted_data = data.copy()

        # Older items carry the merchant label in the description
        if 'merchantName' not in converted_data and 'description' in converted_data:
            converted_data['merchantName'] = converted_data['description']

        if isinstance(converted_data.get('createdAt'), Decimal):
            converted_data['createdAt'] = int(converted_data['createdAt'])

        if isinstance(converted_data.get('transactionId'), str):
            try:
                converted_data['transactionId'] = uuid.UUID(converted_data['transactionId'])
            except ValueError:
                pass

        known = {'userId', 'transactionId', 'merchantName', 'amount', 'date',
                 'categoryType', 'category', 'createdAt'}
        return cls.model_validate({k: v for k, v in converted_data.items() if k in known})
