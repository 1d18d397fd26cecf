# gamemarket/models/base.py
from datetime import datetime
from typing import Any, Mapping, Optional
from pydantic import BaseModel, ConfigDict

class RecordModel(BaseModel):
    """Model read back from a database row"""

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], **extra):
        # asyncpg Records are mappings but not dicts
        return cls.model_validate({**dict(record), **extra})

class TimeStampedModel(RecordModel):
    """Row with created/updated timestamps"""
    created_at: datetime
    updated_at: Optional[datetime] = None
