"""
hodos/models/church.py

Churches (tenants).
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Church(BaseModel):
    """A church as a billing/access-scope unit. The slug never changes."""
    model_config = ConfigDict(frozen=True)

    id: str
    slug: str
    name: str
    cnpj: Optional[str] = None
    cpf: Optional[str] = None
    address: Optional[str] = None
    responsible_name: Optional[str] = None
    responsible_email: Optional[str] = None
    responsible_phone: Optional[str] = None
    is_active: bool = True
    subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
