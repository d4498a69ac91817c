"""
Shared base for domain models
"""
import re
import unicodedata
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from pydantic import BaseModel, ConfigDict

CENT = Decimal("0.01")


def round_money(value) -> Decimal:
    """Round to 2 decimals, half up"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


class DomainModel(BaseModel):
    """Pydantic model that can be built from DB rows and serialized for the API"""

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> dict:
        """Convert to dictionary with Decimal to float conversion"""
        return _plain(self.model_dump())


def slugify(value: str) -> str:
    """'Blue Shirt (XL)' -> 'blue-shirt-xl'"""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or "item"
