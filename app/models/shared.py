"""
Shared Data Models

This module contains shared Pydantic base classes and annotated types
used across the promotion, payment and transaction schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from google.cloud.firestore import DocumentReference
from pydantic import BaseModel, ConfigDict, PlainSerializer

# Major-unit decimal amount; stored in Firestore as a decimal string so no
# float rounding ever touches money
MoneyAmount = Annotated[
    Decimal,
    PlainSerializer(lambda value: str(value), return_type=str, when_used="always"),
]


class FirestoreBaseModel(BaseModel):
    """Base model for all Firestore documents with common configuration."""

    model_config = ConfigDict(
        # Allow population by field name or alias
        populate_by_name=True,
        # Convert datetime objects to timestamps for Firestore
        json_encoders={
            datetime: lambda dt: dt,  # Firestore handles datetime conversion
            DocumentReference: lambda ref: ref.path,  # Convert refs to paths
        },
        # Validate assignments
        validate_assignment=True,
        # Use enum values instead of names
        use_enum_values=True,
    )

    def to_document(self) -> dict:
        """Serialize into a Firestore-ready dict (datetimes kept as datetimes)."""
        return self.model_dump(exclude={"id"})
