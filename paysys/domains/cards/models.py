from typing import Optional

from pydantic import BaseModel, Field, field_validator

HOLDER_NAME_PATTERN = r"^[A-Za-z\s]+$"


class SaveCardRequest(BaseModel):
    card_number: str = Field(pattern=r"^\d{13,19}$")
    card_holder_name: str = Field(min_length=2, max_length=100, pattern=HOLDER_NAME_PATTERN)
    expiration_month: str = Field(pattern=r"^(0[1-9]|1[0-2])$")
    expiration_year: str = Field(pattern=r"^\d{4}$")
    cvv: str = Field(pattern=r"^\d{3,4}$")
    is_default: bool = False

    @field_validator("card_holder_name")
    @classmethod
    def normalize_holder_name(cls, value: str) -> str:
        return " ".join(value.split()).upper()

    def card_fields(self) -> dict:
        return self.model_dump(exclude={"is_default"})


class UpdateCardRequest(BaseModel):
    card_holder_name: Optional[str] = Field(default=None, min_length=2, max_length=100, pattern=HOLDER_NAME_PATTERN)
    is_default: Optional[bool] = None

    @field_validator("card_holder_name")
    @classmethod
    def normalize_holder_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return " ".join(value.split()).upper()
