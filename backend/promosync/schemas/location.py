from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Location(BaseModel):
    """A retail location and the credential used to read its POS data."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str = ""
    external_store_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "external_store_id", "DutchieStoreID", "dutchieStoreID", "dutchieStoreId", "externalStoreId"
        ),
    )
    api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("api_key", "dutchieApiKey", "apiKey")
    )
    address: Optional[str] = Field(default=None, validation_alias=AliasChoices("address", "location"))
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))

    @field_validator("id", "external_store_id", "api_key", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("is_active", mode="before")
    @classmethod
    def _none_is_active(cls, value: Any) -> Any:
        return True if value is None else value

    @property
    def key(self) -> str:
        """Identifier used to scope sink rows and cache keys."""

        return self.external_store_id or self.id or self.name

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.api_key:
            missing.append("api_key")
        if not self.external_store_id:
            missing.append("external_store_id")
        return missing
