from pydantic import BaseModel, ConfigDict, Field

from potoken_service.errors import ImplausibleToken

# Tokens observed from a trusted session are well above this length
MIN_TOKEN_LENGTH = 160


class TokenRecord(BaseModel):
    """
    The latest credential pair captured from the player request.

    Records are frozen: a newer extraction replaces the stored instance instead
    of mutating it. Serialized field order is updated, potoken, visitor_data.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    captured_at: int = Field(alias="updated")
    credential_token: str = Field(alias="potoken", min_length=1)
    session_id: str = Field(alias="visitor_data", min_length=1)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def is_plausible(self, min_length: int = MIN_TOKEN_LENGTH) -> bool:
        return len(self.credential_token) >= min_length

    def ensure_plausible(self, min_length: int = MIN_TOKEN_LENGTH) -> "TokenRecord":
        if not self.is_plausible(min_length):
            raise ImplausibleToken(
                f"token is {len(self.credential_token)} characters long, expected at least {min_length}"
            )
        return self
