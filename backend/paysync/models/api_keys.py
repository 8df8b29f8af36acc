"""
Pydantic ApiKeyRecord Model

A public API key as loaded from configuration. Immutable at runtime.
"""
from pydantic import BaseModel, Field


class ApiKeyRecord(BaseModel):
    """
    Configured public API key.

    Notes:
    - label identifies the caller in logs and scopes its nonces
    - key is what the caller sends in x-api-key; only its digest is compared
    - secret keys the HMAC request signature (defaults to the key itself)
    """
    label: str = Field(min_length=1)
    key: str = Field(min_length=1, repr=False)
    secret: str = Field(min_length=1, repr=False)
    key_digest: bytes = Field(repr=False)

    model_config = {
        "frozen": True,
    }
