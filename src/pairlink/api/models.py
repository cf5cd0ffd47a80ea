"""Request and response models for the pairing API."""

from pydantic import BaseModel, ConfigDict, Field


class PairCodeRequest(BaseModel):
    """Body of a pair-code request."""

    model_config = ConfigDict(populate_by_name=True)

    phone_number: str | None = Field(default=None, alias="phoneNumber")


class PairCodeResponse(BaseModel):
    """Pairing code issued for a new session."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    code: str
    session_id: str = Field(alias="sessionId")


class StatusResponse(BaseModel):
    """Current progress of a session."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    qr: str | None = None
    qr_available: bool = Field(default=False, alias="qrAvailable")


class QrResponse(BaseModel):
    """Latest scannable code of a session."""

    qr: str
