from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

ALGORITHM = "SHA-256"
# Widget numbers are unsigned 32-bit
MAX_SOLUTION_NUMBER = 2**32 - 1


class PuzzleDescriptor(BaseModel):
    """Challenge sent to the ALTCHA widget. The widget expects ``maxnumber``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    algorithm: str = ALGORITHM
    challenge: str
    max_number: int = Field(..., alias="maxnumber")
    salt: str
    signature: str


class SolutionPayload(BaseModel):
    """Decoded widget payload: the puzzle descriptor echoed back plus the found number."""

    model_config = ConfigDict(frozen=True)

    algorithm: Literal["SHA-256"]
    challenge: StrictStr = Field(..., max_length=128)
    number: StrictInt = Field(..., ge=0, le=MAX_SOLUTION_NUMBER)
    salt: StrictStr = Field(..., max_length=128)
    signature: StrictStr = Field(..., max_length=128)


class VerifyRequest(BaseModel):
    altcha: str = Field(..., max_length=8192, description="base64 of the JSON solution payload")


class VerifyResponse(BaseModel):
    status: str = "verified"
    message: str = "Verification successful"
