from altcha_gate.schemas.challenge import (
    PuzzleDescriptor,
    SolutionPayload,
    VerifyRequest,
    VerifyResponse,
)

__all__ = [
    "PuzzleDescriptor",
    "SolutionPayload",
    "VerifyRequest",
    "VerifyResponse",
]
