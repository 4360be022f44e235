import base64
import binascii
import hashlib
import secrets

import structlog
from pydantic import ValidationError

from altcha_gate.schemas.challenge import ALGORITHM, PuzzleDescriptor, SolutionPayload
from altcha_gate.services.protocol import ProtocolContext

logger = structlog.get_logger()

SALT_BYTES = 16


class MalformedSolutionError(ValueError):
    """The submitted payload could not be decoded into a solution."""


def hash_work(salt: str, number: int) -> str:
    """SHA-256 hex digest of ``salt`` followed by the decimal ``number``."""
    return hashlib.sha256(f"{salt}{number}".encode()).hexdigest()


def _signed_part(challenge: str, salt: str) -> bytes:
    return f"{challenge}{salt}".encode("utf-8", "surrogatepass")


def issue_challenge(ctx: ProtocolContext) -> PuzzleDescriptor:
    """
    Generate a new proof-of-work challenge.

    The secret number is drawn with ``secrets`` and discarded; only its hash
    under a fresh salt leaves this function.
    """
    salt = secrets.token_hex(SALT_BYTES)
    secret_number = secrets.randbelow(ctx.max_number)
    challenge = hash_work(salt, secret_number)

    return PuzzleDescriptor(
        algorithm=ALGORITHM,
        challenge=challenge,
        max_number=ctx.max_number,
        salt=salt,
        signature=ctx.signer.sign(_signed_part(challenge, salt)),
    )


def decode_solution(altcha: str) -> SolutionPayload:
    """
    Decode the widget's base64 JSON payload.

    Raises MalformedSolutionError on bad base64, bad JSON or wrong field types.
    """
    try:
        raw = base64.b64decode(altcha, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedSolutionError("Invalid base64 payload") from e

    try:
        return SolutionPayload.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedSolutionError("Invalid solution payload") from e


def verify_solution(ctx: ProtocolContext, payload: SolutionPayload) -> bool:
    """
    Verify a proof-of-work solution.

    The descriptor signature is checked first, so a client cannot hand in a
    puzzle of its own making. The recomputed hash must then equal the
    challenge exactly; a shared prefix is not enough.
    """
    if not ctx.signer.verify(_signed_part(payload.challenge, payload.salt), payload.signature):
        logger.warning("challenge_signature_mismatch", challenge=payload.challenge)
        return False

    work_hash = hash_work(payload.salt, payload.number)
    matches = work_hash == payload.challenge

    logger.debug(
        "proof_of_work_checked",
        number=payload.number,
        work_hash=work_hash,
        challenge=payload.challenge,
        matches=matches,
    )

    if not matches:
        logger.warning("proof_of_work_failed", challenge=payload.challenge)
        return False

    return True


def solve_challenge(salt: str, challenge: str, max_number: int) -> int | None:
    """Brute-force a challenge the way the widget does. Returns None if unsolved."""
    for number in range(max_number + 1):
        if hash_work(salt, number) == challenge:
            return number
    return None
