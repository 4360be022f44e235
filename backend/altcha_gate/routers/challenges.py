import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from altcha_gate.config import settings
from altcha_gate.middleware.client_identity import ClientIdentity, resolve_client
from altcha_gate.schemas.challenge import PuzzleDescriptor, VerifyRequest, VerifyResponse
from altcha_gate.services.pow_service import (
    MalformedSolutionError,
    decode_solution,
    issue_challenge,
    verify_solution,
)
from altcha_gate.services.protocol import ProtocolContext, get_protocol
from altcha_gate.services.session_token_service import issue_token, validate_token

router = APIRouter()
logger = structlog.get_logger()

VERIFICATION_FAILED = "Verification failed"


@router.get("/challenge", response_model=PuzzleDescriptor)
async def create_challenge(ctx: ProtocolContext = Depends(get_protocol)):
    """
    Issue a signed proof-of-work challenge for the ALTCHA widget.

    Nothing is stored; the signature is what makes the challenge ours.
    """
    challenge = issue_challenge(ctx)

    logger.info("challenge_created", max_number=challenge.max_number, salt=challenge.salt)

    return challenge


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    response: Response,
    verify_data: VerifyRequest,
    client: ClientIdentity = Depends(resolve_client),
    ctx: ProtocolContext = Depends(get_protocol),
):
    """
    Check a solved challenge and hand out the session cookie.

    All failures look the same to the client.
    """
    try:
        payload = decode_solution(verify_data.altcha)
    except MalformedSolutionError as e:
        logger.warning("solution_malformed", error=str(e))
        raise HTTPException(status_code=400, detail=VERIFICATION_FAILED)

    if not verify_solution(ctx, payload):
        raise HTTPException(status_code=400, detail=VERIFICATION_FAILED)

    try:
        token = issue_token(ctx, client.client_ip, client.domain)
    except ValueError as e:
        # client_ip/domain came from headers that cannot be bound into a token
        logger.warning("token_not_issued", error=str(e))
        raise HTTPException(status_code=400, detail=VERIFICATION_FAILED)

    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        max_age=ctx.session_ttl_seconds,
        path="/",
        domain=client.domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )

    logger.info("verification_succeeded")

    return VerifyResponse()


@router.get("/validate", status_code=200)
async def validate(
    request: Request,
    client: ClientIdentity = Depends(resolve_client),
    ctx: ProtocolContext = Depends(get_protocol),
):
    """
    Check the session cookie for the current client and domain.

    Meant for a reverse proxy auth subrequest: 200 lets the request through,
    401 sends the client to the challenge page.
    """
    token = request.cookies.get(settings.cookie_name)
    if not token:
        logger.info("session_cookie_missing")
        raise HTTPException(status_code=401, detail="Unauthorized")

    if not validate_token(ctx, token, client.client_ip, client.domain):
        raise HTTPException(status_code=401, detail="Unauthorized")

    return {"status": "valid"}
