"""Signup endpoints: signup, signup completion, email availability."""

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.auth.rate_limit import check_rate_limit, get_client_ip
from provisioning.database import get_db
from provisioning.schemas.signup import (
    EmailAddressAvailableResponse,
    SigninResponse,
    SignupPendingRequest,
    SignupRequest,
)
from provisioning.services import signup as signup_service
from provisioning.services.email_validation import validate_email_for_account
from provisioning.services.policy import InstancePolicy, get_instance_policy

router = APIRouter(tags=["signup"])


@router.post(
    "/signup",
    status_code=200,
    response_model=None,
    dependencies=[Depends(check_rate_limit)],
    responses={204: {"description": "Confirmation email sent"}},
)
async def signup(
    data: SignupRequest,
    db: AsyncSession = Depends(get_db),
    policy: InstancePolicy = Depends(get_instance_policy),
) -> Response:
    """Create an account, or start email confirmation (204, no body)."""
    account = await signup_service.signup(db, data, policy)
    if account is None:
        return Response(status_code=204)
    return JSONResponse(content=account.model_dump(mode="json", by_alias=True))


@router.post(
    "/signup-pending",
    response_model=SigninResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def signup_pending(
    data: SignupPendingRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    policy: InstancePolicy = Depends(get_instance_policy),
) -> SigninResponse:
    """Redeem an emailed confirmation code and sign in."""
    return await signup_service.complete_pending(
        db, data.code, policy, ip=get_client_ip(request)
    )


@router.get(
    "/email-address/available",
    response_model=EmailAddressAvailableResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def email_address_available(
    email_address: str = Query(..., alias="emailAddress", max_length=320),
    db: AsyncSession = Depends(get_db),
    policy: InstancePolicy = Depends(get_instance_policy),
) -> EmailAddressAvailableResponse:
    """Check whether an address can be used for a new account."""
    availability = await validate_email_for_account(db, email_address, policy)
    return EmailAddressAvailableResponse(
        available=availability.available, reason=availability.reason
    )
