"""
Registration, login and profile endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .auth import (
    BankingSystem, get_banking_system, get_current_user, get_current_identity,
    create_access_token
)
from .errors import to_http_exception
from .schemas import (
    RegisterRequest, TokenRequest, UpdateProfileRequest, UpdateSettingsRequest,
    customer_response
)
from ..errors import BankingError, NotAuthorized
from ..identity import CurrentIdentity


router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a customer; the account stays pending until an admin approves it"""
    try:
        customer = system.customer_manager.register_customer(
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            password=request.password,
            phone=request.phone,
            address=request.address
        )
    except BankingError as e:
        raise to_http_exception(e)

    return {
        "customer": customer_response(customer),
        "message": "Registration received, awaiting approval"
    }


@router.post("/token")
async def login(
    request: TokenRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Exchange email and password for a bearer token"""
    try:
        customer = system.customer_manager.authenticate(request.email, request.password)
    except NotAuthorized as e:
        raise HTTPException(status_code=401, detail=str(e))
    except BankingError as e:
        raise to_http_exception(e)

    token = create_access_token(customer.id, system.config)
    token["customer"] = customer_response(customer)
    return token


@router.get("/me")
async def me(
    user_id: str = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Profile of the authenticated user"""
    customer = system.customer_manager.get_customer(user_id)
    if not customer:
        raise HTTPException(status_code=401, detail="Unknown user")
    return customer_response(customer)


@router.put("/me")
async def update_me(
    request: UpdateProfileRequest,
    user_id: str = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Update the caller's contact details"""
    try:
        customer = system.customer_manager.update_profile(
            user_id,
            first_name=request.first_name,
            last_name=request.last_name,
            phone=request.phone,
            address=request.address
        )
    except BankingError as e:
        raise to_http_exception(e)
    return customer_response(customer)


@router.post("/refresh")
async def refresh(
    user_id: str = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Re-read the caller's role and approval status and issue a fresh token"""
    identity = system.identity_cache.refresh(user_id)
    if identity is None:
        raise HTTPException(status_code=401, detail="Unknown user")

    token = create_access_token(user_id, system.config)
    token["identity"] = {
        "id": identity.id,
        "role": identity.role.value,
        "approval_status": identity.approval_status.value,
        "can_transfer": identity.can_transfer
    }
    return token


@router.get("/settings")
async def get_settings(
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Notification preferences"""
    try:
        return system.customer_manager.get_settings(identity.id)
    except BankingError as e:
        raise to_http_exception(e)


@router.put("/settings")
async def update_settings(
    request: UpdateSettingsRequest,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    changes = {k: v for k, v in request.model_dump().items() if v is not None}
    try:
        return system.customer_manager.update_settings(identity.id, **changes)
    except BankingError as e:
        raise to_http_exception(e)
