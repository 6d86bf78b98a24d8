import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from broker.auth import schemas
from broker.auth.service import BrokerService
from broker.database.database import session_scope

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["broker"])


def get_db(request: Request):
    yield from session_scope(request.app.state.session_factory)


def get_service(request: Request, db: Session = Depends(get_db)) -> BrokerService:
    return BrokerService(request.app.state.ctx, db)


@router.get("/health")
async def health(request: Request):
    return {"status": "ok", "social_providers": request.app.state.ctx.social.configured()}


# ---------- login / consent / logout ----------
@router.post("/login", response_model=schemas.LoginResponse, response_model_exclude_none=True)
async def login(payload: schemas.LoginRequest, service: BrokerService = Depends(get_service)):
    return await service.login(payload)


@router.post("/consent", response_model=schemas.RedirectResponse)
async def consent(payload: schemas.ConsentRequest, service: BrokerService = Depends(get_service)):
    return await service.consent(payload)


@router.post("/consent/reject", response_model=schemas.RedirectResponse)
async def reject_consent(
    payload: schemas.ConsentRejectRequest, service: BrokerService = Depends(get_service)
):
    return await service.reject_consent(payload)


@router.post("/logout", response_model=schemas.RedirectResponse)
async def logout(payload: schemas.LogoutRequest, service: BrokerService = Depends(get_service)):
    return await service.logout(payload)


@router.post("/logout/reject", response_model=schemas.RedirectResponse)
async def reject_logout(payload: schemas.LogoutRequest, service: BrokerService = Depends(get_service)):
    return await service.reject_logout(payload)


# ---------- registration / password reset ----------
# sync routes run in the threadpool: they hash passwords
@router.post("/register", response_model=schemas.RegisterResponse, status_code=201)
def register(payload: schemas.RegisterRequest, service: BrokerService = Depends(get_service)):
    return service.register(payload)


@router.post("/password/reset-request", response_model=schemas.MessageResponse)
def request_password_reset(
    payload: schemas.PasswordResetRequest,
    background_tasks: BackgroundTasks,
    service: BrokerService = Depends(get_service),
):
    return service.request_password_reset(payload, background_tasks)


@router.post("/password/reset", response_model=schemas.MessageResponse)
def reset_password(
    payload: schemas.PasswordResetExecute, service: BrokerService = Depends(get_service)
):
    return service.reset_password(payload)


# ---------- 2FA ----------
@router.post("/2fa/setup", response_model=schemas.TotpSetupResponse)
def twofa_setup(payload: schemas.TotpSetupRequest, service: BrokerService = Depends(get_service)):
    return service.setup_2fa(payload)


@router.post("/2fa/verify", response_model=schemas.TotpVerifyResponse)
def twofa_verify(payload: schemas.TotpVerifyRequest, service: BrokerService = Depends(get_service)):
    return service.verify_2fa(payload)


@router.post("/2fa/disable", response_model=schemas.TotpDisableResponse)
def twofa_disable(
    payload: schemas.TotpDisableRequest, service: BrokerService = Depends(get_service)
):
    return service.disable_2fa(payload)


# ---------- social login ----------
@router.get("/oauth/{provider}", response_model=schemas.SocialAuthUrlResponse)
async def social_login(provider: str, login_challenge: str, service: BrokerService = Depends(get_service)):
    return service.social_authorization_url(provider, login_challenge)


@router.get("/oauth/{provider}/callback")
async def social_callback(
    provider: str, code: str, state: str, service: BrokerService = Depends(get_service)
):
    redirect_to = await service.social_callback(provider, code, state)
    # 303 so the browser follows with GET
    return RedirectResponse(url=redirect_to, status_code=303)
