import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional, List

from fastapi import APIRouter, Depends, FastAPI, Path, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from auth import AdminGate, AuthService, Identity
from config import Settings, configure_logging, load_settings
from dashboard import DashboardController
from database import init_models, make_engine, make_session_factory
from errors import AuthError, FestivalError, Forbidden, ValidationError
from schemas import (
    EXPENSE_CATEGORIES,
    ContributionIn,
    ContributionOut,
    DashboardOut,
    ExpenseIn,
    ExpenseOut,
    IdentityOut,
    ProgramIn,
    ProgramOut,
    ProgramPatch,
    SummaryOut,
    Token,
    UserOut,
    UserRegister,
)
from store import Stores
from summary import OllamaSummaryGenerator, SummaryComposer, SummaryGenerator, whatsapp_share_url

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

router = APIRouter()

# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------
def get_stores(request: Request) -> Stores:
    return request.app.state.stores

def get_auth(request: Request) -> AuthService:
    return request.app.state.auth

def get_gate(request: Request) -> AdminGate:
    return request.app.state.gate

def get_controller(request: Request) -> DashboardController:
    state = request.app.state
    return DashboardController(state.stores, state.gate, state.composer)

async def get_optional_identity(
    token: Optional[str] = Depends(oauth2_scheme), auth: AuthService = Depends(get_auth)
) -> Optional[Identity]:
    if not token:
        return None
    return await auth.identity_from_token(token)

async def get_current_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise AuthError("Not authenticated")
    return identity

async def require_admin(
    identity: Identity = Depends(get_current_identity), gate: AdminGate = Depends(get_gate)
) -> Identity:
    if not gate.is_admin(identity):
        raise Forbidden("Only admins can add or edit records")
    return identity

Year = Annotated[int, Path(ge=1, description="Festival year")]

# ----------------------------------------------------------------------------
# Health & test
# ----------------------------------------------------------------------------
@router.get("/")
async def read_root():
    return {"message": "Utsav Hisab backend is running"}

@router.get("/test")
async def test_database(request: Request):
    settings: Settings = request.app.state.settings
    info = {
        "backend": "✅ Running",
        "using_sqlite_fallback": settings.using_sqlite,
        "admins_configured": len(settings.admin_uids),
        "connection_status": "Not Connected",
        "database": "❌ Not Available",
    }
    try:
        async with request.app.state.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            info["database"] = "✅ Available"
            info["connection_status"] = "Connected"
    except (SQLAlchemyError, OSError) as e:
        info["database"] = f"❌ Error: {str(e)[:160]}"
    return info

@router.get("/expense-categories", response_model=List[str])
async def expense_categories():
    return list(EXPENSE_CATEGORIES)

# ----------------------------------------------------------------------------
# Auth routes
# ----------------------------------------------------------------------------
@router.post("/auth/register", response_model=UserOut)
async def register(payload: UserRegister, auth: AuthService = Depends(get_auth)):
    return await auth.register(payload)

@router.post("/auth/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), auth: AuthService = Depends(get_auth)):
    identity = await auth.authenticate(form_data.username, form_data.password)
    return {"access_token": auth.issue_token(identity), "token_type": "bearer"}

@router.get("/auth/me", response_model=IdentityOut)
async def me(identity: Identity = Depends(get_current_identity), gate: AdminGate = Depends(get_gate)):
    return IdentityOut(uid=identity.uid, name=identity.name, email=identity.email, is_admin=gate.is_admin(identity))

# ----------------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------------
@router.get("/years/{year}/contributions", response_model=List[ContributionOut])
async def list_contributions(year: Year, stores: Stores = Depends(get_stores)):
    return await stores.contributions.list(year)

@router.post("/years/{year}/contributions", response_model=ContributionOut, status_code=201)
async def create_contribution(
    payload: ContributionIn,
    year: Year,
    stores: Stores = Depends(get_stores),
    admin: Identity = Depends(require_admin),
):
    return await stores.contributions.create(year, payload)

@router.get("/years/{year}/expenses", response_model=List[ExpenseOut])
async def list_expenses(year: Year, stores: Stores = Depends(get_stores)):
    return await stores.expenses.list(year)

@router.post("/years/{year}/expenses", response_model=ExpenseOut, status_code=201)
async def create_expense(
    payload: ExpenseIn,
    year: Year,
    stores: Stores = Depends(get_stores),
    admin: Identity = Depends(require_admin),
):
    return await stores.expenses.create(year, payload)

@router.get("/years/{year}/programs", response_model=List[ProgramOut])
async def list_programs(year: Year, stores: Stores = Depends(get_stores)):
    return await stores.programs.list(year)

@router.post("/years/{year}/programs", response_model=ProgramOut, status_code=201)
async def create_program(
    payload: ProgramIn,
    year: Year,
    stores: Stores = Depends(get_stores),
    admin: Identity = Depends(require_admin),
):
    return await stores.programs.create(year, payload)

@router.patch("/programs/{program_id}", response_model=ProgramOut)
async def update_program(
    program_id: int,
    payload: ProgramPatch,
    stores: Stores = Depends(get_stores),
    admin: Identity = Depends(require_admin),
):
    return await stores.programs.update(program_id, payload)

# ----------------------------------------------------------------------------
# Dashboard & summary
# ----------------------------------------------------------------------------
@router.get("/years/{year}/dashboard", response_model=DashboardOut)
async def dashboard(
    year: Year,
    controller: DashboardController = Depends(get_controller),
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    controller.on_identity_changed(identity)
    await controller.select_year(year)
    return DashboardOut(
        year=year,
        contributions=controller.contributions,
        expenses=controller.expenses,
        programs=controller.programs,
        totals=controller.totals,
        is_admin=controller.is_admin,
    )

@router.post("/years/{year}/summary", response_model=SummaryOut)
async def summary(year: Year, controller: DashboardController = Depends(get_controller)):
    await controller.select_year(year)
    text_out = await controller.compose_summary()
    return SummaryOut(year=year, summary=text_out, share_url=whatsapp_share_url(text_out))

# ----------------------------------------------------------------------------
# App setup
# ----------------------------------------------------------------------------
async def festival_error_handler(request: Request, exc: FestivalError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
    error = ValidationError("Invalid request", details=details)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(settings: Optional[Settings] = None, generator: Optional[SummaryGenerator] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await init_models(engine)
        except (SQLAlchemyError, OSError) as exc:
            # keep serving; requests will report the store as unavailable
            logger.error("Could not create tables on %s: %s", settings.database_url.split("://")[0], exc)
        yield
        await engine.dispose()

    app = FastAPI(title="Utsav Hisab API", lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = engine
    app.state.stores = Stores.from_session_factory(session_factory)
    app.state.gate = AdminGate(settings.admin_uids)
    app.state.auth = AuthService(session_factory, settings)
    app.state.composer = SummaryComposer(
        generator or OllamaSummaryGenerator(settings.ollama_url, settings.ollama_model, settings.summary_timeout)
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(FestivalError, festival_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
