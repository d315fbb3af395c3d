"""Session-backed admin pages and election/question/option routes.

Form posts answer with a 302 redirect and a flash message, both on success
and on failure. PUT and DELETE calls, and GETs from clients that do not ask
for HTML, answer with JSON.
"""
import logging
from pathlib import Path
from typing import Type

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .accounts import AccountService
from .config import settings
from .errors import (
    AuthenticationError,
    ElectionAdminError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from .lifecycle import ElectionManager
from .models import RequestContext
from .schemas import (
    ElectionForm,
    LoginRequest,
    OptionCreateForm,
    OptionUpdateForm,
    QuestionForm,
    SignupRequest,
)
from .security import (
    flash,
    get_csrf_token,
    limiter,
    pop_flashed_messages,
    session_owner_id,
    verify_csrf,
)

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

router = APIRouter(tags=["Admin"])


# ═══════════════════════════════════════════════════════════════════
# REQUEST HELPERS
# ═══════════════════════════════════════════════════════════════════

def get_manager(request: Request) -> ElectionManager:
    return request.app.state.manager


def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts


async def get_context(request: Request) -> RequestContext:
    """Build the request context from the session or refuse the request."""
    owner_id = session_owner_id(request)
    if owner_id is None:
        raise AuthenticationError("Login required")
    return RequestContext(owner_id=owner_id)


async def read_payload(request: Request) -> dict:
    """Read a form-encoded or JSON body into a plain dict."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.body()
        if not body:
            return {}
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data
    form = await request.form()
    return {key: value for key, value in form.items()}


def parse_form(schema: Type[BaseModel], payload: dict):
    try:
        return schema(**payload)
    except PydanticValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise ValidationError("Invalid form data", fields=fields)


def wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=302)


def render(request: Request, template: str, **context):
    context.update(
        csrf_token=get_csrf_token(request),
        messages=pop_flashed_messages(request),
        logged_in=session_owner_id(request) is not None,
        service_name=settings.SERVICE_NAME,
    )
    return templates.TemplateResponse(request, template, context)


def form_failure(request: Request, error: ElectionAdminError, target: str) -> RedirectResponse:
    """Flash the error and send the browser back where it came from."""
    flash(request, error.message, "error")
    if isinstance(error, (NotFoundError, OwnershipError)):
        target = "/home"
    return redirect(target)


# ═══════════════════════════════════════════════════════════════════
# ACCOUNT ROUTES
# ═══════════════════════════════════════════════════════════════════

@router.get("/")
async def index():
    return redirect("/home")


@router.get("/signup")
async def signup_page(request: Request):
    return render(request, "signup.html")


@router.get("/login")
async def login_page(request: Request):
    return render(request, "login.html")


@router.post("/session")
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def create_session(request: Request, accounts: AccountService = Depends(get_accounts)):
    """Log an admin in."""
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(LoginRequest, payload)
        admin = await accounts.authenticate(form.email, form.password)
    except ElectionAdminError as e:
        logger.warning(f"Login failed: {e.message}")
        return form_failure(request, e, "/login")

    request.session["admin_id"] = admin.id
    return redirect("/home")


@router.post("/users")
async def create_user(request: Request, accounts: AccountService = Depends(get_accounts)):
    """Create an admin account and log it in."""
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(SignupRequest, payload)
        admin = await accounts.signup(form.name, form.email, form.password)
    except ElectionAdminError as e:
        return form_failure(request, e, "/signup")

    request.session["admin_id"] = admin.id
    flash(request, f"Welcome, {admin.name}", "success")
    return redirect("/home")


@router.get("/signout")
async def signout(request: Request):
    request.session.clear()
    return redirect("/login")


@router.get("/home")
async def home(
    request: Request,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    elections = await manager.list_elections(ctx)
    return render(request, "home.html", elections=elections)


# ═══════════════════════════════════════════════════════════════════
# ELECTION ROUTES
# ═══════════════════════════════════════════════════════════════════

@router.get("/elections/new")
async def new_election_page(request: Request, ctx: RequestContext = Depends(get_context)):
    return render(request, "election_new.html")


@router.get("/election")
async def list_elections(
    request: Request,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    elections = await manager.list_elections(ctx)
    if wants_html(request):
        return render(request, "home.html", elections=elections)
    return {"elections": [e.to_dict() for e in elections]}


@router.post("/election")
async def create_election(
    request: Request,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(ElectionForm, payload)
        election = await manager.create(ctx, form.name)
    except ElectionAdminError as e:
        return form_failure(request, e, "/elections/new")

    flash(request, f"Election '{election.name}' created", "success")
    return redirect(f"/election/{election.id}")


@router.get("/election/{election_id}")
async def election_detail(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    election = await manager.get(ctx, election_id)
    if wants_html(request):
        return render(request, "election.html", election=election)
    data = election.to_dict(include_questions=True)
    data["_csrf"] = get_csrf_token(request)
    return data


@router.post("/election/{election_id}")
async def rename_election(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(ElectionForm, payload)
        await manager.rename(ctx, election_id, form.name)
    except ElectionAdminError as e:
        return form_failure(request, e, f"/election/{election_id}")

    flash(request, "Election renamed", "success")
    return redirect(f"/election/{election_id}")


@router.delete("/election/{election_id}")
async def delete_election(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    verify_csrf(request, await read_payload(request))
    await manager.delete(ctx, election_id)
    return {"success": True, "message": f"Election {election_id} deleted"}


@router.get("/election/{election_id}/launch")
async def launch_election_link(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    """Launch from a link; the token may come in the body, query string or header."""
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        await manager.launch(ctx, election_id)
    except ElectionAdminError as e:
        return form_failure(request, e, f"/election/{election_id}")

    flash(request, "Election launched", "success")
    return redirect(f"/election/{election_id}")


@router.put("/election/{election_id}/launch")
async def launch_election(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    verify_csrf(request, await read_payload(request))
    election = await manager.launch(ctx, election_id)
    return {"success": True, "election": election.to_dict()}


@router.put("/election/{election_id}/end")
async def end_election(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    verify_csrf(request, await read_payload(request))
    election = await manager.end(ctx, election_id)
    return {"success": True, "election": election.to_dict()}


@router.get("/election/{election_id}/results")
async def election_results(
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    return await manager.results(ctx, election_id)


# ═══════════════════════════════════════════════════════════════════
# QUESTION ROUTES
# ═══════════════════════════════════════════════════════════════════

@router.post("/election/{election_id}/questions/add")
async def add_question(
    request: Request,
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(QuestionForm, payload)
        await manager.add_question(ctx, election_id, form.title, form.description)
    except ElectionAdminError as e:
        return form_failure(request, e, f"/election/{election_id}")

    flash(request, "Question added", "success")
    return redirect(f"/election/{election_id}")


@router.get("/election/{election_id}/questions")
async def list_questions(
    election_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    questions = await manager.list_questions(ctx, election_id)
    return [q.to_dict() for q in questions]


@router.get("/election/{election_id}/question/{question_id}")
async def question_detail(
    request: Request,
    election_id: int,
    question_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    election = await manager.get(ctx, election_id)
    question = await manager.get_question(ctx, election_id, question_id)
    if wants_html(request):
        return render(request, "question.html", election=election, question=question)
    return question.to_dict()


@router.get("/election/{election_id}/question/{question_id}/edit")
async def edit_question_page(
    request: Request,
    election_id: int,
    question_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    election = await manager.get(ctx, election_id)
    question = await manager.get_question(ctx, election_id, question_id)
    return render(request, "question_edit.html", election=election, question=question)


@router.post("/election/{election_id}/question/{question_id}/update")
async def update_question(
    request: Request,
    election_id: int,
    question_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(QuestionForm, payload)
        await manager.edit_question(ctx, election_id, question_id, form.title, form.description)
    except ElectionAdminError as e:
        return form_failure(request, e, f"/election/{election_id}/question/{question_id}/edit")

    flash(request, "Question updated", "success")
    return redirect(f"/election/{election_id}")


@router.delete("/election/{election_id}/question/{question_id}")
async def delete_question(
    request: Request,
    election_id: int,
    question_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    verify_csrf(request, await read_payload(request))
    await manager.delete_question(ctx, election_id, question_id)
    return {"success": True, "message": f"Question {question_id} deleted"}


# ═══════════════════════════════════════════════════════════════════
# OPTION ROUTES
# ═══════════════════════════════════════════════════════════════════

@router.post("/election/{election_id}/question/{question_id}/options/add")
async def add_option(
    request: Request,
    election_id: int,
    question_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    question_url = f"/election/{election_id}/question/{question_id}"
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(OptionCreateForm, payload)
        await manager.add_option(ctx, election_id, question_id, form.option)
    except ElectionAdminError as e:
        return form_failure(request, e, question_url)

    flash(request, "Option added", "success")
    return redirect(question_url)


@router.get("/election/{election_id}/question/{question_id}/options")
async def list_options(
    election_id: int,
    question_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    options = await manager.list_options(ctx, election_id, question_id)
    return [o.to_dict() for o in options]


@router.get("/election/{election_id}/question/{question_id}/option/{option_id}/edit")
async def edit_option_page(
    request: Request,
    election_id: int,
    question_id: int,
    option_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    election = await manager.get(ctx, election_id)
    question = await manager.get_question(ctx, election_id, question_id)
    option = await manager.get_option(ctx, election_id, question_id, option_id)
    return render(
        request,
        "option_edit.html",
        election=election,
        question=question,
        option=option
    )


@router.post("/election/{election_id}/question/{question_id}/option/{option_id}/update")
async def update_option(
    request: Request,
    election_id: int,
    question_id: int,
    option_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    question_url = f"/election/{election_id}/question/{question_id}"
    payload = await read_payload(request)
    try:
        verify_csrf(request, payload)
        form = parse_form(OptionUpdateForm, payload)
        await manager.edit_option(ctx, election_id, question_id, option_id, form.value)
    except ElectionAdminError as e:
        return form_failure(request, e, f"{question_url}/option/{option_id}/edit")

    flash(request, "Option updated", "success")
    return redirect(question_url)


@router.delete("/election/{election_id}/question/{question_id}/option/{option_id}")
async def delete_option(
    request: Request,
    election_id: int,
    question_id: int,
    option_id: int,
    ctx: RequestContext = Depends(get_context),
    manager: ElectionManager = Depends(get_manager)
):
    verify_csrf(request, await read_payload(request))
    await manager.delete_option(ctx, election_id, question_id, option_id)
    return {"success": True, "message": f"Option {option_id} deleted"}
