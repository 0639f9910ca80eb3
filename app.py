from contextlib import asynccontextmanager
from pathlib import Path
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
import uvicorn

from config import load_settings
from database import Database, StoreUnavailable
from exam_session import ExamSession, format_duration
from exports import ResultsExporter
from logging_config import configure_logging
from markdown_renderer import renderer
from submission import InvalidSubmission, NoScoringData, SubmissionService
from testpacks import TestPackStore, is_safe_test_id

BASE_DIR = Path(__file__).resolve().parent

settings = load_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

MIME_TYPES = {
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
    '.m4a': 'audio/mp4',
    '.ogg': 'audio/ogg',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.webp': 'image/webp',
    '.svg': 'image/svg+xml',
    '.pdf': 'application/pdf',
}
ASSET_CACHE_CONTROL = 'public, max-age=31536000, immutable'


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool once for the process lifetime."""
    database = Database.from_settings(settings)
    if database is None:
        logger.info("DB_HOST not set; scoring from local answer keys only")
    else:
        try:
            await run_in_threadpool(database.init_db)
            logger.info("Database ready at %s/%s", settings.db_host, settings.db_name)
        except StoreUnavailable:
            logger.warning("Database initialization failed; it will be retried per request", exc_info=True)
    app.state.database = database
    yield


app = FastAPI(title="IELTS Try Out", lifespan=lifespan)
app.state.database = None

app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")

templates = Jinja2Templates(directory=BASE_DIR / "templates")
templates.env.filters['markdown'] = renderer.render_fragment
templates.env.filters['duration'] = format_duration


# ===== DEPENDENCIES =====

def get_packs():
    return TestPackStore(BASE_DIR / settings.tests_root, settings.default_test_id)


def get_database(request: Request):
    return getattr(request.app.state, 'database', None)


def get_exporter():
    return ResultsExporter(BASE_DIR / settings.export_dir)


def get_service(packs=Depends(get_packs), exporter=Depends(get_exporter), database=Depends(get_database)):
    return SubmissionService(packs, exporter, database)


# ===== PAGES =====

@app.get("/", response_class=HTMLResponse)
async def home(request: Request, packs=Depends(get_packs)):
    """Landing page listing the available tests"""
    tests = []
    for test_id in packs.list_ids():
        definition = packs.get(test_id)
        if definition:
            tests.append(definition)
    return templates.TemplateResponse(request, "index.html", {"tests": tests})


@app.get("/test/{test_id}", response_class=HTMLResponse)
async def exam_page(request: Request, test_id: str, packs=Depends(get_packs)):
    """Test runner page"""
    definition = packs.get(test_id)
    if definition is None:
        return templates.TemplateResponse(request, "not_found.html", {}, status_code=404)

    ui = definition.ui_constraints
    session = ExamSession.from_definition(definition)
    return templates.TemplateResponse(request, "test.html", {
        "test": definition,
        "plan": session.plan(ui.audio_controls if ui else None),
    })


# ===== TEST API =====

@app.get("/tests")
async def list_tests(packs=Depends(get_packs)):
    """Known test ids"""
    return {"test_ids": packs.list_ids()}


@app.get("/tests/{test_id}")
async def get_test(test_id: str, packs=Depends(get_packs)):
    """Test definition without answers"""
    definition = packs.get(test_id)
    if definition is None:
        return JSONResponse({"error": "Test not found"}, status_code=404)
    return definition.to_dict()


@app.post("/tests/{test_id}/submit")
async def submit_test(test_id: str, request: Request, service=Depends(get_service)):
    """Score submitted answers"""
    if not is_safe_test_id(test_id):
        return JSONResponse({"error": "Invalid test id"}, status_code=400)

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)

    try:
        result = await run_in_threadpool(service.submit, test_id, payload)
    except InvalidSubmission as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except NoScoringData as e:
        return JSONResponse({"error": str(e)}, status_code=404)

    return JSONResponse(result.to_dict())


@app.get("/tests/{test_id}/assets/{asset_path:path}")
async def get_asset(test_id: str, asset_path: str, packs=Depends(get_packs)):
    """Audio and images of a test pack"""
    parts = [part for part in asset_path.split('/') if part]
    file_path = packs.asset_file(test_id, parts)
    if file_path is None:
        return PlainTextResponse("Not found", status_code=404)

    return FileResponse(
        file_path,
        media_type=MIME_TYPES.get(file_path.suffix.lower(), 'application/octet-stream'),
        headers={"Cache-Control": ASSET_CACHE_CONTROL},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "IELTS Try Out"}


if __name__ == "__main__":
    uvicorn.run("app:app", host=settings.app_host, port=settings.app_port, reload=True)
