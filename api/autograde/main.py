"""
Main FastAPI Application
Controller layer that exposes the grading workspace to the browser front-end.
"""
import binascii
import os
from functools import lru_cache
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response

from autograde.config import get_runtime_output_dir, get_state_path
from autograde.errors import GraderError, NoImage, NoResult
from autograde.schemas import (
    AnswerRequest,
    CodeRequest,
    ConfigUpdate,
    GradingSummary,
    PreferencesUpdate,
    RenameCodeRequest,
    SheetImage,
)
from autograde.services.report import export_csv, export_filename, generate_docx
from autograde.services.state_store import StateStore
from autograde.services.workspace import Workspace

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@lru_cache(maxsize=1)
def get_workspace() -> Workspace:
    """Process-wide workspace, loaded from the state file on first use."""
    return Workspace(StateStore(get_state_path()))


def get_api_key_header(
    x_gemini_api_key: Optional[str] = Header(default=None, alias="X-Gemini-API-Key"),
) -> Optional[str]:
    return x_gemini_api_key


async def download_image(file_url: str) -> SheetImage:
    """Fetch an image from a URL, or decode it from a data URL."""
    if file_url.startswith("data:"):
        try:
            return SheetImage.from_data_url(file_url)
        except (ValueError, binascii.Error):
            raise HTTPException(status_code=422, detail="Invalid data URL")
    if not file_url.startswith("http"):
        raise HTTPException(status_code=422, detail="Invalid file_url")

    async with httpx.AsyncClient(timeout=60) as client:
        response = await client.get(file_url)
        response.raise_for_status()

    mime_type = response.headers.get("content-type", "").split(";")[0].strip()
    filename = file_url.rstrip("/").rsplit("/", 1)[-1] or "exam.png"
    return SheetImage(data=response.content, mime_type=mime_type, filename=filename)


async def resolve_image(file: Optional[UploadFile], file_url: Optional[str]) -> SheetImage:
    if file:
        data = await file.read()
        return SheetImage(
            data=data,
            mime_type=file.content_type or "application/octet-stream",
            filename=file.filename or "exam.png",
        )
    if file_url:
        return await download_image(file_url)
    raise HTTPException(status_code=422, detail="file or file_url is required")


def result_payload(workspace: Workspace, summary: Optional[GradingSummary]) -> dict:
    return {
        "summary": summary.model_dump() if summary else None,
        "can_undo": workspace.session.history.can_undo,
        "can_redo": workspace.session.history.can_redo,
        "error": workspace.session.error,
    }


# Initialize FastAPI App
app = FastAPI(
    title="AutoGrade API",
    description="AI-powered multiple-choice grading from photographed answer sheets",
    version="1.0.0"
)

# CORS Middleware (Allow all origins for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GraderError)
async def grader_error_handler(request: Request, exc: GraderError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


@app.get("/")
async def read_root():
    """Return API status info (UI handled by the front-end)."""
    return {"message": "AutoGrade API is running."}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "AutoGrade API"}


@app.get("/api/state")
async def read_state(workspace: Workspace = Depends(get_workspace)):
    return workspace.snapshot()


# --- Exam configuration ---

@app.put("/api/config")
async def update_config(update: ConfigUpdate, workspace: Workspace = Depends(get_workspace)):
    """Change question count, option count or max score; every key is resized."""
    config = workspace.update_config(**update.model_dump())
    return config.model_dump()


@app.put("/api/preferences")
async def update_preferences(update: PreferencesUpdate, workspace: Workspace = Depends(get_workspace)):
    if update.auto_grade is not None:
        workspace.set_auto_grade(update.auto_grade)
    workspace.set_display_preferences(update.show_overlay, update.show_overlay_details)
    return workspace.snapshot()


# --- Exam codes & answer keys ---

@app.post("/api/codes", status_code=201)
async def add_code(request: CodeRequest, workspace: Workspace = Depends(get_workspace)):
    workspace.add_code(request.code)
    return workspace.snapshot()


@app.put("/api/codes/{code}")
async def rename_code(code: str, request: RenameCodeRequest, workspace: Workspace = Depends(get_workspace)):
    workspace.rename_code(request.new_code, old_code=code)
    return workspace.snapshot()


@app.delete("/api/codes/{code}")
async def delete_code(code: str, workspace: Workspace = Depends(get_workspace)):
    workspace.delete_code(code)
    return workspace.snapshot()


@app.post("/api/codes/{code}/select")
async def select_active_code(code: str, workspace: Workspace = Depends(get_workspace)):
    """Edit this code's key; grading follows the same code."""
    workspace.select_active_code(code)
    return workspace.snapshot()


@app.post("/api/codes/{code}/grade-with")
async def select_student_code(code: str, workspace: Workspace = Depends(get_workspace)):
    """Grade uploaded sheets against this code without changing the edited key."""
    workspace.select_student_code(code)
    return workspace.snapshot()


@app.get("/api/codes/{code}/key")
async def read_key(code: str, workspace: Workspace = Depends(get_workspace)):
    key = workspace.keys.get_key(code)
    return {
        "code": code,
        "answers": {str(question): option for question, option in key.items()},
        "filled_count": workspace.keys.filled_count(code),
    }


@app.put("/api/codes/{code}/answers/{question}")
async def set_answer(
    code: str,
    question: int,
    request: AnswerRequest,
    workspace: Workspace = Depends(get_workspace),
):
    """Toggle one answer: sending the option already set clears it."""
    stored = workspace.set_answer(question, request.option, code=code)
    return {"code": code, "question": question, "option": stored}


@app.post("/api/codes/{code}/clear")
async def clear_key(code: str, workspace: Workspace = Depends(get_workspace)):
    workspace.clear_key(code)
    return await read_key(code, workspace)


@app.post("/api/codes/{code}/random-fill")
async def random_fill(code: str, workspace: Workspace = Depends(get_workspace)):
    workspace.random_fill(code)
    return await read_key(code, workspace)


@app.post("/api/key-scan")
async def scan_key(
    file: Optional[UploadFile] = File(None, description="Photo of the answer key"),
    file_url: Optional[str] = Form(default=None, description="URL or data URL of the photo"),
    api_key: Optional[str] = Depends(get_api_key_header),
    workspace: Workspace = Depends(get_workspace),
):
    """Detect the answer key from a photo and apply it to the active code."""
    image = await resolve_image(file, file_url)
    scanned = workspace.scan_answer_key(image, api_key)
    return {
        "found": len(scanned.answers),
        "total": scanned.question_count,
        "option_count": scanned.option_count,
        "state": workspace.snapshot(),
    }


# --- Sheet image & grading ---

@app.post("/api/image")
async def upload_image(
    file: Optional[UploadFile] = File(None, description="Photo of the student's sheet"),
    file_url: Optional[str] = Form(default=None, description="URL or data URL of the photo"),
    api_key: Optional[str] = Depends(get_api_key_header),
    workspace: Workspace = Depends(get_workspace),
):
    """Load a new sheet. Auto-grades when enabled."""
    image = await resolve_image(file, file_url)
    summary = workspace.upload_image(image, api_key)
    return result_payload(workspace, summary)


@app.get("/api/image")
async def read_image(workspace: Workspace = Depends(get_workspace)):
    image = workspace.session.image
    if image is None:
        raise NoImage("No image has been uploaded.")
    return Response(content=image.data, media_type=image.mime_type)


@app.delete("/api/image")
async def remove_image(workspace: Workspace = Depends(get_workspace)):
    workspace.remove_image()
    return workspace.snapshot()


@app.post("/api/grade")
async def grade(
    api_key: Optional[str] = Depends(get_api_key_header),
    workspace: Workspace = Depends(get_workspace),
):
    summary = workspace.grade(api_key)
    return result_payload(workspace, summary)


@app.post("/api/scan")
async def scan_only(
    api_key: Optional[str] = Depends(get_api_key_header),
    workspace: Workspace = Depends(get_workspace),
):
    """Read the sheet without grading it."""
    summary = workspace.scan_only(api_key)
    return result_payload(workspace, summary)


@app.get("/api/result")
async def read_result(workspace: Workspace = Depends(get_workspace)):
    return result_payload(workspace, workspace.session.summary)


@app.put("/api/result/answers/{question}")
async def update_answer(question: int, request: AnswerRequest, workspace: Workspace = Depends(get_workspace)):
    """Manually correct one detected answer."""
    summary = workspace.update_answer(question, request.option)
    return result_payload(workspace, summary)


@app.post("/api/result/undo")
async def undo(workspace: Workspace = Depends(get_workspace)):
    workspace.undo()
    return result_payload(workspace, workspace.session.summary)


@app.post("/api/result/redo")
async def redo(workspace: Workspace = Depends(get_workspace)):
    workspace.redo()
    return result_payload(workspace, workspace.session.summary)


def require_summary(workspace: Workspace) -> GradingSummary:
    summary = workspace.session.summary
    if summary is None:
        raise NoResult("There is no result to export.")
    return summary


@app.get("/api/result/export.csv")
async def export_result_csv(workspace: Workspace = Depends(get_workspace)):
    content = export_csv(require_summary(workspace))
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename("csv")}"'},
    )


@app.get("/api/result/export.docx")
async def export_result_docx(workspace: Workspace = Depends(get_workspace)):
    summary = require_summary(workspace)
    output_filename = export_filename("docx")
    runtime_output_dir = get_runtime_output_dir()
    runtime_output_dir.mkdir(parents=True, exist_ok=True)
    output_path = runtime_output_dir / output_filename
    generate_docx(summary, str(output_path))

    return FileResponse(
        str(output_path),
        filename=output_filename,
        media_type=DOCX_MEDIA_TYPE,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
