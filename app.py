from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import asdict
from typing import Iterator, Optional

from config import DEFAULT_ID_TYPE, settings
from idverify import __version__
from idverify.errors import InvalidInputError
from idverify.file_converter import to_single_jpeg
from idverify.models import DeclaredIdentity
from idverify.orchestrator import VerificationOrchestrator

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Identity Verification Service",
    description="ID document and face verification with OCR, biometrics and risk scoring",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_orchestrator: Optional[VerificationOrchestrator] = None


def get_orchestrator() -> VerificationOrchestrator:
    """Shared orchestrator holding the components and the live config"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = VerificationOrchestrator()
    _orchestrator.initialize()
    return _orchestrator


# ------------------------
# Upload handling
# ------------------------
@contextmanager
def upload_workspace(prefix: str) -> Iterator[str]:
    """
    Temp dir for converted uploads, removed afterwards.
    Maps pipeline errors onto HTTP errors.
    """
    temp_dir = tempfile.mkdtemp(prefix=prefix)
    try:
        yield temp_dir
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Request failed")
        raise HTTPException(
            status_code=500,
            detail=f"Verification failed: {str(e)}"
        )
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def save_upload(upload: UploadFile, temp_dir: str, name: str) -> str:
    """Save an upload and convert it to a single JPEG"""
    if not upload or not upload.filename:
        raise InvalidInputError(f"Missing upload: {name}")

    raw_path = os.path.join(temp_dir, f"raw_{name}_{os.path.basename(upload.filename)}")
    with open(raw_path, "wb") as buffer:
        shutil.copyfileobj(upload.file, buffer)

    return to_single_jpeg(raw_path, os.path.join(temp_dir, name))


# ------------------------
# Full verification
# ------------------------
@app.post("/verify")
def verify_identity(
    id_front: UploadFile = File(...),
    id_back: UploadFile = File(...),
    selfie: UploadFile = File(...),
    id_type: str = Form(DEFAULT_ID_TYPE),
    full_name: Optional[str] = Form(None),
    date_of_birth: Optional[str] = Form(None),
    id_number: Optional[str] = Form(None),
    shared: VerificationOrchestrator = Depends(get_orchestrator),
):
    """
    Run the full verification for one applicant.
    Supports JPG / PNG / HEIC / PDF uploads.
    """
    with upload_workspace("idv_") as temp_dir:
        front_path = save_upload(id_front, temp_dir, "id_front")
        back_path = save_upload(id_back, temp_dir, "id_back")
        selfie_path = save_upload(selfie, temp_dir, "selfie")

        # One orchestrator per request so concurrent requests never share a session
        orchestrator = VerificationOrchestrator(
            config=shared.get_config(),
            id_validator=shared.id_validator,
            evaluator=shared.evaluator,
        )
        session = orchestrator.start_session()
        result = orchestrator.perform_full_verification(
            front_path,
            back_path,
            selfie_path,
            id_type,
            DeclaredIdentity(full_name=full_name, date_of_birth=date_of_birth, id_number=id_number),
            session=session,
        )

        return {
            "session_id": session.session_id,
            "status": session.status.value,
            "result": asdict(result),
            "steps": [asdict(step) for step in session.steps],
        }


# ------------------------
# Quick operations
# ------------------------
@app.post("/quick/id")
def quick_validate_id(
    image: UploadFile = File(...),
    id_type: str = Form(DEFAULT_ID_TYPE),
    side: str = Form("front"),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    with upload_workspace("idv_quick_") as temp_dir:
        path = save_upload(image, temp_dir, "image")
        return asdict(orchestrator.quick_validate_id(path, id_type, side))


@app.post("/quick/face")
def quick_validate_face(
    image: UploadFile = File(...),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    with upload_workspace("idv_quick_") as temp_dir:
        path = save_upload(image, temp_dir, "image")
        return asdict(orchestrator.quick_validate_face(path))


@app.post("/quick/id-face")
def detect_face_in_id(
    image: UploadFile = File(...),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    with upload_workspace("idv_quick_") as temp_dir:
        path = save_upload(image, temp_dir, "image")
        return asdict(orchestrator.detect_face_in_id(path))


@app.post("/quick/compare")
def compare_faces(
    image_a: UploadFile = File(...),
    image_b: UploadFile = File(...),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    with upload_workspace("idv_quick_") as temp_dir:
        path_a = save_upload(image_a, temp_dir, "image_a")
        path_b = save_upload(image_b, temp_dir, "image_b")
        return asdict(orchestrator.compare_faces(path_a, path_b))


# ------------------------
# Configuration
# ------------------------
@app.get("/config")
async def get_config(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    return asdict(orchestrator.get_config())


class ConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_id_confidence: Optional[float] = None
    min_face_match_confidence: Optional[float] = None
    min_liveness_confidence: Optional[float] = None
    require_liveness_check: Optional[bool] = None
    max_risk_score: Optional[float] = None
    strict_mode: Optional[bool] = None


@app.patch("/config")
async def update_config(
    update: ConfigUpdate,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    changes = update.model_dump(exclude_unset=True)
    try:
        config = orchestrator.update_config(**changes)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Verification config updated: %s", changes)
    return asdict(config)


# ------------------------
# Health Check
# ------------------------
@app.get("/health")
def health_check(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    # Provider outages degrade signals rather than failing requests
    providers = orchestrator.provider_health()
    return {
        "status": "healthy" if all(providers.values()) else "degraded",
        "providers": providers,
        "service": "identity-verification",
        "version": __version__,
    }


# ------------------------
# Local Dev Entry
# ------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
