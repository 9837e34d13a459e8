import logging
import os
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Body, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from api.rate_limit import GENERATE_RATE_LIMIT, limiter
from api.report_models import (
    DebugInfo,
    GenerateFromTextRequest,
    GenerateResponse,
    RegenerationAttemptModel,
    TemplateInfo,
    TemplateListResponse,
)
from llm.client import AudioPayload, LLMClient, LLMProvider
from usg.field_resolver import normalize_gender
from usg.fields import Gender
from usg.pipeline import (
    GenerationResult,
    ModelTransportError,
    UnparseableModelOutputError,
    generate_report,
)
from usg.templates import ReportTemplate, get_template, list_templates
from usg.transport import ModelTransport, llm_client_transport

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini").strip().lower()
LLM_MODEL = os.getenv("LLM_MODEL", "").strip() or None
DEBUG_MODEL_CLIENT = os.getenv("DEBUG_MODEL_CLIENT", "").lower() == "true"
MAX_AUDIO_BYTES = int(os.getenv("MAX_AUDIO_BYTES", str(100 * 1024 * 1024)))

_logger = logging.getLogger(__name__)

router = APIRouter()

_API_KEY_ENV = {
    LLMProvider.GEMINI: "GEMINI_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.CLAUDE: "ANTHROPIC_API_KEY",
}

_MIME_ALIASES = {
    "video/webm": "audio/webm",
    "video/mp4": "audio/mp4",
    "audio/x-m4a": "audio/mp4",
    "audio/x-wav": "audio/wav",
    "audio/wave": "audio/wav",
}

_EXTENSION_MIME = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
}


def normalize_audio_mime_type(content_type: Optional[str], filename: Optional[str]) -> str:
    """Browser recorders report odd types; map them to what the model accepts."""
    base = (content_type or "").split(";")[0].strip().lower()
    if base and base != "application/octet-stream":
        return _MIME_ALIASES.get(base, base)
    ext = os.path.splitext((filename or "").lower())[1]
    return _EXTENSION_MIME.get(ext, "")


def _resolve_provider() -> LLMProvider:
    try:
        return LLMProvider(LLM_PROVIDER)
    except ValueError:
        raise HTTPException(status_code=500, detail=f"Unsupported LLM_PROVIDER '{LLM_PROVIDER}'.")


def _credentials(provider: LLMProvider) -> str | None:
    if provider == LLMProvider.BEDROCK:
        # Region only; boto3 finds credentials on its own.
        return os.getenv("AWS_REGION", "us-east-1")
    return os.getenv(_API_KEY_ENV[provider], "").strip() or None


def _build_transport() -> ModelTransport:
    provider = _resolve_provider()
    credentials = _credentials(provider)
    if not credentials:
        raise HTTPException(status_code=500, detail=f"{_API_KEY_ENV[provider]} is not configured.")
    return llm_client_transport(LLMClient(provider=provider, api_key=credentials, model=LLM_MODEL))


def _optional_transport() -> Optional[ModelTransport]:
    """Transport for retries and regeneration on replayed text, if configured."""
    try:
        return _build_transport()
    except HTTPException as e:
        _logger.info("No model transport for replay (%s); retries and regeneration disabled", e.detail)
        return None


def _get_template_or_400(template_id: Optional[str]) -> ReportTemplate:
    if not template_id or not template_id.strip():
        raise HTTPException(status_code=400, detail="template_id is required.")
    template = get_template(template_id)
    if template is None:
        raise HTTPException(status_code=400, detail="Unknown template_id.")
    return template


def _to_response(result: GenerationResult) -> GenerateResponse:
    debug = None
    if DEBUG_MODEL_CLIENT:
        debug = DebugInfo(
            raw_text=result.raw_text,
            regeneration_attempts=[RegenerationAttemptModel(**asdict(a)) for a in result.regeneration_attempts],
        )
    return GenerateResponse(
        template_id=result.template_id,
        observations=result.observations,
        flags=result.flags,
        disclaimer=result.disclaimer,
        debug=debug,
    )


def _unparseable_response(exc: UnparseableModelOutputError) -> JSONResponse:
    content: dict = {"detail": "Model returned invalid JSON."}
    if DEBUG_MODEL_CLIENT:
        content["debug"] = {"raw_text": exc.raw_text}
    return JSONResponse(status_code=502, content=content)


async def _run_pipeline(template: ReportTemplate, **kwargs) -> GenerateResponse | JSONResponse:
    try:
        result = await generate_report(template, **kwargs)
    except UnparseableModelOutputError as e:
        _logger.warning("Unparseable model output for %s", template.template_id)
        return _unparseable_response(e)
    except ModelTransportError as e:
        _logger.exception("Model call failed for %s: %s", template.template_id, e)
        raise HTTPException(status_code=502, detail="Model request failed. Please try again.")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(result)


@router.get("/health")
async def health_check():
    return {"status": "ok", "provider": LLM_PROVIDER}


@router.get("/templates", response_model=TemplateListResponse)
async def get_templates():
    templates = [
        TemplateInfo(
            id=t.template_id,
            title=t.title,
            allowed_topics=list(t.allowed_topics),
            headings=list(t.headings),
            structured=t.is_structured,
            variant=t.variant.value if t.variant else None,
            gender=t.gender,
        )
        for t in list_templates()
    ]
    return TemplateListResponse(templates=templates, total=len(templates))


@router.post("/generate", response_model=GenerateResponse)
@limiter.limit(GENERATE_RATE_LIMIT)
async def generate(
    request: Request,
    template_id: str = Form(""),
    audio_file: Optional[UploadFile] = File(None),
    gender: str = Form(""),
):
    """Draft a report from an uploaded dictation recording."""
    template = _get_template_or_400(template_id)

    if audio_file is None:
        raise HTTPException(status_code=400, detail="audio_file is required.")
    content = await audio_file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded audio file is empty.")
    if len(content) > MAX_AUDIO_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Audio file exceeds {MAX_AUDIO_BYTES // (1024 * 1024)}MB.",
        )

    mime_type = normalize_audio_mime_type(audio_file.content_type, audio_file.filename)
    if not mime_type.startswith("audio/"):
        raise HTTPException(
            status_code=400,
            detail="Unsupported audio type. Please upload a .wav, .mp3, .m4a, .mp4, .webm, or .ogg file.",
        )

    transport = _build_transport()
    audio = AudioPayload(data=content, mime_type=mime_type, filename=audio_file.filename or "")
    _logger.info("Generating %s from %d byte(s) of %s", template.template_id, len(content), mime_type)
    return await _run_pipeline(
        template,
        transport=transport,
        audio=audio,
        gender=normalize_gender(gender),
    )


@router.post("/generate/from-text", response_model=GenerateResponse)
@limiter.limit(GENERATE_RATE_LIMIT)
async def generate_from_text(request: Request, body: GenerateFromTextRequest = Body(...)):
    """Run an already obtained model response through the report pipeline."""
    template = _get_template_or_400(body.template_id)
    gender: Optional[Gender] = body.gender
    return await _run_pipeline(
        template,
        transport=_optional_transport(),
        raw_text=body.raw_text,
        gender=gender,
    )
