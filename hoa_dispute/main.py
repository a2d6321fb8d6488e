# hoa_dispute/main.py
import logging
import sys
from functools import partial
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse

from .config import (
    ANALYSIS_MODELS,
    CHAT_MODEL,
    CHUNK_SIZE,
    MAX_ITEMS_PER_CHUNK,
    MIN_CHUNK_LENGTH,
    SUGGESTION_MODELS,
    Settings,
    get_settings,
)
from .errors import (
    ConfigurationError,
    DisputeAssistantError,
    ExtractionInsufficientError,
    InputError,
    ServerError,
)
from .extract import extract_document_text
from .llm import (
    ANALYSIS_SYSTEM,
    LEGAL_SYSTEM,
    LETTER_SYSTEM,
    SUGGESTION_SYSTEM,
    BackendPool,
    build_analysis_prompt,
    build_legal_prompt,
    build_letter_prompt,
    build_suggestion_prompt,
    call_model,
    with_language,
)
from .logic import (
    chunk_items,
    chunk_text,
    fan_out,
    merge_charge_results,
    merge_suggestion_results,
    parse_suggestions,
    usable_chunks,
)
from .schema import (
    ChargeItem,
    DisputeLetter,
    DisputeLetterRequest,
    LegalAnswer,
    LegalQuestionRequest,
    SuggestionRequest,
    SuggestionResponse,
)

# Console logger
logger = logging.getLogger("hoa-dispute")
if not logger.handlers:
    logger.setLevel(get_settings().log_level.upper())
    _h = logging.StreamHandler(sys.stdout)
    _h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s"))
    logger.addHandler(_h)

app = FastAPI(
    title="HOA Fee Dispute Assistant",
    description="Extract and flag condo/HOA assessment charges, suggest savings, answer region-specific legal questions and draft dispute letters.",
    version="1.0.0",
)

@app.exception_handler(DisputeAssistantError)
async def _dispute_error_handler(request: Request, exc: DisputeAssistantError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

def _require_token(settings: Settings) -> str:
    if not settings.github_token:
        raise ConfigurationError("Missing GitHub Token")
    return settings.github_token

def _model_caller(settings: Settings, token: Optional[str], system: str):
    return partial(
        call_model,
        system=system,
        token=token,
        url=settings.inference_url,
        timeout=settings.request_timeout,
    )

@app.post(
    "/analyze-pdf",
    response_model=List[ChargeItem],
    response_model_exclude_none=True,
    summary="Extract itemized charges from an assessment document",
)
async def analyze_pdf(
    file: Optional[UploadFile] = File(default=None, description="Assessment PDF or scanned image"),
    language_note: Optional[str] = Form(default=None, alias="languageNote", description="e.g. 'Please respond in French.'"),
    settings: Settings = Depends(get_settings),
):
    if file is None:
        raise InputError("No file provided")
    # Fail before any PDF/OCR work if the pipeline cannot possibly succeed
    token = _require_token(settings)

    try:
        raw_bytes = await file.read()
        text = await extract_document_text(
            raw_bytes,
            filename=file.filename,
            content_type=file.content_type,
            language_note=language_note,
        )

        chunks = usable_chunks(chunk_text(text, CHUNK_SIZE), MIN_CHUNK_LENGTH)
        if not chunks:
            raise ExtractionInsufficientError(
                "No usable text found in document. If it is a scan, try a clearer copy."
            )
        logger.info("Analyzing %s: %d chars in %d chunk(s)", file.filename, len(text), len(chunks))

        ask = _model_caller(settings, token, with_language(ANALYSIS_SYSTEM, language_note))

        async def call(backend: str, chunk: str) -> str:
            return await ask(backend, user_content=build_analysis_prompt(chunk))

        results = await fan_out(
            chunks,
            BackendPool(ANALYSIS_MODELS),
            call,
            max_concurrency=settings.max_concurrency,
        )
        merged = merge_charge_results(results)
        failed = sum(1 for r in results if not r.ok)
        logger.info("Analysis done: %d record(s), %d failed chunk(s)", len(merged), failed)
        return merged

    except DisputeAssistantError:
        raise
    except Exception as e:
        logger.exception("Unhandled error in /analyze-pdf")
        raise ServerError("Failed to analyze PDF", details=str(e))

@app.post(
    "/generate-suggestions",
    response_model=SuggestionResponse,
    response_model_exclude_none=True,
    summary="Cost-saving suggestions for a charge breakdown",
)
async def generate_suggestions(body: SuggestionRequest, settings: Settings = Depends(get_settings)):
    breakdown = body.breakdown
    if not isinstance(breakdown, list) or not breakdown:
        raise InputError("Missing or invalid breakdown")
    token = _require_token(settings)

    try:
        batches = chunk_items(breakdown, MAX_ITEMS_PER_CHUNK)
        ask = _model_caller(settings, token, SUGGESTION_SYSTEM)

        async def call(backend: str, items: List[Dict[str, Any]]) -> str:
            return await ask(backend, user_content=build_suggestion_prompt(items))

        results = await fan_out(
            batches,
            BackendPool(SUGGESTION_MODELS),
            call,
            parse=parse_suggestions,
            max_concurrency=settings.max_concurrency,
        )
        suggestions = merge_suggestion_results(results)
        logger.info("Suggestions done: %d item(s) from %d batch(es)", len(suggestions), len(batches))
        return {"suggestions": suggestions}

    except DisputeAssistantError:
        raise
    except Exception as e:
        logger.exception("Unhandled error in /generate-suggestions")
        raise ServerError("Server error", details=str(e))

@app.post("/analyze-legal", response_model=LegalAnswer, summary="Region-specific legal Q&A")
async def analyze_legal(body: LegalQuestionRequest, settings: Settings = Depends(get_settings)):
    if not body.question or not body.region:
        raise InputError("Missing question or region")

    ask = _model_caller(settings, settings.github_token, with_language(LEGAL_SYSTEM, body.language_note))
    try:
        answer = await ask(
            CHAT_MODEL,
            user_content=build_legal_prompt(body.question, body.region, body.language_note),
        )
    except DisputeAssistantError:
        raise
    except Exception as e:
        logger.exception("Unhandled error in /analyze-legal")
        raise ServerError("Server error", details=str(e))
    return {"answer": answer}

@app.post("/generate-dispute-letter", response_model=DisputeLetter, summary="Draft a dispute letter")
async def generate_dispute_letter(body: DisputeLetterRequest, settings: Settings = Depends(get_settings)):
    if not body.context:
        raise InputError("Missing context")

    ask = _model_caller(settings, settings.github_token, with_language(LETTER_SYSTEM, body.language_note))
    try:
        letter = await ask(CHAT_MODEL, user_content=build_letter_prompt(body.context))
    except DisputeAssistantError:
        raise
    except Exception as e:
        logger.exception("Unhandled error in /generate-dispute-letter")
        raise ServerError("Server error", details=str(e))
    return {"letter": letter}
