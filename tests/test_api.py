"""
HTTP endpoints driven through the ASGI app with a fake model backend.
"""

import json
from io import BytesIO

import pytest
from httpx import AsyncClient

from hoa_dispute.config import ANALYSIS_MODELS, CHAT_MODEL, Settings
from hoa_dispute.llm import ModelCallError

POOL_AND_LEGAL = [
    {"category": "Pool", "description": "Pool fee", "amount": 100, "questionable": False},
    {"category": "Legal", "description": "Legal fee", "amount": 50, "questionable": True},
]


def _pdf():
    return {"file": ("assessment.pdf", BytesIO(b"%PDF-1.4 mock"), "application/pdf")}


# =============================================================================
# /analyze-pdf
# =============================================================================

@pytest.mark.anyio
async def test_analyze_pdf_returns_extracted_items(client: AsyncClient, fake_model, fake_text):
    fake_text.text = "Pool fee $100\n\nLegal fee $50"
    fake_model.default = json.dumps(POOL_AND_LEGAL)

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 200
    assert response.json() == POOL_AND_LEGAL
    assert len(fake_model.calls) == 1
    assert fake_model.calls[0]["model"] == ANALYSIS_MODELS[0]
    assert "Pool fee $100" in fake_model.calls[0]["user"]
    assert fake_model.calls[0]["token"] == "test-token"


@pytest.mark.anyio
async def test_analyze_pdf_backend_failure_becomes_placeholder(client, fake_model, fake_text):
    fake_text.text = "Pool fee $100\n\nLegal fee $50"
    fake_model.default = ModelCallError("Rate limit exceeded")

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 200
    assert response.json() == [{
        "questionable": True,
        "category": "Error",
        "description": "Model call failed",
        "amount": 0,
        "error": "Rate limit exceeded",
    }]


@pytest.mark.anyio
async def test_analyze_pdf_no_usable_text_is_422(client, fake_model, fake_text):
    fake_text.text = ""

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 422
    assert "error" in response.json()
    assert fake_model.calls == []


@pytest.mark.anyio
async def test_analyze_pdf_mixed_chunks_keep_order(client, fake_model, fake_text):
    # Three chunks, one per backend
    fake_text.text = ("A" * 8000) + ("B" * 8000) + "C" * 50
    fake_model.replies = {
        ANALYSIS_MODELS[0]: '[{"category": "first", "amount": 1}]',
        ANALYSIS_MODELS[1]: ModelCallError("boom"),
        ANALYSIS_MODELS[2]: "I found no charges.",
    }

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 200
    body = response.json()
    assert [item["category"] for item in body] == ["first", "Error", "Unknown"]
    assert body[1]["error"] == "boom"
    assert body[2]["rawOutput"] == "I found no charges."


@pytest.mark.anyio
async def test_analyze_pdf_passes_language_note(client, fake_model, fake_text):
    fake_text.text = "Frais de piscine 100 $"
    fake_model.default = "[]"

    await client.post("/analyze-pdf", files=_pdf(), data={"languageNote": "Please respond in French."})

    assert fake_text.calls[0]["language_note"] == "Please respond in French."
    assert fake_model.calls[0]["system"].endswith("Please respond in French.")


@pytest.mark.anyio
async def test_analyze_pdf_without_file_is_400(client, fake_model):
    response = await client.post("/analyze-pdf", data={"languageNote": "Please respond in English."})

    assert response.status_code == 400
    assert response.json() == {"error": "No file provided"}


@pytest.mark.anyio
async def test_analyze_pdf_missing_token_fails_before_extraction(client, settings, fake_model, fake_text):
    settings.github_token = None

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 500
    assert response.json()["error"] == "Missing GitHub Token"
    assert fake_text.calls == []


@pytest.mark.anyio
async def test_analyze_pdf_unexpected_error_is_500(client, fake_model, monkeypatch):
    from hoa_dispute import main

    async def explode(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(main, "extract_document_text", explode)

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to analyze PDF", "details": "disk full"}


# =============================================================================
# /generate-suggestions
# =============================================================================

@pytest.mark.anyio
async def test_generate_suggestions_empty_breakdown_is_400(client, fake_model):
    response = await client.post("/generate-suggestions", json={"breakdown": []})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing or invalid breakdown"}


@pytest.mark.anyio
async def test_generate_suggestions_non_list_breakdown_is_400(client, fake_model):
    response = await client.post("/generate-suggestions", json={"breakdown": "pool"})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_generate_suggestions_missing_token_is_500(client, settings, fake_model):
    settings.github_token = ""

    response = await client.post("/generate-suggestions", json={"breakdown": POOL_AND_LEGAL})

    assert response.status_code == 500
    assert fake_model.calls == []


@pytest.mark.anyio
async def test_generate_suggestions_batches_and_merges(client, fake_model):
    breakdown = [
        {"category": f"Item {i}", "description": "", "amount": i, "questionable": False}
        for i in range(10)
    ]
    fake_model.replies = {
        ANALYSIS_MODELS[0]: json.dumps([
            {"suggestion": "Rebid landscaping", "category": "Contracts", "estimated_savings": 1200},
            {"suggestion": "Missing savings", "category": "Misc"},
        ]),
        ANALYSIS_MODELS[1]: "Sorry, nothing to suggest.",
    }

    response = await client.post("/generate-suggestions", json={"breakdown": breakdown})

    assert response.status_code == 200
    suggestions = response.json()["suggestions"]
    assert suggestions[0] == {
        "suggestion": "Rebid landscaping",
        "category": "Contracts",
        "estimated_savings": 1200,
    }
    assert suggestions[1]["suggestion"] == "Malformed suggestion in model output"
    assert suggestions[2]["suggestion"] == "Failed to parse suggestions JSON"
    assert len(fake_model.calls) == 2
    assert '"Item 7"' in fake_model.calls[0]["user"]
    assert '"Item 8"' in fake_model.calls[1]["user"]


# =============================================================================
# /analyze-legal and /generate-dispute-letter
# =============================================================================

@pytest.mark.anyio
async def test_analyze_legal_requires_question_and_region(client, fake_model):
    response = await client.post("/analyze-legal", json={"question": "Can they fine me?"})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing question or region"}


@pytest.mark.anyio
async def test_analyze_legal_answers(client, fake_model):
    fake_model.default = "Under the Condominium Act..."

    response = await client.post(
        "/analyze-legal",
        json={"question": "Can they fine me?", "region": "Ontario", "languageNote": "Please respond in English."},
    )

    assert response.status_code == 200
    assert response.json() == {"answer": "Under the Condominium Act..."}
    call = fake_model.calls[0]
    assert call["model"] == CHAT_MODEL
    assert "Region: Ontario" in call["user"]
    assert call["system"].endswith("Please respond in English.")


@pytest.mark.anyio
async def test_analyze_legal_backend_error_is_500(client, fake_model):
    fake_model.default = ModelCallError("Bad credentials")

    response = await client.post("/analyze-legal", json={"question": "q", "region": "Quebec"})

    assert response.status_code == 500
    assert response.json() == {"error": "Bad credentials"}


@pytest.mark.anyio
async def test_legal_endpoint_does_not_guard_token(client, settings, fake_model):
    settings.github_token = None
    fake_model.default = "answer"

    response = await client.post("/analyze-legal", json={"question": "q", "region": "Quebec"})

    assert response.status_code == 200
    assert fake_model.calls[0]["token"] is None


@pytest.mark.anyio
async def test_dispute_letter_requires_context(client, fake_model):
    response = await client.post("/generate-dispute-letter", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing context"}


@pytest.mark.anyio
async def test_dispute_letter_generated(client, fake_model):
    fake_model.default = "Dear Board,\n\nI dispute the {{amount}} legal fee..."

    response = await client.post(
        "/generate-dispute-letter",
        json={"context": "Charged a $300 legal fee without explanation."},
    )

    assert response.status_code == 200
    assert response.json()["letter"].startswith("Dear Board")
    assert "Charged a $300 legal fee" in fake_model.calls[0]["user"]


def test_settings_default_to_github_models():
    settings = Settings(_env_file=None)
    assert settings.inference_url.startswith("https://models.github.ai/")
    assert settings.max_concurrency == 8


@pytest.mark.anyio
async def test_analyze_pdf_short_native_text_and_empty_ocr_is_422(client, fake_model, monkeypatch):
    from hoa_dispute import extract

    monkeypatch.setattr(extract, "extract_native_text", lambda raw: ("Page 1 of 1 ....", 1))

    async def empty_ocr(*args, **kwargs):
        return ""

    monkeypatch.setattr(extract, "extract_text_with_ocr", empty_ocr)

    response = await client.post("/analyze-pdf", files=_pdf())

    assert response.status_code == 422
    assert "error" in response.json()
    assert fake_model.calls == []
