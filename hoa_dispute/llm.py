import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .errors import DisputeAssistantError

logger = logging.getLogger("hoa-dispute.llm")

UNKNOWN_MODEL_ERROR = "Unknown model error"

ANALYSIS_SYSTEM = "You're a helpful assistant for condo owners."

ANALYSIS_PROMPT_TEMPLATE = """Here's a section of a condo fee document:

{chunk}

Please extract all itemized charges with the amount, category, a short description, and flag any questionable items (e.g., vague fees, unexplained legal/admin charges).
Return ONLY a JSON array in the format:
[{{"category": "text", "amount": 123.45, "description": "text", "questionable": true}}]
No prose, no code fences."""

SUGGESTION_SYSTEM = "You provide precise, practical cost-saving suggestions in JSON format."

SUGGESTION_PROMPT_TEMPLATE = """You're a condo cost consultant. Review these charges and suggest actionable cost-saving ideas for the owner. Return a JSON array where each item has:
- "suggestion" (string) describing the cost-saving idea,
- "category" (string) categorizing the suggestion,
- "estimated_savings" (number) estimating potential savings in dollars.

Example:
[
  {{
    "suggestion": "Negotiate landscaping contract to reduce monthly fee.",
    "category": "Contract Negotiation",
    "estimated_savings": 5000
  }}
]

Here is the data to analyze:

{items}"""

LEGAL_SYSTEM = "You are a helpful legal assistant."

LEGAL_PROMPT_TEMPLATE = """You are a legal assistant helping condo owners with region-specific guidance.

Region: {region}
Question: {question}

Provide a clear, structured answer for a layperson. {language_note}"""

LETTER_SYSTEM = "You are a helpful legal assistant who drafts formal letters."

LETTER_PROMPT_TEMPLATE = """Based on the following context, generate a formal dispute letter. Use {{{{placeholders}}}} for user-provided details like dates, names, amounts, or unit numbers. Do not include sections for sender or recipient addresses or contact information at the top of the letter. Return only the letter content, no extra commentary.

{context}"""


class ModelCallError(DisputeAssistantError):
    """A single inference call failed; carries the backend's message."""
    status_code = 500


class BackendPool:
    """
    Picks the backend model for a unit of work.
    Plain round-robin over a fixed list; override pick() for smarter routing.
    """

    def __init__(self, models: Sequence[str]):
        if not models:
            raise ValueError("BackendPool needs at least one model")
        self.models = list(models)

    def pick(self, index: int) -> str:
        return self.models[index % len(self.models)]

    def __len__(self) -> int:
        return len(self.models)


def with_language(system: str, language_note: Optional[str]) -> str:
    return f"{system} {language_note}".strip() if language_note else system

def build_analysis_prompt(chunk: str) -> str:
    return ANALYSIS_PROMPT_TEMPLATE.format(chunk=chunk)

def build_suggestion_prompt(items: List[Dict[str, Any]]) -> str:
    return SUGGESTION_PROMPT_TEMPLATE.format(items=json.dumps(items, indent=2))

def build_legal_prompt(question: str, region: str, language_note: Optional[str] = None) -> str:
    return LEGAL_PROMPT_TEMPLATE.format(
        region=region, question=question, language_note=language_note or ""
    ).strip()

def build_letter_prompt(context: str) -> str:
    return LETTER_PROMPT_TEMPLATE.format(context=context)


def _error_message(data: Any) -> str:
    """
    Backends report errors as {"error": {"message": ...}} or {"error": "..."}.
    """
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"]:
            return err["message"]
        if isinstance(err, str) and err:
            return err
    return UNKNOWN_MODEL_ERROR

def _content_of(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise ModelCallError(_error_message(data)) from None
    return content if isinstance(content, str) else ""

async def call_model(
    model: str,
    system: str,
    user_content: str,
    *,
    token: Optional[str],
    url: str,
    timeout: float = 180,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Calls an OpenAI-compatible /chat/completions endpoint once and returns the
    assistant text. Every failure mode surfaces as ModelCallError; no retries.
    """
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user_content},
        ],
    }
    # "Bearer " with no token is not a legal header value
    headers = {"Authorization": f"Bearer {token}"} if token else {}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                r = await own_client.post(url, json=payload, headers=headers)
        else:
            r = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("Model %s unreachable: %s: %s", model, type(e).__name__, e)
        raise ModelCallError(f"{type(e).__name__}: {e}") from e

    try:
        data = r.json()
    except ValueError:
        data = None

    if r.is_error:
        message = _error_message(data)
        logger.warning("Model %s returned HTTP %s: %s", model, r.status_code, message)
        raise ModelCallError(message)

    return _content_of(data)
