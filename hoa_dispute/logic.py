# hoa_dispute/logic.py
import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .llm import BackendPool

logger = logging.getLogger("hoa-dispute.logic")

# -------- Lenient JSON recovery --------

FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)
THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

def strip_reasoning(text: str) -> str:
    """Drop code fences and <think> traces some models emit around the payload."""
    return FENCE_RE.sub("", THINK_BLOCK_RE.sub("", text))

def strip_trailing_commas(text: str) -> str:
    return TRAILING_COMMA_RE.sub(r"\1", text)

def strip_newlines(text: str) -> str:
    return text.replace("\r", "").replace("\n", "")

# Applied cumulatively; the first variant that parses wins
NORMALIZATION_PASSES: Sequence[Callable[[str], str]] = (
    lambda text: text,
    strip_trailing_commas,
    strip_newlines,
)

def slice_json(text: str, allow_object: bool = False) -> Optional[str]:
    """
    Slice from the first opening bracket to the last closing one.
    Array-only unless allow_object, in which case the earlier of '[' / '{' opens.
    """
    openers = "[{" if allow_object else "["
    starts = [i for i in (text.find(ch) for ch in openers) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "]" if text[start] == "[" else "}"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]

def try_parse_json(raw: Optional[str], allow_object: bool = False) -> Optional[Any]:
    """
    Best-effort extraction of a JSON array (or object, if allowed) embedded in
    free text. Returns None instead of raising; callers treat None as "no
    structured data".
    """
    if not raw:
        return None
    text = strip_reasoning(str(raw))
    for normalize in NORMALIZATION_PASSES:
        text = normalize(text)
        candidate = slice_json(text, allow_object=allow_object)
        if candidate is None:
            return None
        try:
            data = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        if isinstance(data, list) or (allow_object and isinstance(data, dict)):
            return data
        return None
    logger.debug("Could not parse JSON from model output (%d chars)", len(raw))
    return None

# -------- Chunking --------

def chunk_text(text: str, max_length: int = 8000) -> List[str]:
    if max_length <= 0:
        raise ValueError("max_length must be a positive integer")
    return [text[i : i + max_length] for i in range(0, len(text), max_length)]

def usable_chunks(chunks: List[str], min_length: int = 10) -> List[str]:
    return [c for c in chunks if len(c.strip()) > min_length]

def chunk_items(items: List[Any], size: int = 8) -> List[List[Any]]:
    if size <= 0:
        raise ValueError("size must be a positive integer")
    return [items[i : i + size] for i in range(0, len(items), size)]

# -------- Fan-out / fan-in --------

@dataclass(frozen=True)
class ChunkResult:
    source_index: int
    backend: str
    raw_output: Optional[str] = None
    parsed: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

async def fan_out(
    units: Sequence[Any],
    pool: BackendPool,
    call: Callable[[str, Any], Awaitable[str]],
    parse: Callable[[str], Optional[Any]] = try_parse_json,
    max_concurrency: Optional[int] = None,
) -> List[ChunkResult]:
    """
    Runs call(backend, unit) for every unit concurrently and waits for all of
    them to settle. One ChunkResult per unit, in unit order, whatever the
    completion order was. A failing call never cancels its siblings.
    """
    sem = asyncio.Semaphore(max_concurrency) if max_concurrency else None
    backends = [pool.pick(i) for i in range(len(units))]

    async def _one(backend: str, unit: Any) -> str:
        if sem is None:
            return await call(backend, unit)
        async with sem:
            return await call(backend, unit)

    outcomes = await asyncio.gather(
        *(_one(b, u) for b, u in zip(backends, units)),
        return_exceptions=True,
    )

    results: List[ChunkResult] = []
    for i, (backend, out) in enumerate(zip(backends, outcomes)):
        if isinstance(out, BaseException) and not isinstance(out, Exception):
            raise out
        if isinstance(out, Exception):
            message = str(out) or type(out).__name__
            logger.warning("Chunk %d (%s) failed: %s", i, backend, message)
            results.append(ChunkResult(source_index=i, backend=backend, error=message))
        else:
            raw = out if isinstance(out, str) else json.dumps(out)
            try:
                parsed = parse(raw)
            except Exception as e:
                logger.warning("Chunk %d (%s) output unparseable: %s: %s", i, backend, type(e).__name__, e)
                parsed = None
            results.append(
                ChunkResult(source_index=i, backend=backend, raw_output=raw, parsed=parsed)
            )
    return results

# -------- Charge items --------

AMOUNT_CLEAN_RE = re.compile(r"[^0-9.\-]")

def coerce_amount(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        if isinstance(value, (int, float)):
            amount = abs(float(value))
        elif isinstance(value, str):
            amount = abs(float(AMOUNT_CLEAN_RE.sub("", value)))
        else:
            return 0.0
    except (ValueError, OverflowError):
        return 0.0
    # NaN, Infinity and overflowing literals like 1e400
    return amount if math.isfinite(amount) else 0.0

def coerce_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)

def normalize_charge_item(item: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(item, dict):
        return None
    return {
        "category": str(item.get("category") or "Uncategorized"),
        "description": str(item.get("description") or ""),
        "amount": coerce_amount(item.get("amount")),
        "questionable": coerce_flag(item.get("questionable", False)),
    }

def no_data_placeholder(raw_output: Optional[str]) -> Dict[str, Any]:
    return {
        "questionable": True,
        "category": "Unknown",
        "description": "No structured data found in this chunk",
        "amount": 0,
        "rawOutput": raw_output,
    }

def failed_call_placeholder(error: Optional[str]) -> Dict[str, Any]:
    return {
        "questionable": True,
        "category": "Error",
        "description": "Model call failed",
        "amount": 0,
        "error": error,
    }

def merge_charge_results(results: List[ChunkResult]) -> List[Dict[str, Any]]:
    merged: List[Dict[str, Any]] = []
    for res in sorted(results, key=lambda r: r.source_index):
        if not res.ok:
            merged.append(failed_call_placeholder(res.error))
            continue
        items = []
        if isinstance(res.parsed, list):
            items = [n for n in map(normalize_charge_item, res.parsed) if n is not None]
        if items:
            merged.extend(items)
        else:
            merged.append(no_data_placeholder(res.raw_output))
    return merged

# -------- Cost-saving suggestions --------

def parse_suggestions(raw: str) -> Optional[List[Any]]:
    data = try_parse_json(raw, allow_object=True)
    if isinstance(data, dict):
        inner = data.get("suggestions")
        return inner if isinstance(inner, list) else [data]
    return data

def is_valid_suggestion(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    savings = item.get("estimated_savings")
    return (
        isinstance(item.get("suggestion"), str) and bool(item["suggestion"])
        and isinstance(item.get("category"), str) and bool(item["category"])
        and isinstance(savings, (int, float)) and not isinstance(savings, bool)
    )

def _suggestion_placeholder(suggestion: str, **extra: Any) -> Dict[str, Any]:
    return {"suggestion": suggestion, "category": "Error", "estimated_savings": 0, **extra}

def merge_suggestion_results(results: List[ChunkResult]) -> List[Dict[str, Any]]:
    """
    Same reconciliation as the charge pipeline. Malformed elements inside an
    otherwise good array get their own placeholder rather than vanishing.
    """
    merged: List[Dict[str, Any]] = []
    for res in sorted(results, key=lambda r: r.source_index):
        if not res.ok:
            merged.append(_suggestion_placeholder("Model call failed", error=res.error))
            continue
        if not res.parsed:
            merged.append(
                _suggestion_placeholder("Failed to parse suggestions JSON", rawOutput=res.raw_output)
            )
            continue
        for item in res.parsed:
            if is_valid_suggestion(item):
                merged.append({
                    "suggestion": item["suggestion"],
                    "category": item["category"],
                    "estimated_savings": item["estimated_savings"],
                })
            else:
                merged.append(
                    _suggestion_placeholder(
                        "Malformed suggestion in model output",
                        rawOutput=json.dumps(item, default=str),
                    )
                )
    return merged
