"""Model gateway (Gemini REST API), error kinds, and response post-processing."""
import os
import re as _re
import time
import html
import base64
from typing import Optional, List, Type, TypeVar
from urllib.parse import urlparse

from log import get_logger

logger = get_logger("rengu.llm")

import httpx
import pykakasi
from pydantic import BaseModel, ValidationError

from models import WordEntry, KanjiDetails, JISHO_DOMAIN, jisho_fallback_link

# --- Config ---
GEMINI_URL = os.environ.get("RENGU_GEMINI_URL", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_MODEL = os.environ.get("RENGU_MODEL", "gemini-3-flash-preview")
GEMINI_TIMEOUT = float(os.environ.get("RENGU_TIMEOUT", "60"))

MAX_CANDIDATES = 10

_kakasi = pykakasi.kakasi()

T = TypeVar("T", bound=BaseModel)


def configured_api_key() -> str:
    return os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY", "")


# --- Errors ---

class GatewayError(Exception):
    """Base class for failures talking to the model backend."""


class TransportError(GatewayError):
    """Backend unreachable, or it answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SchemaError(GatewayError):
    """Structured response did not match the expected shape."""


class EmptyResult(GatewayError):
    """Backend succeeded but returned nothing usable."""


# --- Gateway ---

_JSON_TO_GEMINI_TYPES = {
    "string": "STRING",
    "integer": "INTEGER",
    "number": "NUMBER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}


def response_shape(schema: Type[BaseModel]) -> dict:
    """Translate a flat pydantic model into Gemini's responseSchema dialect."""
    js = schema.model_json_schema(by_alias=True)
    props = {
        name: {"type": _JSON_TO_GEMINI_TYPES.get(p.get("type", "string"), "STRING")}
        for name, p in js.get("properties", {}).items()
    }
    return {
        "type": "OBJECT",
        "properties": props,
        "required": list(props),
        "propertyOrdering": list(props),
    }


def response_text(payload: dict) -> str:
    """Concatenate the text parts of the first candidate; "" when there are none."""
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if not p.get("thought"))


class ModelGateway:
    """Single best-effort round trips to the generative model. No retries, no caching."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = configured_api_key() if api_key is None else api_key
        self.model = model or GEMINI_MODEL
        self.base_url = (base_url or GEMINI_URL).rstrip("/")
        self.timeout = timeout or GEMINI_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _generate(self, parts: list, generation_config: Optional[dict] = None) -> str:
        if not self.api_key:
            raise TransportError("No API key configured (set GEMINI_API_KEY)")

        body: dict = {"contents": [{"role": "user", "parts": parts}]}
        if generation_config:
            body["generationConfig"] = generation_config

        start = time.monotonic()
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    json=body,
                    headers={"x-goog-api-key": self.api_key},
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Model backend unreachable: {e}") from e
        duration_ms = round((time.monotonic() - start) * 1000)

        if resp.status_code != 200:
            logger.warning("Model call failed", extra={
                "component": "gateway", "status_code": resp.status_code,
                "duration_ms": duration_ms, "detail": resp.text[:200],
            })
            raise TransportError(f"Model backend returned {resp.status_code}", resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise TransportError("Model backend returned an undecodable body") from e

        logger.info("Model call done", extra={
            "component": "gateway", "status_code": resp.status_code, "duration_ms": duration_ms,
        })
        return response_text(payload)

    async def complete(self, prompt_text: str, temperature: Optional[float] = None,
                       top_k: Optional[int] = None, top_p: Optional[float] = None) -> str:
        """Free-text completion. Returns "" when the backend produced no text."""
        config = {}
        if temperature is not None:
            config["temperature"] = temperature
        if top_k is not None:
            config["topK"] = top_k
        if top_p is not None:
            config["topP"] = top_p
        return await self._generate([{"text": prompt_text}], config or None)

    async def complete_structured(self, prompt_text: str, schema: Type[T],
                                  reference_char: Optional[str] = None) -> T:
        """Structured completion validated against ``schema``.

        When ``reference_char`` is given and the record is a kanji card, the
        reference link is checked and replaced by a jisho.org search link for
        that character if it points anywhere else.
        """
        text = await self._generate([{"text": prompt_text}], {
            "responseMimeType": "application/json",
            "responseSchema": response_shape(schema),
        })
        if not text.strip():
            raise EmptyResult("Structured completion returned no payload")
        try:
            record = schema.model_validate_json(text)
        except ValidationError as e:
            raise SchemaError(f"Response does not match {schema.__name__}: {e.error_count()} error(s)") from e

        if reference_char and isinstance(record, KanjiDetails):
            record = ensure_reference_link(record, reference_char)
        return record

    async def complete_with_image(self, prompt_text: str, image_bytes: bytes,
                                  mime_type: str = "image/png") -> str:
        if not image_bytes:
            raise ValueError("image_bytes is empty")
        return await self._generate([
            {"text": prompt_text},
            {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}},
        ])

    async def check_connectivity(self) -> bool:
        if not self.api_key:
            return False
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"{self.base_url}/models/{self.model}",
                    headers={"x-goog-api-key": self.api_key},
                )
            return resp.status_code == 200
        except httpx.HTTPError:
            logger.warning("Model backend not reachable", extra={"component": "gateway"})
            return False


# --- Text helpers ---

# Han script: radicals, iteration marks, ext A, unified, compatibility, ext B and up
_KANJI_RANGES = (
    (0x2E80, 0x2FDF), (0x3005, 0x3005), (0x3007, 0x3007), (0x3021, 0x3029),
    (0x3038, 0x303B), (0x3400, 0x4DBF), (0x4E00, 0x9FFF), (0xF900, 0xFAFF),
    (0x20000, 0x3134F),
)
_KANJI_RE = _re.compile("[" + "".join(f"{chr(a)}-{chr(b)}" for a, b in _KANJI_RANGES) + "]")
_ASCII_ALNUM_RE = _re.compile(r"[A-Za-z0-9]")
_LIST_MARKER_RE = _re.compile(r"^\s*(?:\d+\s*[.)．]|[-*•・])\s*")
_FIELD_SEP_RE = _re.compile(r"\s*[、,，]\s*")
_BOLD_RE = _re.compile(r"\*\*(.+?)\*\*")
_CANDIDATE_SEP_RE = _re.compile(r"[,，、\s]+")


def has_kanji(text: str) -> bool:
    return bool(_KANJI_RE.search(text or ""))


def has_ascii_alnum(text: str) -> bool:
    return bool(_ASCII_ALNUM_RE.search(text or ""))


def first_kanji(text: str) -> Optional[str]:
    match = _KANJI_RE.search(text or "")
    return match.group() if match else None


def hiragana_reading(word: str) -> str:
    return "".join(item["hira"] for item in _kakasi.convert(word))


def strip_bold(text: str) -> str:
    return _BOLD_RE.sub(r"\1", text)


def parse_word_list(text: str) -> List[WordEntry]:
    """Parse a "1. 食べる、たべる、to eat" list into entries.

    Entries without any kanji are dropped, duplicates keep their first
    position, and a missing reading is filled in with pykakasi.
    """
    entries: List[WordEntry] = []
    seen = set()
    for line in (text or "").splitlines():
        line = strip_bold(_LIST_MARKER_RE.sub("", line)).strip()
        if not line:
            continue
        fields = _FIELD_SEP_RE.split(line, maxsplit=2)
        raw = fields[0].strip().strip("「」[]()（）")
        if not has_kanji(raw) or raw in seen:
            continue
        seen.add(raw)
        reading = fields[1].strip() if len(fields) > 1 else ""
        meaning = fields[2].strip() if len(fields) > 2 else ""
        entries.append(WordEntry(raw=raw, reading=reading or hiragana_reading(raw), meaning=meaning))
    return entries


def format_word_list(entries: List[WordEntry]) -> str:
    return "\n".join(
        f"{i}. {e.raw}、{e.reading}、{e.meaning}".rstrip("、")
        for i, e in enumerate(entries, 1)
    )


def story_to_html(text: str) -> str:
    return _BOLD_RE.sub(r"<strong>\1</strong>", html.escape(text or ""))


def parse_candidates(text: str) -> List[str]:
    """Split the recognizer's comma list into at most ten distinct single kanji."""
    out: List[str] = []
    for token in _CANDIDATE_SEP_RE.split(strip_bold(text or "")):
        token = token.strip().strip("。.「」")
        if len(token) == 1 and has_kanji(token) and token not in out:
            out.append(token)
        if len(out) == MAX_CANDIDATES:
            break
    return out


def is_reference_link(link: str) -> bool:
    try:
        parsed = urlparse(link or "")
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    return parsed.scheme in ("http", "https") and (host == JISHO_DOMAIN or host.endswith("." + JISHO_DOMAIN))


def ensure_reference_link(details: KanjiDetails, kanji: str) -> KanjiDetails:
    updates = {}
    if not details.kanji:
        updates["kanji"] = kanji
    if not is_reference_link(details.jisho_link):
        logger.info("Replacing reference link", extra={"component": "gateway", "detail": details.jisho_link or "<missing>"})
        updates["jisho_link"] = jisho_fallback_link(kanji)
    return details.model_copy(update=updates) if updates else details
