"""Gemini integration for analysis refinement, speech-to-form, chat and image tagging.

Every call is bounded by ``AI_TIMEOUT_SECONDS`` and every response is shape-checked before
use. Any failure is raised internally as ``UpstreamUnavailable`` and the public helpers
answer with the rule-based fallback instead, so callers always receive a valid result.
"""
import json
import re
from typing import Any, Dict, List, Optional

from flask import current_app
from google import genai
from google.genai import types

from models import ISSUE_CATEGORIES
from utils.errors import InvalidInput, UpstreamUnavailable
from utils.triage import MIN_KEYWORDS, infer_category

TITLE_MAX_CHARS = 100

CHAT_SYSTEM_PROMPT = (
    "You are CivicBot, an AI assistant specialized in helping with civic issues and community reporting. "
    "You can help users with understanding how to report civic issues, information about issue categories, "
    "the reporting process, tips for documenting issues effectively and general civic engagement guidance. "
    "Citizens report problems such as potholes, broken streetlights, garbage and graffiti, attach photos "
    "and videos, and vote on reports; officials triage and resolve them. "
    "Be helpful, friendly and focused on civic engagement. Keep responses concise but informative."
)

CHAT_FALLBACK_REPLY = (
    "I can't reach the assistant right now. To report an issue, choose a category, add a short title, "
    "describe the problem and its location, and attach a photo if you can. You can also vote on existing "
    "reports to help officials prioritise them."
)


def _first_json_block(text: str) -> str:
    """Extract the first JSON object block from free-form text."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def _safe_json_loads(raw_text: str) -> Dict[str, Any]:
    """Parse JSON robustly, tolerating leading/trailing noise or code fences."""
    cleaned = raw_text.strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        payload = json.loads(_first_json_block(cleaned))
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object")
    return payload


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _coerce_unit_float(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise UpstreamUnavailable(f"Invalid numeric field from model: {field}")
    if not 0.0 <= number <= 1.0:
        raise UpstreamUnavailable(f"Out-of-range field from model: {field}")
    return number


def _coerce_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        return [str(value).strip()] if str(value).strip() else []
    result = []
    for item in value:
        text = str(item).strip()
        if text:
            result.append(text)
    return result


def _match_category(value: Any) -> Optional[str]:
    """Exact match first, then case-insensitive containment either way."""
    text = _coerce_str(value)
    if not text:
        return None
    if text in ISSUE_CATEGORIES:
        return text
    lowered = text.lower()
    for category in ISSUE_CATEGORIES:
        if category.lower() == lowered:
            return category
    for category in ISSUE_CATEGORIES:
        if category.lower() in lowered or lowered in category.lower():
            return category
    return None


def _client() -> genai.Client:
    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        raise UpstreamUnavailable("GEMINI_API_KEY is not configured")
    timeout_ms = int(float(current_app.config.get("AI_TIMEOUT_SECONDS", 8)) * 1000)
    return genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=timeout_ms))


def _response_text(response) -> str:
    raw_text = (getattr(response, "text", None) or "").strip()
    if not raw_text and getattr(response, "candidates", None):
        # Blocked or truncated candidates carry no content; treat them as empty output.
        content = getattr(response.candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        raw_text = "".join(getattr(p, "text", "") or "" for p in parts).strip()
    return raw_text


def _generate(
    contents: list,
    *,
    purpose: str,
    json_mode: bool = True,
    temperature: float = 0.3,
    max_output_tokens: int = 1000,
    system_instruction: Optional[str] = None,
) -> str:
    client = _client()
    model_name = current_app.config.get("GEMINI_MODEL", "gemini-2.5-flash")
    config = types.GenerateContentConfig(
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        response_mime_type="application/json" if json_mode else None,
        system_instruction=system_instruction,
    )
    current_app.logger.info("Dispatching Gemini request", extra={"purpose": purpose, "model": model_name})
    try:
        response = client.models.generate_content(model=model_name, contents=contents, config=config)
    except Exception as exc:  # pragma: no cover - relies on remote service
        current_app.logger.warning(
            "Gemini request failed", extra={"purpose": purpose, "error": str(exc)}
        )
        raise UpstreamUnavailable("Gemini request failed") from exc

    raw_text = _response_text(response)
    if not raw_text:
        raise UpstreamUnavailable("Gemini returned an empty response")
    return raw_text


def _generate_json(contents: list, *, purpose: str, **kwargs) -> Dict[str, Any]:
    raw_text = _generate(contents, purpose=purpose, json_mode=True, **kwargs)
    try:
        return _safe_json_loads(raw_text)
    except (ValueError, json.JSONDecodeError) as exc:
        raise UpstreamUnavailable("Gemini returned non-JSON output") from exc


def build_analysis_prompt(issue, baseline: Dict[str, Any]) -> str:
    location = issue.address or (
        f"{issue.latitude},{issue.longitude}" if issue.latitude is not None else "Unknown"
    )
    return (
        "You triage civic issue reports for a city operations team. "
        f"Allowed categories: {', '.join(ISSUE_CATEGORIES)}. "
        f"Title: {issue.title}. Description: {issue.description}. "
        f"Reported category: {issue.category}. Location: {location}. "
        f"A rule-based classifier suggested {baseline.get('predicted_category')} "
        f"with confidence {baseline.get('category_confidence')}. "
        "Return strict JSON with fields: predicted_category (one of the allowed categories, exact spelling), "
        "category_confidence (0-1), alternative_categories (object mapping allowed category to confidence 0-1, "
        "each lower than category_confidence), extracted_keywords (array of 3-8 lowercase keywords). "
        "Do not include markdown. JSON only."
    )


def refine_analysis(issue, baseline: Dict[str, Any]) -> Dict[str, Any]:
    """Ask the model to refine category and keywords; raises ``UpstreamUnavailable`` on any mismatch."""
    payload = _generate_json(
        [build_analysis_prompt(issue, baseline)],
        purpose="analysis",
        temperature=0.3,
        max_output_tokens=1000,
    )

    category = _coerce_str(payload.get("predicted_category"))
    if category not in ISSUE_CATEGORIES:
        raise UpstreamUnavailable("Model returned an unknown category")
    confidence = _coerce_unit_float(payload.get("category_confidence"), "category_confidence")

    raw_alternatives = payload.get("alternative_categories") or {}
    if not isinstance(raw_alternatives, dict):
        raise UpstreamUnavailable("alternative_categories must be an object")
    alternatives: Dict[str, float] = {}
    for name, score in raw_alternatives.items():
        if name in ISSUE_CATEGORIES and name != category:
            value = _coerce_unit_float(score, "alternative_categories")
            if value < confidence:
                alternatives[name] = value

    keywords: List[str] = []
    for word in _coerce_str_list(payload.get("extracted_keywords")):
        word = word.lower()
        if word not in keywords:
            keywords.append(word)
    for word in baseline.get("extracted_keywords", []):
        if len(keywords) >= MIN_KEYWORDS:
            break
        if word not in keywords:
            keywords.append(word)

    return {
        "predicted_category": category,
        "category_confidence": confidence,
        "alternative_categories": alternatives,
        "extracted_keywords": keywords,
    }


def build_speech_prompt(transcript: str) -> str:
    return (
        "You extract structured information from speech transcripts about civic issues. "
        f"Available categories: {', '.join(ISSUE_CATEGORIES)}. "
        "Return ONLY a JSON object with keys: title (brief, max 100 characters), description (2-4 sentences), "
        "category (one of the available categories, exact spelling), address (location mentioned, or empty), "
        "area (neighbourhood mentioned, or empty). If the location is unclear leave address and area empty. "
        f'Speech transcript: "{transcript}"'
    )


def _speech_fallback(transcript: str) -> Dict[str, Any]:
    title = transcript[:TITLE_MAX_CHARS].strip() or "Civic Issue Report"
    suggestion = infer_category(title, transcript)
    return {
        "title": title,
        "description": transcript,
        "category": suggestion["category"],
        "address": "",
        "area": "",
        "source": "heuristic",
    }


def speech_to_form(transcript: Any) -> Dict[str, Any]:
    if not isinstance(transcript, str) or not transcript.strip():
        raise InvalidInput("Transcript is required", details={"field": "transcript"})
    transcript = transcript.strip()

    try:
        payload = _generate_json(
            [build_speech_prompt(transcript)],
            purpose="speech_to_form",
            temperature=0.2,
            max_output_tokens=500,
        )
    except UpstreamUnavailable:
        current_app.logger.info("Speech-to-form using heuristic fallback")
        return _speech_fallback(transcript)

    title = _coerce_str(payload.get("title"))[:TITLE_MAX_CHARS] or transcript[:TITLE_MAX_CHARS].strip()
    description = _coerce_str(payload.get("description")) or transcript
    category = _match_category(payload.get("category")) or infer_category(title, description)["category"]
    return {
        "title": title,
        "description": description,
        "category": category,
        "address": _coerce_str(payload.get("address")),
        "area": _coerce_str(payload.get("area")),
        "source": "ai",
    }


def chat_reply(message: Any, context: Optional[str] = None) -> Dict[str, str]:
    if not isinstance(message, str) or not message.strip():
        raise InvalidInput("Message is required", details={"field": "message"})
    system_instruction = CHAT_SYSTEM_PROMPT
    if context:
        system_instruction = f"{system_instruction}\nAdditional context: {context}"
    try:
        text = _generate(
            [message.strip()],
            purpose="chat",
            json_mode=False,
            temperature=0.7,
            max_output_tokens=500,
            system_instruction=system_instruction,
        )
    except UpstreamUnavailable:
        return {"response": CHAT_FALLBACK_REPLY, "source": "fallback"}
    return {"response": text, "source": "ai"}


def build_tagging_prompt() -> str:
    return (
        "Look at this photo of a public space and list the visible civic problems. "
        'Return strict JSON: {"tags": [..]} with 1-6 short lowercase tags such as '
        '"pothole", "street_light", "graffiti", "garbage", "fallen_tree", "water_leak". '
        "Return an empty list if no civic problem is visible. JSON only."
    )


def tag_image(image_bytes: bytes, mime_type: str) -> List[str]:
    try:
        payload = _generate_json(
            [
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                types.Part.from_text(text=build_tagging_prompt()),
            ],
            purpose="image_tags",
            temperature=0.2,
            max_output_tokens=200,
        )
    except UpstreamUnavailable:
        return []
    tags: List[str] = []
    for tag in _coerce_str_list(payload.get("tags")):
        tag = tag.lower()
        if tag not in tags:
            tags.append(tag)
    return tags
