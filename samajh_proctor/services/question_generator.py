"""
services/question_generator.py

LLM question generation for test authoring.
Public API:
  - split_by_difficulty(count, difficulties) -> Dict[str, int]
  - generate_questions(topic, difficulties, count, api_key, client) -> List[Question]

Design:
- Gemini through its OpenAI-compatible endpoint (openai SDK)
- one request per difficulty level, JSON-object responses
- a failed level is skipped, never aborts the whole run
- invalid items are dropped with a warning
"""

import json
import logging
import re
import time
import uuid
from typing import Dict, List, Optional

from openai import APIError, OpenAI, RateLimitError
from pydantic import ValidationError

from config import GEMINI_BASE_URL, MAX_QUESTIONS_PER_TEST, MODEL_NAME
from samajh_proctor.models.question_model import Question

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "intermediate", "hard")

_MAX_API_RETRIES = 3
_BACKOFF_BASE = 1.0
_RATE_LIMIT_MAX_RETRIES = 5
_RATE_LIMIT_BACKOFF_BASE = 2.0


def _make_client(api_key: str) -> Optional[OpenAI]:
    if not api_key:
        logger.warning("No API key provided.")
        return None
    try:
        return OpenAI(api_key=api_key, base_url=GEMINI_BASE_URL)
    except Exception as e:
        logger.error(f"LLM client initialisation failed: {e}")
        return None


# ══════════════════════════════════════════════════════════════════════════════
# Public API
# ══════════════════════════════════════════════════════════════════════════════

def split_by_difficulty(count: int, difficulties: List[str]) -> Dict[str, int]:
    """Even split; the remainder goes to the first levels."""
    base, remainder = divmod(count, len(difficulties))
    return {d: base + (1 if i < remainder else 0) for i, d in enumerate(difficulties)}


def generate_questions(
    topic: str,
    difficulties: List[str],
    count: int,
    api_key: str = "",
    client: Optional[OpenAI] = None,
) -> List[Question]:
    """
    Generate multiple-choice questions about a topic.

    Raises:
        ValueError:   empty topic, no/unknown difficulty, bad count.
        RuntimeError: no usable LLM client.
    """
    topic = (topic or "").strip()
    if not topic:
        raise ValueError("topic is required")
    if not difficulties:
        raise ValueError("at least one difficulty level is required")
    unknown = [d for d in difficulties if d not in DIFFICULTIES]
    if unknown:
        raise ValueError(f"unknown difficulty levels: {unknown}")
    if not 1 <= count <= MAX_QUESTIONS_PER_TEST:
        raise ValueError(f"count must be between 1 and {MAX_QUESTIONS_PER_TEST}")

    client = client or _make_client(api_key)
    if client is None:
        raise RuntimeError("Gemini API key is missing or the client could not be created.")

    questions: List[Question] = []
    for difficulty, n in split_by_difficulty(count, difficulties).items():
        if n == 0:
            continue
        logger.info(f"Generating {n} {difficulty} questions about {topic}")
        batch = _generate_batch(topic, difficulty, n, client)
        if len(batch) != n:
            logger.warning(f"{difficulty}: asked for {n}, got {len(batch)}")
        questions.extend(batch[:n])

    logger.info(f"generate_questions: {len(questions)}/{count} questions for {topic}")
    return questions


# ══════════════════════════════════════════════════════════════════════════════
# Internals
# ══════════════════════════════════════════════════════════════════════════════

def _generate_batch(topic: str, difficulty: str, n: int, client: OpenAI) -> List[Question]:
    system_prompt = _build_system_prompt()
    user_prompt = (
        f"Generate EXACTLY {n} multiple-choice interview questions about {topic} "
        f"with difficulty level: {difficulty}."
    )

    raw = _call_llm(system_prompt, user_prompt, client)
    if raw is None:
        return []
    questions = _parse_response_to_questions(raw, difficulty)
    if questions is not None:
        return questions

    raw = _call_llm(system_prompt + "\n\nReturn ONLY a valid JSON object.", user_prompt, client)
    if raw:
        questions = _parse_response_to_questions(raw, difficulty)
        if questions is not None:
            return questions

    logger.error(f"Question generation failed: {topic} / {difficulty}")
    return []


def _build_system_prompt() -> str:
    return (
        "You write multiple-choice questions for technical interview tests.\n"
        "\n"
        "[Output]\n"
        'Respond with a JSON object of the form {"questions": [...]} and nothing else.\n'
        "No markdown, no backticks, no commentary.\n"
        "\n"
        "[Question fields]\n"
        "{\n"
        '  "text": (str) the question,\n'
        '  "options": (list[str]) exactly four answer options,\n'
        '  "correct_answer": (int) index 0-3 of the correct option,\n'
        '  "explanation": (str) why the correct option is correct,\n'
        '  "difficulty": (str) the requested difficulty level,\n'
        '  "code_snippet": (str|null) code shown with the question, if any\n'
        "}\n"
        "\n"
        "[Rules]\n"
        "1. Generate exactly the number of questions requested.\n"
        "2. Questions must test understanding, not trivia.\n"
        "3. Exactly one option is correct."
    )


def _parse_response_to_questions(raw_response: str, difficulty: str) -> Optional[List[Question]]:
    """LLM JSON -> Question list. None if the response is not parseable."""
    cleaned = _clean_json_response(raw_response)
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None

    if isinstance(data, dict):
        data = data.get("questions", data.get("items", []))
    if not isinstance(data, list):
        return None

    questions: List[Question] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            continue
        if not str(item.get("text", "")).strip() or not item.get("options"):
            continue

        item.setdefault("difficulty", difficulty)
        if item["difficulty"] not in DIFFICULTIES:
            item["difficulty"] = difficulty
        if item.get("code_snippet"):
            item.setdefault("type", "code_snippet")

        try:
            item["correct_answer"] = int(item.get("correct_answer"))
            questions.append(Question(id=uuid.uuid4().hex[:12], **{k: v for k, v in item.items() if k != "id"}))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"item[{idx}]: invalid question - {e}")
            continue

    return questions


def _clean_json_response(response_text: str) -> str:
    """Strip markdown fences and surrounding chatter from an LLM reply."""
    if not response_text:
        return ""

    text = re.sub(r"```(?:json)?\s*", "", response_text, flags=re.IGNORECASE)
    text = re.sub(r"```", "", text)
    text = text.strip()

    if text.startswith("{") or text.startswith("["):
        return text

    match = re.search(r"[{[].*[}\]]", text, re.DOTALL)
    if match:
        return match.group(0).strip()

    return ""


def _call_llm(
    system_prompt: str,
    user_content: str,
    client: Optional[OpenAI] = None,
    max_retries: int = _MAX_API_RETRIES,
) -> Optional[str]:
    """Chat completion with exponential backoff on rate limits and transient errors."""
    if client is None:
        return None

    last_exception: Optional[Exception] = None
    effective_retries = max_retries

    attempt = 0
    while attempt < effective_retries:
        attempt += 1
        try:
            response = client.chat.completions.create(
                model=MODEL_NAME,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=0.7,
                response_format={"type": "json_object"},
                max_tokens=8192,
            )
            return response.choices[0].message.content
        except RateLimitError as e:
            last_exception = e
            effective_retries = _RATE_LIMIT_MAX_RETRIES
            if attempt < effective_retries:
                wait = _RATE_LIMIT_BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(f"Rate limited, retrying in {wait:.1f}s ({attempt}/{effective_retries})")
                time.sleep(wait)
            else:
                logger.error("Rate limit retries exhausted.")
                break
        except APIError as e:
            last_exception = e
            error_str = str(e).lower()
            is_transient = any(k in error_str for k in ("timeout", "connection", "unavailable"))
            if getattr(e, "status_code", None) in (500, 502, 503, 504):
                is_transient = True
            if attempt < effective_retries and is_transient:
                wait = _BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(f"API error, retrying in {wait:.1f}s ({attempt}/{effective_retries})")
                time.sleep(wait)
            else:
                logger.error(f"API error: {e}")
                break
        except Exception as e:
            last_exception = e
            logger.error(f"Unexpected error: {type(e).__name__}: {e}")
            break

    logger.error(f"LLM call failed: {last_exception}")
    return None
