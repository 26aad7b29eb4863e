import json
import logging
import re
from time import perf_counter
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from schemas import PracticeFeedback, parse_json_safe

logger = logging.getLogger(__name__)

DEFAULT_LLM_URL = "http://localhost:4891/v1/chat/completions"
DEFAULT_MODEL_ID = "gpt-4o-mini"

FEEDBACK_SYSTEM_PROMPT = """You are ProfAI, a patient tutor for applied AI and machine learning.
Review the learner's answer to the exercise. Be specific and encouraging.
{tone}
Reply with exactly one JSON object and nothing after it:
{{"feedback": "<2-4 sentences>", "score": <number between 0 and 1>, "hints": ["<short hint>", ...]}}"""

_TONE_BY_STATE = {
    "confused": "The learner is confused: explain the key idea again in simpler terms before judging the answer.",
    "frustrated": "The learner is frustrated: lead with what they did right and keep hints small.",
    "engaged": "The learner is engaged: add one stretch question that goes beyond the exercise.",
}


class TutorServiceError(RuntimeError):
    """Raised when the completion service cannot produce feedback."""


def _strip_think(text: str) -> str:
    return re.sub(r"<think>.*?</think>", "", text or "", flags=re.DOTALL).strip()


def build_feedback_messages(
    exercise: str,
    answer: str,
    affective_state: Optional[str] = None,
) -> List[Dict[str, str]]:
    tone = _TONE_BY_STATE.get(affective_state or "", "")
    return [
        {"role": "system", "content": FEEDBACK_SYSTEM_PROMPT.format(tone=tone)},
        {"role": "user", "content": f"Exercise:\n{exercise.strip()}\n\nLearner answer:\n{answer.strip()}"},
    ]


def _llm_call(
    messages: List[Dict[str, str]],
    *,
    url: str = DEFAULT_LLM_URL,
    model: str = DEFAULT_MODEL_ID,
    timeout: float = 30.0,
    max_tokens: Optional[int] = 400,
    http: Any = requests,
) -> str:
    payload: Dict[str, Any] = {"model": model, "messages": messages, "temperature": 0.3}
    if max_tokens is not None:
        payload["max_tokens"] = int(max_tokens)

    start = perf_counter()
    try:
        r = http.post(url, json=payload, timeout=timeout)
        if r.status_code == 400:
            # Some local servers reject optional parameters; retry with the bare payload.
            r = http.post(url, json={"model": model, "messages": messages}, timeout=timeout)
        r.raise_for_status()
        data = r.json()
    except requests.HTTPError as e:
        status = getattr(getattr(e, "response", None), "status_code", "unknown")
        raise TutorServiceError(f"LLM-HTTP {status}") from e
    except (requests.RequestException, ValueError) as e:
        raise TutorServiceError(f"LLM error: {e}") from e
    finally:
        logger.info("LLM call to %s finished in %d ms", model, int((perf_counter() - start) * 1000))

    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        try:
            return data["choices"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise TutorServiceError(f"Unexpected LLM response: {json.dumps(data)[:300]}") from None


def generate_practice_feedback(
    exercise: str,
    answer: str,
    *,
    affective_state: Optional[str] = None,
    url: str = DEFAULT_LLM_URL,
    model: str = DEFAULT_MODEL_ID,
    timeout: float = 30.0,
    http: Any = requests,
) -> PracticeFeedback:
    """Ask the completion service to review ``answer``.

    Structured JSON replies are validated; free-text replies are wrapped as
    plain feedback. Transport failures raise :class:`TutorServiceError`.
    """
    messages = build_feedback_messages(exercise, answer, affective_state)
    text = _strip_think(_llm_call(messages, url=url, model=model, timeout=timeout, http=http))
    if not text:
        raise TutorServiceError("LLM returned an empty reply")
    try:
        return parse_json_safe(text, PracticeFeedback)
    except (ValidationError, ValueError):
        logger.debug("LLM reply was not structured feedback; using raw text")
        return PracticeFeedback(feedback=text)
