"""Static demo data served when the store is degraded.

Everything returned from here reaches clients flagged ``degraded``; callers
receive deep copies so request handlers can annotate them freely.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from schemas import ProfileDefaults

DEMO_USER_PREFIX = "demo_"

_DEMO_USERS: Dict[str, Dict[str, Any]] = {
    "demo_john_doe": {
        "id": "demo_john_doe",
        "email": "john@doe.com",
        "display_name": "John Doe",
        "first_name": "John",
        "last_name": "Doe",
        "profile": {
            **ProfileDefaults(
                learning_style={"visual": 0.8, "auditory": 0.6, "kinesthetic": 0.7},
                skill_level={"theory": "intermediate", "tooling": "beginner", "prompting": "intermediate"},
            ).model_dump(),
            "total_lessons_completed": 12,
            "current_streak": 5,
        },
    },
    "demo_profai": {
        "id": "demo_profai",
        "email": "demo@profai.com",
        "display_name": "Demo User",
        "first_name": "Demo",
        "last_name": "User",
        "profile": {
            **ProfileDefaults().model_dump(),
            "total_lessons_completed": 3,
            "current_streak": 1,
        },
    },
}

_COURSES: List[Dict[str, Any]] = [
    {
        "id": "course-ml-fundamentals",
        "title": "Machine Learning Fundamentals",
        "description": "Core machine learning concepts with worked examples and applied theory.",
        "category": "theory",
        "difficulty": "beginner",
        "total_lessons": 8,
        "completed_lessons": 0,
        "progress": 0,
    },
    {
        "id": "course-prompt-engineering",
        "title": "Advanced Prompt Engineering",
        "description": "Write effective prompts to get the most out of generative models.",
        "category": "tooling",
        "difficulty": "intermediate",
        "total_lessons": 6,
        "completed_lessons": 0,
        "progress": 0,
    },
    {
        "id": "course-deep-learning",
        "title": "Deep Learning with PyTorch",
        "description": "Build deep neural networks and understand the algorithms behind modern AI.",
        "category": "hybrid",
        "difficulty": "advanced",
        "total_lessons": 12,
        "completed_lessons": 0,
        "progress": 0,
    },
    {
        "id": "course-nlp-basics",
        "title": "Natural Language Processing",
        "description": "How machines understand and generate human language.",
        "category": "theory",
        "difficulty": "intermediate",
        "total_lessons": 5,
        "completed_lessons": 0,
        "progress": 0,
    },
    {
        "id": "course-ai-ethics",
        "title": "Ethics in Artificial Intelligence",
        "description": "Ethical and social aspects of building responsible AI.",
        "category": "theory",
        "difficulty": "beginner",
        "total_lessons": 4,
        "completed_lessons": 0,
        "progress": 0,
    },
]

_PRACTICE_FEEDBACK = {
    "feedback": (
        "Your answer was saved for review. The tutor is unavailable right now, "
        "so compare your solution with the lesson examples and try again shortly."
    ),
    "score": None,
    "hints": [
        "Re-read the exercise statement and list the inputs and expected outputs.",
        "Test your solution on a small example before generalising.",
    ],
}


def is_demo_user(user_id: Optional[str]) -> bool:
    return bool(user_id) and (user_id in _DEMO_USERS or str(user_id).startswith(DEMO_USER_PREFIX))


def demo_user(user_id: Optional[str] = None) -> Dict[str, Any]:
    """Return the demo user for ``user_id`` or the generic demo account."""

    record = _DEMO_USERS.get(user_id or "") or _DEMO_USERS["demo_profai"]
    return copy.deepcopy(record)


def courses() -> List[Dict[str, Any]]:
    return copy.deepcopy(_COURSES)


def practice_feedback() -> Dict[str, Any]:
    return copy.deepcopy(_PRACTICE_FEEDBACK)
