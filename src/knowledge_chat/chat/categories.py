"""Interest categories offered as conversation starters."""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class InterestCategory:
    id: str
    name: str
    prompts: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "prompts": list(self.prompts)}


INTEREST_CATEGORIES: Tuple[InterestCategory, ...] = (
    InterestCategory(
        id="ict-skills",
        name="ICT Skills",
        prompts=(
            "Help me learn web development from scratch",
            "What programming language should I start with?",
            "Guide me on how to become a software engineer",
            "Explain cloud computing and its career opportunities",
        ),
    ),
    InterestCategory(
        id="business",
        name="Business & Entrepreneurship",
        prompts=(
            "How do I start a small business in Tanzania?",
            "What are the key skills for entrepreneurs?",
            "Help me create a business plan",
            "Guide me on digital marketing strategies",
        ),
    ),
    InterestCategory(
        id="education",
        name="Academic Support",
        prompts=(
            "Help me improve my study habits",
            "What courses should I take for my career goals?",
            "Guide me on time management for students",
            "How do I prepare for university entrance exams?",
        ),
    ),
    InterestCategory(
        id="career",
        name="Career Planning",
        prompts=(
            "Help me choose the right career path",
            "How do I prepare for job interviews?",
            "Review my CV and suggest improvements",
            "What skills are in demand in Tanzania?",
        ),
    ),
)

_BY_ID: Dict[str, InterestCategory] = {c.id: c for c in INTEREST_CATEGORIES}


def get_category(category_id: Optional[str]) -> Optional[InterestCategory]:
    if category_id is None:
        return None
    return _BY_ID.get(category_id)


def is_known_category(category_id: str) -> bool:
    return category_id in _BY_ID
