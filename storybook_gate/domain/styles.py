from __future__ import annotations

from .errors import INVALID_ARGUMENT, DomainError

DEFAULT_STYLE_PROMPT = "children book illustration, cartoon style, vibrant colors"

NEGATIVE_PROMPT = "worst quality, low quality, blurry, distorted, deformed, ugly"

ILLUSTRATION_STYLES: dict[str, str] = {
    "cartoon-adventure": (
        "cartoon illustration style, vibrant colors, cheerful adventure scene, "
        "children book illustration, playful expression"
    ),
    "storybook-magic": (
        "storybook illustration, magical fantasy scene, soft watercolor style, whimsical, dreamy atmosphere"
    ),
    "superhero": "superhero illustration, comic book style, dynamic pose, heroic scene, bold colors",
    "princess-fantasy": (
        "princess illustration, fairy tale castle background, magical dress, enchanted forest, sparkles"
    ),
    "space-explorer": "space explorer illustration, astronaut suit, planets and stars background, sci-fi adventure",
    "animal-friend": "cute illustration with adorable animals, friendly pets, playful scene, warm colors",
}


def style_prompt(style: str) -> str:
    """Prompt fragment for `style`; unknown keys fall back to the default prompt."""
    return ILLUSTRATION_STYLES.get((style or "").strip(), DEFAULT_STYLE_PROMPT)


def build_prompt(style: str) -> str:
    if not (style or "").strip():
        raise DomainError(code=INVALID_ARGUMENT, message="style cannot be empty.")
    return f"Children book illustration of a child, {style_prompt(style)}, colorful, cute, soft lighting"
