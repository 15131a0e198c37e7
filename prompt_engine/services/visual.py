import logging
import random
from typing import Any, Dict, List, Optional

import openai
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from prompt_engine.config import Settings
from prompt_engine.models import ArtStyle, GeneratedVisual
from prompt_engine.services.clients import LazyClient

logger = logging.getLogger(__name__)

ART_STYLES: Dict[ArtStyle, Dict[str, str]] = {
    ArtStyle.watercolor: {
        "description": "Soft edges, flowing translucent washes, light and atmosphere",
        "modifiers": "watercolor painting, wet-on-wet, soft bleeding edges, paper texture, impressionist light",
    },
    ArtStyle.oil_paint: {
        "description": "Rich layered color, visible brushwork, depth and warmth",
        "modifiers": "oil painting, impasto, visible brushstrokes, rich pigments, canvas texture",
    },
    ArtStyle.acrylic: {
        "description": "Bold saturated color, crisp shapes, flat graphic planes",
        "modifiers": "acrylic painting, bold colors, matte finish, confident strokes, contemporary",
    },
}

TOPIC_MOODS: Dict[str, List[str]] = {
    "technology": ["futuristic", "cool blue", "circuit-like"],
    "philosophy": ["contemplative", "infinite", "cosmic"],
    "emotion": ["warm", "turbulent", "flowing"],
    "society": ["interconnected", "urban", "textured"],
    "creativ": ["vibrant", "explosive", "playful"],
    "spiritual": ["ethereal", "luminous", "transcendent"],
    "relationship": ["intimate", "intertwined", "tender"],
    "business": ["structured", "ambitious", "ascending"],
    "health": ["organic", "vital", "balanced"],
    "travel": ["expansive", "sunlit", "wandering"],
    "food": ["warm", "abundant", "earthy"],
    "cook": ["warm", "abundant", "earthy"],
    "culture": ["rich", "layered", "diverse"],
}
DEFAULT_MOODS = ["abstract", "thought-provoking", "evocative"]


class EmptyImageResponse(Exception):
    pass


def mood_for(topic: str) -> List[str]:
    t = topic.lower()
    for key, moods in TOPIC_MOODS.items():
        if key in t:
            return moods
    return DEFAULT_MOODS


def build_image_prompt(topic: str, art_style: ArtStyle, context: Optional[str] = None) -> str:
    style = ART_STYLES[art_style]
    lines = [
        f'Abstract artistic interpretation of the concept: "{topic}"',
        "",
        f"Style: {style['description']}",
        f"Mood: {', '.join(mood_for(topic))}",
        f"Artistic modifiers: {style['modifiers']}",
    ]
    if context:
        lines.append(f"Context: {context[:300]}")
    lines += [
        "",
        "Evoke emotion rather than literal imagery. Header image for a personal essay.",
        "No text, letters or words in the image. Clean composition.",
    ]
    return "\n".join(lines)


def _retryable(exc: Exception) -> bool:
    # 429 and 5xx only
    return isinstance(exc, openai.APIStatusError) and (exc.status_code == 429 or exc.status_code >= 500)


class VisualComposer:
    """Generates a header image for a prompt.

    Never raises: a failed generation yields ``image_url == ""`` so callers
    can render a placeholder.
    """

    def __init__(self, client: LazyClient, settings: Settings):
        self.client = client
        self.settings = settings

    @staticmethod
    def available_styles() -> List[Dict[str, str]]:
        return [{"style": s.value, "description": cfg["description"]} for s, cfg in ART_STYLES.items()]

    async def generate(self, topic: str, context: Optional[str] = None,
                       art_style: Optional[ArtStyle] = None) -> GeneratedVisual:
        style = art_style or random.choice(list(ArtStyle))
        prompt = build_image_prompt(topic, style, context)
        url = ""
        if not self.client.configured:
            logger.info("Image service not configured; no visual for %r", topic)
        else:
            for model, attempts in ((self.settings.IMAGE_MODEL, self.settings.IMAGE_MAX_RETRIES + 1),
                                    (self.settings.IMAGE_FALLBACK_MODEL, 1)):
                try:
                    url = await self._generate_with_retry(model, prompt, attempts)
                    break
                except Exception as exc:
                    logger.warning("Image generation with %s failed for %r: %s", model, topic, exc)
        return GeneratedVisual(image_url=url, art_style=style, prompt=prompt)

    async def _generate_with_retry(self, model: str, prompt: str, attempts: int) -> str:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_retryable),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.settings.IMAGE_RETRY_DELAY_SECONDS),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        return await retrying(self._call, model, prompt)

    async def _call(self, model: str, prompt: str) -> str:
        client = await self.client.get()
        resp: Any = await client.images.generate(model=model, prompt=prompt, size=self.settings.IMAGE_SIZE, n=1)
        data = resp.data[0] if resp.data else None
        url = getattr(data, "url", None)
        if not url:
            b64 = getattr(data, "b64_json", None)
            if not b64:
                raise EmptyImageResponse("no image in response")
            url = f"data:image/png;base64,{b64}"
        return url
