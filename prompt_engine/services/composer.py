import asyncio
import html
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

from prompt_engine.config import Settings
from prompt_engine.models import PromptContent, ResearchReport
from prompt_engine.services.clients import LazyClient

logger = logging.getLogger(__name__)

MAX_TAGS = 5
MAX_ANGLES = 3

_SYSTEM = """You write writing prompts that make people want to start writing.

Hooks are short, punchy and direct: a plain question, observation or statement that creates curiosity.
Blurbs are simple and conversational, like explaining something to a friend. Short sentences.
Avoid jargon and fancy words ("paradigm", "discourse", "navigate", "precipice").
Answer with JSON only."""

_USER = """Research about "{interest}":
---
Trends: {trends}
Interesting angles: {angles}
Current events: {events}
Debates: {debates}
Summary: {summary}
Sources:
{sources}
---

Write one writing prompt:
1. "hook": the headline, {min_words}-{max_words} words
2. "blurb": {max_paragraphs} short paragraphs at most, HTML <p> tags, under 120 words, link a source if useful
3. "tags": 3-5 topic tags
4. "suggestedAngles": 2-3 specific angles the writer could take

Output exactly:
{{"hook": "...", "blurb": "<p>...</p>", "tags": ["..."], "suggestedAngles": ["..."]}}"""


def _slug(text: str) -> str:
    return re.sub(r"\s+", "-", text.strip().lower())


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def _format_sources(report: ResearchReport) -> str:
    if not report.sources:
        return "No sources available"
    return "\n".join(f"- {s.title}{f' ({s.url})' if s.url else ''}: {s.snippet}" for s in report.sources[:5])


# ---------- parse chain: each step looks only at the raw text ----------

def _loads_object(raw: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_fenced_json(text: str) -> Optional[Dict[str, Any]]:
    m = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    return _loads_object(m.group(1).strip()) if m else None


def _first_balanced_block(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None
    depth, in_string, escaped = 0, False, False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def parse_balanced_json(text: str) -> Optional[Dict[str, Any]]:
    block = _first_balanced_block(text)
    if block is None:
        return None
    no_trailing = re.sub(r",\s*([}\]])", r"\1", block)
    for candidate in (block, no_trailing, no_trailing.replace("'", '"')):
        data = _loads_object(candidate)
        if data is not None:
            return data
    return None


def _field(text: str, name: str) -> Optional[str]:
    m = re.search(rf"[\"']?{name}[\"']?\s*:\s*\"((?:[^\"\\]|\\.)+)\"", text, re.IGNORECASE) \
        or re.search(rf"[\"']?{name}[\"']?\s*:\s*'([^']+)'", text, re.IGNORECASE)
    return m.group(1).strip() if m else None


def parse_fields(text: str) -> Optional[Dict[str, Any]]:
    hook = _field(text, "hook")
    if not hook:
        return None
    blurb = _field(text, "blurb")
    if not blurb:
        m = re.search(r"<p>[\s\S]*</p>", text)
        blurb = m.group(0) if m else None
    return {"hook": hook, "blurb": blurb}


PARSERS: Sequence[Callable[[str], Optional[Dict[str, Any]]]] = (
    parse_fenced_json,
    parse_balanced_json,
    parse_fields,
)


def parse_composition(text: str) -> Optional[Dict[str, Any]]:
    for parser in PARSERS:
        parsed = parser(text or "")
        if parsed is not None:
            return parsed
    return None


# ---------- validation ----------

def enforce_hook(hook: Any, interest: str, max_words: int) -> str:
    """Bound a hook to ``max_words``: first sentence, then a hard word cut."""
    if not isinstance(hook, str) or not hook.strip():
        return fallback_hook(interest, max_words)
    hook = " ".join(hook.split())
    if len(hook.split()) <= max_words:
        return hook
    m = re.match(r"(.+?[.!?])(?:\s|$)", hook)
    sentence = m.group(1) if m else hook
    words = sentence.split()
    if len(words) > max_words:
        return " ".join(words[:max_words])
    return sentence


def fallback_hook(interest: str, max_words: int) -> str:
    hook = f"What is really happening with {interest.lower().strip()} right now, and why?"
    return enforce_hook(hook, interest, max_words)


def minimal_blurb(report: ResearchReport) -> str:
    summary = report.summary if len(report.summary) <= 100 else report.summary[:100] + "..."
    interest = html.escape(report.interest.lower())
    return f"<p>Something interesting is happening with {interest}. {html.escape(summary)}</p>".replace(" </p>", "</p>")


def enforce_blurb(blurb: Any, report: ResearchReport, max_paragraphs: int) -> str:
    if not isinstance(blurb, str) or not blurb.strip():
        return minimal_blurb(report)
    if "<p" not in blurb:
        segments = [s.strip() for s in blurb.splitlines() if s.strip()]
        blurb = "".join(f"<p>{s}</p>" for s in segments)
    paragraphs = re.findall(r"<p\b[^>]*>[\s\S]*?</p>", blurb)
    if len(paragraphs) > max_paragraphs:
        return "".join(paragraphs[:max_paragraphs])
    return blurb


def fallback_content(report: ResearchReport, max_words: int = 18) -> PromptContent:
    return PromptContent(
        hook=fallback_hook(report.interest, max_words),
        blurb=minimal_blurb(report),
        tags=[_slug(report.interest)] if report.interest.strip() else [],
        suggested_angles=report.interesting_angles[:MAX_ANGLES],
    )


class ContentComposer:
    """Turns a research report into a hook, blurb, tags and angles."""

    def __init__(self, client: LazyClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def compose(self, report: ResearchReport) -> PromptContent:
        if not self.client.configured:
            logger.info("Composer not configured; using fallback content for %r", report.interest)
            return fallback_content(report, self.settings.HOOK_MAX_WORDS)
        text = None
        for model in (self.settings.OPENROUTER_COMPOSER_MODEL, self.settings.OPENROUTER_COMPOSER_FALLBACK_MODEL):
            try:
                text = await asyncio.wait_for(self._call(model, report), timeout=self.settings.COMPOSER_TIMEOUT_SECONDS)
                break
            except Exception as exc:
                logger.warning("Composer call with %s failed for %r: %s", model, report.interest, exc)
        if not text:
            return fallback_content(report, self.settings.HOOK_MAX_WORDS)
        return self.build_content(text, report)

    async def _call(self, model: str, report: ResearchReport) -> Optional[str]:
        client = await self.client.get()
        none = "None identified"
        prompt = _USER.format(
            interest=report.interest,
            trends=", ".join(report.trends) or none,
            angles=", ".join(report.interesting_angles) or none,
            events=", ".join(report.current_events) or none,
            debates=", ".join(report.debates_and_discussions) or none,
            summary=report.summary,
            sources=_format_sources(report),
            min_words=self.settings.HOOK_MIN_WORDS,
            max_words=self.settings.HOOK_MAX_WORDS,
            max_paragraphs=self.settings.BLURB_MAX_PARAGRAPHS,
        )
        resp = await client.chat.completions.create(
            model=model,
            messages=[{"role": "system", "content": _SYSTEM}, {"role": "user", "content": prompt}],
            max_tokens=self.settings.COMPOSER_MAX_TOKENS,
            temperature=self.settings.COMPOSER_TEMPERATURE,
        )
        return resp.choices[0].message.content if resp.choices else None

    def build_content(self, text: str, report: ResearchReport) -> PromptContent:
        parsed = parse_composition(text)
        if parsed is None:
            logger.warning("Could not parse composition for %r; using fallback", report.interest)
            return fallback_content(report, self.settings.HOOK_MAX_WORDS)
        tags = _strings(parsed["tags"]) if "tags" in parsed else [_slug(report.interest)]
        if "suggestedAngles" in parsed:
            angles = _strings(parsed["suggestedAngles"])
        elif "suggested_angles" in parsed:
            angles = _strings(parsed["suggested_angles"])
        else:
            angles = list(report.interesting_angles)
        return PromptContent(
            hook=enforce_hook(parsed.get("hook"), report.interest, self.settings.HOOK_MAX_WORDS),
            blurb=enforce_blurb(parsed.get("blurb"), report, self.settings.BLURB_MAX_PARAGRAPHS),
            tags=tags[:MAX_TAGS],
            suggested_angles=angles[:MAX_ANGLES],
        )
