import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from prompt_engine.config import Settings
from prompt_engine.models import ResearchReport, ResearchSource
from prompt_engine.services.clients import LazyClient

logger = logging.getLogger(__name__)

_SYSTEM = ("You are a research assistant for a writing app. Find what is happening NOW around a topic: "
           "current trends, debates, surprising findings and fresh angles that would make someone want to write. "
           "Be concise. Answer with JSON only.")

_USER = """Research the topic: "{topic}"

Return a JSON object with these keys:
{{
  "trends": ["3-5 current trends"],
  "interestingAngles": ["3-5 specific, compelling essay angles"],
  "sources": [{{"title": "...", "url": "https://...", "snippet": "key quote or summary"}}],
  "currentEvents": ["2-3 recent events"],
  "debatesAndDiscussions": ["2-3 debates people are having"],
  "summary": "2-3 sentences on what is happening in this space right now"
}}"""

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*\S)\s*$")


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def _sources(value: Any) -> List[ResearchSource]:
    if not isinstance(value, list):
        return []
    out = []
    for s in value:
        if isinstance(s, dict) and s.get("title"):
            out.append(ResearchSource(title=str(s["title"]), url=str(s.get("url") or ""),
                                      snippet=str(s.get("snippet") or "")))
    return out


def citation_sources(citations: Any) -> List[ResearchSource]:
    """Turn the search service's separate citation list into sources."""
    out = []
    for c in citations or []:
        if isinstance(c, str) and c:
            out.append(ResearchSource(title=urlparse(c).netloc or c, url=c))
        elif isinstance(c, dict) and c.get("url"):
            out.append(ResearchSource(title=str(c.get("title") or urlparse(c["url"]).netloc),
                                      url=str(c["url"]), snippet=str(c.get("snippet") or "")))
    return out


def parse_json_report(text: str) -> Optional[Dict[str, Any]]:
    m = re.search(r"\{[\s\S]*\}", text or "")
    if not m:
        return None
    try:
        data = json.loads(m.group(0))
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    return {
        "trends": _strings(data.get("trends")),
        "interesting_angles": _strings(data.get("interestingAngles") or data.get("interesting_angles")),
        "sources": _sources(data.get("sources")),
        "summary": data["summary"].strip() if isinstance(data.get("summary"), str) else "",
        "current_events": _strings(data.get("currentEvents") or data.get("current_events")),
        "debates_and_discussions": _strings(data.get("debatesAndDiscussions") or data.get("debates_and_discussions")),
    }


def parse_bullet_report(text: str) -> Optional[Dict[str, Any]]:
    """Second chance: bullet lines under a heading that mentions trends or angles."""
    trends: List[str] = []
    angles: List[str] = []
    summary_lines: List[str] = []
    current: Optional[List[str]] = None
    for line in (text or "").splitlines():
        if not line.strip():
            continue
        bullet = _BULLET.match(line)
        if bullet:
            if current is not None:
                current.append(bullet.group(1).strip("* "))
            continue
        heading = line.lower()
        if "trend" in heading:
            current = trends
        elif "angle" in heading:
            current = angles
        else:
            current = None
            if not line.lstrip().startswith("#"):
                summary_lines.append(line.strip())
    if not trends and not angles:
        return None
    return {"trends": trends, "interesting_angles": angles, "summary": " ".join(summary_lines)[:600]}


def fallback_report(topic: str, sources: Optional[List[ResearchSource]] = None) -> ResearchReport:
    t = topic.lower()
    return ResearchReport(
        interest=topic,
        trends=[f"Exploring {topic}", f"Understanding modern {t}"],
        interesting_angles=[f"What {t} means to you personally", f"The unexpected lessons from {t}"],
        sources=list(sources or []),
        summary=f"Explore your thoughts and experiences with {t}. What draws you to this topic?",
    )


class ResearchCollector:
    """Gathers a research report for one topic from the search service."""

    def __init__(self, client: LazyClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def research(self, topic: str) -> ResearchReport:
        if not self.client.configured:
            logger.info("Research service not configured; using fallback report for %r", topic)
            return fallback_report(topic)
        try:
            text, citations = await asyncio.wait_for(self._call(topic), timeout=self.settings.RESEARCH_TIMEOUT_SECONDS)
        except Exception as exc:
            logger.warning("Research request failed for %r: %s", topic, exc)
            return fallback_report(topic)
        return self.build_report(topic, text, citations)

    async def _call(self, topic: str):
        client = await self.client.get()
        resp = await client.chat.completions.create(
            model=self.settings.PERPLEXITY_MODEL,
            messages=[{"role": "system", "content": _SYSTEM},
                      {"role": "user", "content": _USER.format(topic=topic)}],
            max_tokens=self.settings.RESEARCH_MAX_TOKENS,
            temperature=self.settings.RESEARCH_TEMPERATURE,
        )
        text = resp.choices[0].message.content if resp.choices else None
        cited = citation_sources(getattr(resp, "citations", None) or getattr(resp, "search_results", None))
        return text or "", cited

    @staticmethod
    def build_report(topic: str, text: str, citations: List[ResearchSource]) -> ResearchReport:
        parsed = parse_json_report(text) or parse_bullet_report(text)
        if parsed is None:
            logger.warning("Could not parse research for %r; using fallback report", topic)
            return fallback_report(topic, citations)
        if not parsed.get("sources"):
            parsed["sources"] = citations
        if not parsed["summary"]:
            parsed["summary"] = fallback_report(topic).summary
        return ResearchReport(interest=topic, **parsed)
