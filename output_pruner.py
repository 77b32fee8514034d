# ABOUTME: Stateless helpers that shrink LLM outputs and research records before they are re-prompted.
# ABOUTME: Strips reasoning preambles, compacts dialogue history, and pulls JSON objects out of prose.

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger("OutputPruner")

PREAMBLE_PATTERNS = [
    "i'll start by", "i'll analyze", "i'll examine", "let me analyze", "let me start",
    "let me look", "here's my approach", "here is my approach", "i'm thinking", "first, i'll"
]

SEPARATOR_RE = re.compile(r'^-{2,}$')


def pruneAgentOutput(rawOutput: str, maxChars: int = 0) -> str:
    """
    Cleans a dialogue turn for context efficiency.
    Removes reasoning blocks and short planning preambles while keeping cited findings intact.
    """
    if not rawOutput:
        return ""

    rawOutput = re.sub(r'<think>.*?</think>', '', rawOutput, flags=re.DOTALL | re.IGNORECASE)
    rawOutput = re.sub(r'<thought>.*?</thought>', '', rawOutput, flags=re.DOTALL | re.IGNORECASE)

    keptLines = []
    for line in rawOutput.splitlines():
        stripped = line.strip().lower()
        if not stripped:
            keptLines.append(line)
            continue
        # Long paragraphs that happen to open with a preamble phrase are substantive
        if any(stripped.startswith(p) for p in PREAMBLE_PATTERNS) and len(stripped) < 200:
            continue
        if SEPARATOR_RE.match(stripped):
            continue
        keptLines.append(line)

    content = re.sub(r'\n{3,}', '\n\n', "\n".join(keptLines))

    if maxChars > 0 and len(content) > maxChars:
        half = maxChars // 2
        content = content[:half] + f"\n\n[... {len(content) - maxChars} chars truncated ...]\n\n" + content[-half:]

    return content.strip()


def truncateText(text: str, maxChars: int) -> str:
    if not text or len(text) <= maxChars:
        return text or ""
    return text[:maxChars].rstrip() + "..."


def compactDialogueHistory(turns: Sequence[Any], lastTurns: int = 6, maxChars: int = 800) -> str:
    """Render only the most recent turns, each clipped, as 'AGENT (Round n): text' lines."""
    if not turns:
        return "No previous dialogue."
    recent = list(turns)[-lastTurns:]
    lines = []
    for turn in recent:
        agent = getattr(turn.agent, "value", turn.agent)
        lines.append(f"{str(agent).upper()} (Round {turn.roundNumber}): {truncateText(pruneAgentOutput(turn.content), maxChars)}")
    return "\n\n".join(lines)


def compactResearchData(
    scope: str,
    surfaceReport: str = "",
    keyFindings: Optional[List[str]] = None,
    deepReport: str = "",
    deepSources: Optional[List[str]] = None,
    maxFindings: int = 8,
    maxChars: int = 1500
) -> str:
    """Condense the research bundle into a compact block for agent and synthesis prompts."""
    sections = [f"Scope: {truncateText(scope, 500)}"]
    if surfaceReport:
        sections.append(f"Surface Research: {truncateText(surfaceReport, maxChars)}")
    if keyFindings:
        sections.append("Key Findings:\n" + "\n".join(f"- {f}" for f in keyFindings[:maxFindings]))
    if deepReport:
        sections.append(f"Deep Research: {truncateText(deepReport, maxChars)}")
    if deepSources:
        sections.append("Deep Sources: " + ", ".join(deepSources[:maxFindings]))
    return "\n\n".join(sections)


def extractJsonObject(text: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort recovery of the first JSON object in an LLM reply.
    Handles markdown fences and leading prose. Returns None when nothing parses to a dict.
    """
    if not text:
        return None
    cleaned = re.sub(r'```(?:json)?', '', text, flags=re.IGNORECASE).strip()
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError:
        logger.debug(f"No parseable JSON object in reply: {cleaned[:120]}")
        return None
    return parsed if isinstance(parsed, dict) else None
