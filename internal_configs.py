# ABOUTME: Centralized configurations for the research pipeline.
# ABOUTME: Contains provider quota tables, dialogue limits, and prompt templates.

import os
from dataclasses import dataclass, field
from typing import Dict
from dotenv import load_dotenv

# Load environment variables early to ensure AppConfig picks them up
load_dotenv()

MIN_DIALOGUE_ROUNDS = 1
MAX_DIALOGUE_ROUNDS = 15
MIN_QUOTA_RETRY_ATTEMPTS = 5
MAX_QUOTA_RETRY_ATTEMPTS = 10


def _envInt(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class ProviderQuota:
    """Call budget and retry policy for a single external provider."""
    maxCalls: int = 10
    windowSeconds: float = 60.0
    maxQuotaAttempts: int = 5
    retryBackoffSeconds: float = 60.0
    timeoutSeconds: float = 120.0

    def __post_init__(self):
        if self.maxCalls < 1:
            raise ValueError(f"maxCalls must be positive, got {self.maxCalls}")
        if self.windowSeconds <= 0:
            raise ValueError(f"windowSeconds must be positive, got {self.windowSeconds}")
        if not MIN_QUOTA_RETRY_ATTEMPTS <= self.maxQuotaAttempts <= MAX_QUOTA_RETRY_ATTEMPTS:
            raise ValueError(
                f"maxQuotaAttempts must be within [{MIN_QUOTA_RETRY_ATTEMPTS}, {MAX_QUOTA_RETRY_ATTEMPTS}], "
                f"got {self.maxQuotaAttempts}"
            )
        if self.timeoutSeconds <= 0:
            raise ValueError(f"timeoutSeconds must be positive, got {self.timeoutSeconds}")


# Provider identifiers used as quota keys and gateway adapter names
LLM_PROVIDER_ID = "llm"
WEB_PROVIDER_ID = "web"
ARXIV_PROVIDER_ID = "arxiv"
REDDIT_PROVIDER_ID = "reddit"
DEEP_PROVIDER_ID = "perplexity"

DEFAULT_QUOTA = ProviderQuota()

PROVIDER_QUOTAS: Dict[str, ProviderQuota] = {
    LLM_PROVIDER_ID: ProviderQuota(
        maxCalls=_envInt("LLM_CALLS_PER_MINUTE", 10), windowSeconds=60.0, maxQuotaAttempts=10, timeoutSeconds=300.0
    ),
    WEB_PROVIDER_ID: ProviderQuota(maxCalls=10, windowSeconds=60.0, maxQuotaAttempts=5, timeoutSeconds=120.0),
    ARXIV_PROVIDER_ID: ProviderQuota(maxCalls=20, windowSeconds=60.0, maxQuotaAttempts=5, timeoutSeconds=30.0),
    REDDIT_PROVIDER_ID: ProviderQuota(maxCalls=30, windowSeconds=60.0, maxQuotaAttempts=5, timeoutSeconds=30.0),
    DEEP_PROVIDER_ID: ProviderQuota(maxCalls=5, windowSeconds=60.0, maxQuotaAttempts=5, timeoutSeconds=180.0),
}

# LLM tasks that may each be served by a dedicated model
LLM_TASKS = [
    "clarify", "extract", "analyze", "deep_query", "deep_report",
    "select_agents", "evaluate", "alignment", "synthesize", "follow_up"
]


@dataclass
class AppConfig:
    """Core operational parameters and environment-backed configurations"""
    # API Credentials
    OPENROUTER_API_KEY: str = os.getenv("OPENROUTER_API_KEY", "").strip()
    PERPLEXITY_API_KEY: str = os.getenv("PERPLEXITY_API_KEY", "").strip()

    # Model Selection
    PRIMARY_MODEL: str = os.getenv("MODEL_NAME", "google/gemini-2.5-flash")
    WEB_SEARCH_MODEL: str = os.getenv("WEB_SEARCH_MODEL", os.getenv("MODEL_NAME", "google/gemini-2.5-flash"))
    INDUCTIVE_AGENT_MODEL: str = os.getenv("INDUCTIVE_AGENT_MODEL", os.getenv("MODEL_NAME", "google/gemini-2.5-flash"))
    DEDUCTIVE_AGENT_MODEL: str = os.getenv("DEDUCTIVE_AGENT_MODEL", os.getenv("MODEL_NAME", "google/gemini-2.5-flash"))
    DEEP_SEARCH_MODEL: str = os.getenv("DEEP_SEARCH_MODEL", "sonar-pro")
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openrouter").lower()
    LOCAL_LLM_URL: str = os.getenv("LOCAL_LLM_URL", "http://host.docker.internal:12434").strip()

    # Dialogue
    MAX_DIALOGUE_ROUNDS: int = _envInt("MAX_DIALOGUE_ROUNDS", 3)

    # Search sizing
    SEARCH_TERMS_LIMIT: int = _envInt("SEARCH_TERMS_LIMIT", 5)
    WEB_RESULTS_PER_TERM: int = _envInt("WEB_RESULTS_PER_TERM", 5)
    ARXIV_RESULTS_PER_TERM: int = _envInt("ARXIV_RESULTS_PER_TERM", 5)
    REDDIT_SUBREDDITS_LIMIT: int = _envInt("REDDIT_SUBREDDITS_LIMIT", 5)
    REDDIT_POSTS_PER_SUBREDDIT: int = _envInt("REDDIT_POSTS_PER_SUBREDDIT", 5)

    # Output
    OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", "./output")
    EXPORT_REPORTS: bool = os.getenv("EXPORT_REPORTS", "true").strip().lower() in ("1", "true", "yes")

    # Finished sessions kept in memory before the oldest are dropped
    MAX_RETAINED_SESSIONS: int = _envInt("MAX_RETAINED_SESSIONS", 100)

    # API Endpoints
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_CHAT_ENDPOINT: str = f"{OPENROUTER_BASE_URL}/chat/completions"
    OPENROUTER_RESPONSES_ENDPOINT: str = f"{OPENROUTER_BASE_URL}/responses"
    PERPLEXITY_CHAT_ENDPOINT: str = "https://api.perplexity.ai/chat/completions"
    ARXIV_QUERY_ENDPOINT: str = "https://export.arxiv.org/api/query"
    REDDIT_BASE_URL: str = "https://www.reddit.com"
    USER_AGENT: str = os.getenv("HTTP_USER_AGENT", "research-dialogue-pipeline/1.0")

    # Defaults
    DEFAULT_RESEARCH_QUERY: str = "How will large language models change knowledge work over the next five years?"
    DEFAULT_SUBREDDITS: list = field(default_factory=lambda: [
        "MachineLearning", "artificial", "ChatGPT", "OpenAI", "singularity"
    ])

    def modelForTask(self, task: str) -> str:
        """Per-task model override (MODEL_<TASK>) falling back to the primary model."""
        override = os.getenv(f"MODEL_{task.upper()}", "").strip()
        return override or self.PRIMARY_MODEL

    def validatedMaxRounds(self, requested: int = None) -> int:
        rounds = self.MAX_DIALOGUE_ROUNDS if requested is None else requested
        if not MIN_DIALOGUE_ROUNDS <= rounds <= MAX_DIALOGUE_ROUNDS:
            raise ValueError(
                f"maxRounds must be within [{MIN_DIALOGUE_ROUNDS}, {MAX_DIALOGUE_ROUNDS}], got {rounds}"
            )
        return rounds

    def verifyConfiguration(self):
        """
        Strict validation of required environment variables.
        Ensures the system fails fast if the operational bedrock is missing.
        """
        missingVars = []
        if self.LLM_PROVIDER != "local" and not self.OPENROUTER_API_KEY:
            missingVars.append("OPENROUTER_API_KEY")
        if not self.PRIMARY_MODEL:
            missingVars.append("MODEL_NAME")
        if not self.PERPLEXITY_API_KEY:
            missingVars.append("PERPLEXITY_API_KEY")

        if missingVars:
            errorReport = (
                "\n" + "!" * 50 + "\n"
                "CRITICAL ERROR: Environment Configuration Incomplete\n"
                f"Missing variables: {', '.join(missingVars)}\n"
                "Please check your .env file and ensure these are set.\n"
                "!" * 50 + "\n"
            )
            raise ValueError(errorReport)


# Global config instance
config = AppConfig()


# --- Prompt Templates ---

CLARIFY_SYSTEM_PROMPT = "You are a research clarification agent. Always respond in valid JSON format."

CLARIFY_PROMPT_TEMPLATE = """
Analyze the research query below and clarify exactly what should be researched.

User Query: "{query}"

Respond with a single JSON object:
{{
  "scope": "One paragraph describing the research scope",
  "requirements": ["requirement"],
  "constraints": ["constraint"],
  "questions": [{{"id": "q1", "text": "Clarifying question?", "options": ["option"]}}],
  "answerFormat": "How the final answer should be structured",
  "complexity": "low|medium|high",
  "searchTerms": ["web and academic search term"],
  "subreddits": ["subreddit name without r/"]
}}
"""

EXTRACT_SYSTEM_PROMPT = "You are a fact extraction expert. Always return valid JSON."

EXTRACT_PROMPT_TEMPLATE = """
Extract key factual claims from the {sourceLabel} results below. Prioritize recall over precision.

Research Scope: {scope}
Results: {results}

Return JSON:
{{
  "claims": [
    {{"claim": "Specific factual claim", "evidence": "Supporting evidence", "source": "Source title or URL",
      "relevanceScore": 0-100, "qualityScore": 0-100, "isContradictory": false}}
  ]
}}
"""

ANALYZE_SYSTEM_PROMPT = "You are a research analysis expert. Always return valid JSON."

ANALYZE_PROMPT_TEMPLATE = """
Analyze the extracted claims for credibility, consistency, and significance, then write a surface research report.

Research Scope: {scope}
Claims: {claims}

Return JSON:
{{
  "report": "Narrative surface research report",
  "keyFindings": ["finding"],
  "contradictions": ["Description of conflicting claims"],
  "gaps": ["Open evidence gap"],
  "credibilityScore": 0-1,
  "consistencyScore": 0-1,
  "significanceLevel": "low|medium|high"
}}
"""

DEEP_QUERY_SYSTEM_PROMPT = "You are a deep research strategist who proposes targeted follow-up investigations."

DEEP_QUERY_PROMPT_TEMPLATE = """
Based on the analysis below, craft ONE precise research query that will unlock the most actionable
additional evidence. Keep it under 220 characters.

Analysis Context: {analysis}

Return only the query text without quotation marks.
"""

DEEP_QUERY_FALLBACK = (
    "Investigate the highest-impact unresolved claim from the analysis using authoritative, recent sources"
)

DEEP_SEARCH_SYSTEM_PROMPT = (
    "You are a research expert providing comprehensive, evidence-based analysis with source citations."
)

DEEP_REPORT_SYSTEM_PROMPT = "You are a deep research analyst producing JSON summaries."

DEEP_REPORT_PROMPT_TEMPLATE = """
Review the deep research results and produce a structured JSON report.

Deep Results: {results}

Return JSON:
{{
  "report": "Narrative synthesis of deep findings",
  "keyFindings": ["insight"],
  "confidenceAssessment": "high|medium|low",
  "nextValidationSteps": ["follow-up"]
}}
"""

SELECT_AGENTS_SYSTEM_PROMPT = "You are an AI agent coordinator. Always return valid JSON."

SELECT_AGENTS_PROMPT_TEMPLATE = """
Configure two research agents for a structured dialogue about the research below.
The inductive agent reasons from empirical data upward; the deductive agent reasons from frameworks downward.

Research Summary: {research}

Return JSON:
{{
  "inductive": {{"focus": "", "evidenceWeight": "", "temporal": "", "risk": ""}},
  "deductive": {{"focus": "", "evidenceWeight": "", "temporal": "", "risk": ""}},
  "successCriteria": ["criterion"],
  "rationale": "Why these configurations"
}}
"""

AGENT_CONFIG_PROMPT_TEMPLATE = """
Configured for {approach} reasoning with {focus} focus.
Evidence weighting: {evidenceWeight}. Temporal focus: {temporal}. Risk assessment: {risk}.

Every claim must cite [Surface: Source Name] or [Deep: Source Name] or be marked [SPECULATION].
Close with a line "Confidence: <0-100>%".

Research Context: {researchContext}
Previous Dialogue: {previousDialogue}
"""

DIALOGUE_BASE_PROMPT = "Analyze the research data and provide your perspective for round {roundNumber}."

DIALOGUE_STEERING_TEMPLATE = """

In this round, explicitly address the following:
{questions}"""

DIALOGUE_FEEDBACK_TEMPLATE = """
Incorporate this feedback: {feedback}"""

DIALOGUE_USER_ANSWER_TEMPLATE = """
The user clarified their intent: {answer}"""

EVALUATE_SYSTEM_PROMPT = "You are a dialogue evaluator providing JSON feedback."

EVALUATE_PROMPT_TEMPLATE = """
Evaluate the collaboration quality of the latest dialogue round between the research agents.

Return JSON:
{{
  "decision": "continue" or "conclude",
  "shouldContinue": true/false,
  "rationale": "Why",
  "qualityScore": 0-1,
  "convergence": 0-1,
  "feedback": ["Feedback point"],
  "questions": ["Question for the next round"]
}}

If roundNumber >= maxRounds, you MUST return "decision": "conclude".

Context: {context}
"""

ALIGNMENT_SYSTEM_PROMPT = "You are an alignment watchdog. Always respond in JSON."

ALIGNMENT_PROMPT_TEMPLATE = """
Verify that the dialogue still serves the user's original research intent before round {roundNumber} starts.

Return JSON:
{{
  "isAligned": true/false,
  "recommendAction": "proceed|clarify|realign",
  "checkpointQuestion": "Question to ask the user if clarify is needed",
  "driftAreas": ["Area where the dialogue drifted"]
}}

Return "proceed" if aligned, "clarify" if the user must clarify, "realign" if major realignment is required.

Conversation History: {history}
User Intent: {intent}
"""

SYNTHESIZE_SYSTEM_PROMPT = "You are a synthesis orchestrator who returns JSON."

SYNTHESIZE_PROMPT_TEMPLATE = """
Combine the surface research, deep research, and agent dialogue into a final deliverable.

Return JSON:
{{
  "executiveSummary": "Paragraph",
  "keyFindings": [""],
  "recommendations": [""],
  "confidence": "high|medium|low",
  "nextSteps": [""],
  "risks": [""],
  "openQuestions": [""],
  "alignmentNotes": [""]
}}

Research Intent: {intent}
Surface Research Report: {surfaceReport}
Deep Research Report: {deepReport}
Dialogue History: {dialogue}
Alignment Notes: {alignmentNotes}
"""

FOLLOW_UP_SYSTEM_PROMPT = (
    "You are an expert research analyst and writer. Create comprehensive, well-structured essays "
    "based on provided research data."
)

FOLLOW_UP_PROMPT_TEMPLATE = """
Based on the research data provided, write a detailed essay answering this follow-up question: "{question}"

Research Context Summary: {research}

Provide a clear thesis, structured arguments with evidence, counterarguments, and conclusions with source attribution.
"""

# --- Output Templates ---

MARKDOWN_REPORT_TEMPLATE = """# Research Report: {query}

**Session**: {sessionId}
**Timestamp**: {timestamp}
**Dialogue Rounds**: {rounds}/{maxRounds}
**Confidence**: {confidence}

## Executive Summary
{executiveSummary}

## Key Findings
{keyFindings}

## Recommendations
{recommendations}

## Risks
{risks}

## Open Questions
{openQuestions}
"""
