# ABOUTME: Typed outputs exchanged between phase executors, the evaluator, and the orchestrator.
# ABOUTME: Dialogue turns are frozen; everything else is a plain record owned by one session.

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class AgentRole(str, Enum):
    INDUCTIVE = "inductive"
    DEDUCTIVE = "deductive"


class EvaluationDecision(str, Enum):
    CONTINUE = "continue"
    CONCLUDE = "conclude"
    HOLD = "pause-for-clarification"
    ABORT = "abort"


class AlignmentAction(str, Enum):
    PROCEED = "proceed"
    CLARIFY = "clarify"
    REALIGN = "realign"


@dataclass
class ClarificationResult:
    scope: str
    requirements: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    questions: List[Dict[str, Any]] = field(default_factory=list)
    answerFormat: str = ""
    complexity: str = "medium"
    searchTerms: List[str] = field(default_factory=list)
    subreddits: List[str] = field(default_factory=list)


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str = ""
    provider: str = ""
    publishedAt: Optional[str] = None
    score: Optional[float] = None


@dataclass
class SearchBundle:
    """Per-provider result sets. A failed provider contributes zero results and a failure note."""
    web: List[SearchResult] = field(default_factory=list)
    academic: List[SearchResult] = field(default_factory=list)
    social: List[SearchResult] = field(default_factory=list)
    providerFailures: Dict[str, str] = field(default_factory=dict)

    @property
    def totalResults(self) -> int:
        return len(self.web) + len(self.academic) + len(self.social)


@dataclass
class ExtractedFact:
    claim: str
    evidence: str = ""
    source: str = ""
    sourceType: str = ""
    relevanceScore: float = 0.0
    qualityScore: float = 0.0
    isContradictory: bool = False

    @property
    def rank(self) -> float:
        return self.relevanceScore * 0.6 + self.qualityScore * 0.4


@dataclass
class AnalysisResult:
    facts: List[ExtractedFact] = field(default_factory=list)
    report: str = ""
    keyFindings: List[str] = field(default_factory=list)
    contradictions: List[str] = field(default_factory=list)
    gaps: List[str] = field(default_factory=list)
    credibilityScore: float = 0.0
    consistencyScore: float = 0.0
    significanceLevel: str = "medium"


@dataclass
class DeepResearchResult:
    query: str
    content: str
    sources: List[str] = field(default_factory=list)
    report: str = ""
    keyFindings: List[str] = field(default_factory=list)
    confidenceAssessment: str = "medium"
    nextValidationSteps: List[str] = field(default_factory=list)


@dataclass
class AgentConfig:
    """Reasoning posture for one dialogue agent."""
    role: AgentRole
    focus: str
    evidenceWeight: str
    temporal: str
    risk: str
    model: Optional[str] = None

    @classmethod
    def defaultFor(cls, role: AgentRole) -> "AgentConfig":
        if role is AgentRole.INDUCTIVE:
            return cls(role, "pattern-finding", "empirical-maximizer", "short-term-dynamics", "base-rate-anchored")
        return cls(role, "framework-building", "theoretical-challenger", "long-term-structural", "tail-risk-explorer")


@dataclass
class AgentSelection:
    inductive: AgentConfig
    deductive: AgentConfig
    successCriteria: List[str] = field(default_factory=list)
    rationale: str = ""

    def configFor(self, role: AgentRole) -> AgentConfig:
        return self.inductive if role is AgentRole.INDUCTIVE else self.deductive


@dataclass(frozen=True)
class DialogueTurn:
    agent: AgentRole
    roundNumber: int
    content: str
    confidence: Optional[float] = None
    sources: Tuple[str, ...] = ()
    speculations: Tuple[str, ...] = ()


@dataclass
class EvaluationResult:
    decision: EvaluationDecision
    rationale: str = ""
    feedback: List[str] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    qualityScore: Optional[float] = None
    failureKind: Optional[str] = None


@dataclass
class AlignmentVerdict:
    action: AlignmentAction
    checkpointQuestion: Optional[str] = None
    driftAreas: List[str] = field(default_factory=list)


@dataclass
class SynthesisReport:
    executiveSummary: str
    keyFindings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    confidence: str = "medium"
    nextSteps: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)
    openQuestions: List[str] = field(default_factory=list)
    alignmentNotes: List[str] = field(default_factory=list)


def toPlain(value: Any) -> Any:
    """Recursively convert records and enums into JSON-ready primitives."""
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: toPlain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): toPlain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [toPlain(v) for v in value]
    return value
