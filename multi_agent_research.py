# ABOUTME: Pipeline orchestrator for the multi-phase research dialogue system.
# ABOUTME: Owns session state, sequences phase executors, gates dialogue rounds, and exposes the caller interface.

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import internal_configs as cfg
from call_gateway import ExternalCallGateway, FailureKind, GatewayFailure
from dialogue_evaluator import AlignmentGate, DialogueEvaluator
from llm_client import LlmProviderAdapter, getLlmClient
from phase_executors import PhaseExecutors
from quota_governor import QuotaGovernor
from research_models import (
    AgentSelection,
    AlignmentAction,
    AlignmentVerdict,
    AnalysisResult,
    ClarificationResult,
    DeepResearchResult,
    DialogueTurn,
    EvaluationDecision,
    EvaluationResult,
    SearchBundle,
    SynthesisReport,
    toPlain,
)
from search_providers import ArxivSearchProvider, PerplexityDeepSearch, RedditSearchProvider, WebSearchProvider

# Environment variables are loaded automatically by internal_configs

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


class PipelinePhase(str, Enum):
    CLARIFYING = "Clarifying"
    RESEARCHING = "Researching"
    AGENT_SELECTING = "AgentSelecting"
    DIALOGUING = "Dialoguing"
    NEEDS_CLARIFICATION = "NeedsClarification"
    SYNTHESIZING = "Synthesizing"
    COMPLETE = "Complete"
    ABORTED = "Aborted"


TERMINAL_PHASES = {PipelinePhase.COMPLETE, PipelinePhase.ABORTED}

ALLOWED_TRANSITIONS = {
    PipelinePhase.CLARIFYING: {PipelinePhase.RESEARCHING, PipelinePhase.ABORTED},
    PipelinePhase.RESEARCHING: {PipelinePhase.AGENT_SELECTING, PipelinePhase.ABORTED},
    PipelinePhase.AGENT_SELECTING: {PipelinePhase.DIALOGUING, PipelinePhase.ABORTED},
    PipelinePhase.DIALOGUING: {
        PipelinePhase.SYNTHESIZING, PipelinePhase.NEEDS_CLARIFICATION, PipelinePhase.ABORTED
    },
    PipelinePhase.NEEDS_CLARIFICATION: {PipelinePhase.DIALOGUING, PipelinePhase.ABORTED},
    PipelinePhase.SYNTHESIZING: {PipelinePhase.COMPLETE, PipelinePhase.ABORTED},
    PipelinePhase.COMPLETE: set(),
    PipelinePhase.ABORTED: set(),
}

# Progress reached on entering each phase; research and dialogue also report sub-steps
PHASE_PROGRESS = {
    PipelinePhase.CLARIFYING: 0,
    PipelinePhase.RESEARCHING: 10,
    PipelinePhase.AGENT_SELECTING: 55,
    PipelinePhase.DIALOGUING: 60,
    PipelinePhase.SYNTHESIZING: 90,
    PipelinePhase.COMPLETE: 100,
}
SEARCH_DONE_PROGRESS = 25
ANALYSIS_DONE_PROGRESS = 40
DEEP_DONE_PROGRESS = 50
DIALOGUE_PROGRESS_SPAN = 30

CANCELLED_REASON = "cancelled"


class SessionNotFoundError(KeyError):
    pass


class InvalidSessionStateError(ValueError):
    pass


class SessionTerminalError(InvalidSessionStateError):
    """Raised for any attempt to act on a Complete or Aborted session."""


@dataclass
class PhaseRecord:
    phase: str
    name: str
    output: Any
    recordedAt: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class PipelineEvent:
    sessionId: str
    kind: str
    phase: str
    progress: int
    detail: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class Session:
    """Unit of work. Only the orchestrator mutates it."""
    sessionId: str
    query: str
    maxRounds: int
    phase: PipelinePhase = PipelinePhase.CLARIFYING
    progress: int = 0
    roundCounter: int = 0
    history: List[DialogueTurn] = field(default_factory=list)
    phaseLog: List[PhaseRecord] = field(default_factory=list)
    lastVerdict: Optional[AlignmentVerdict] = None
    terminal: bool = False

    clarification: Optional[ClarificationResult] = None
    searchBundle: Optional[SearchBundle] = None
    analysis: Optional[AnalysisResult] = None
    deepResearch: Optional[DeepResearchResult] = None
    agentSelection: Optional[AgentSelection] = None
    lastEvaluation: Optional[EvaluationResult] = None
    synthesis: Optional[SynthesisReport] = None

    pendingQuestion: Optional[str] = None
    pendingQuestions: List[str] = field(default_factory=list)
    pendingFeedback: List[str] = field(default_factory=list)
    clarificationAnswer: str = ""
    userAnswers: List[str] = field(default_factory=list)
    alignmentNotes: List[str] = field(default_factory=list)
    gatePassed: bool = False

    failureKind: Optional[str] = None
    failureReason: Optional[str] = None
    cancelRequested: bool = False
    running: bool = False
    reportPath: Optional[str] = None
    followUps: List[Dict[str, str]] = field(default_factory=list)
    createdAt: str = field(default_factory=lambda: datetime.now().isoformat())
    updatedAt: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def intent(self) -> str:
        intent = self.query
        if self.clarification and self.clarification.scope:
            intent += f"\nScope: {self.clarification.scope}"
        for answer in self.userAnswers:
            intent += f"\nUser clarification: {answer}"
        return intent


class PipelineOrchestrator:
    """
    State machine driving one or many research sessions.

    Phases run strictly in order per session. Dialogue rounds after the first are
    preceded by an alignment check; a clarify verdict or an inconclusive evaluation
    parks the session in NeedsClarification until submitClarificationAnswer() and a
    new runSession() call resume it. Any unrecoverable gateway failure aborts.
    """

    def __init__(
        self,
        executors: PhaseExecutors,
        evaluator: DialogueEvaluator,
        alignmentGate: AlignmentGate,
        appConfig: cfg.AppConfig = cfg.config,
        outputDirectory: Optional[str] = None,
        exportReports: Optional[bool] = None,
        maxRetainedSessions: Optional[int] = None
    ):
        self.executors = executors
        self.evaluator = evaluator
        self.alignmentGate = alignmentGate
        self.config = appConfig
        self.outputDir = Path(outputDirectory or appConfig.OUTPUT_DIR)
        self.exportReports = appConfig.EXPORT_REPORTS if exportReports is None else exportReports
        self.maxRetainedSessions = appConfig.MAX_RETAINED_SESSIONS if maxRetainedSessions is None else maxRetainedSessions
        if self.maxRetainedSessions < 0:
            raise ValueError(f"maxRetainedSessions must be non-negative, got {self.maxRetainedSessions}")
        self.sessions: Dict[str, Session] = {}
        self.listeners: List[Callable[[PipelineEvent], None]] = []
        self._steps = {
            PipelinePhase.CLARIFYING: self._stepClarify,
            PipelinePhase.RESEARCHING: self._stepResearch,
            PipelinePhase.AGENT_SELECTING: self._stepSelectAgents,
            PipelinePhase.DIALOGUING: self._stepDialogue,
            PipelinePhase.SYNTHESIZING: self._stepSynthesize,
        }

    @classmethod
    def fromConfig(
        cls,
        appConfig: cfg.AppConfig = cfg.config,
        governor: Optional[QuotaGovernor] = None
    ) -> "PipelineOrchestrator":
        """Wire the production gateway with every provider adapter."""
        llmClient = getLlmClient(
            provider=appConfig.LLM_PROVIDER,
            model=appConfig.PRIMARY_MODEL,
            apiKey=appConfig.OPENROUTER_API_KEY,
            baseUrl=appConfig.LOCAL_LLM_URL if appConfig.LLM_PROVIDER == "local" else appConfig.OPENROUTER_CHAT_ENDPOINT
        )
        gateway = ExternalCallGateway(governor or QuotaGovernor())
        gateway.register(cfg.LLM_PROVIDER_ID, LlmProviderAdapter(llmClient, appConfig.PRIMARY_MODEL))
        gateway.register(cfg.WEB_PROVIDER_ID, WebSearchProvider(appConfig.OPENROUTER_API_KEY, appConfig.WEB_SEARCH_MODEL))
        gateway.register(cfg.ARXIV_PROVIDER_ID, ArxivSearchProvider())
        gateway.register(cfg.REDDIT_PROVIDER_ID, RedditSearchProvider())
        gateway.register(cfg.DEEP_PROVIDER_ID, PerplexityDeepSearch(appConfig.PERPLEXITY_API_KEY, appConfig.DEEP_SEARCH_MODEL))

        logger.info(f"PipelineOrchestrator online. Provider: {appConfig.LLM_PROVIDER} | Model: {appConfig.PRIMARY_MODEL}")
        return cls(
            PhaseExecutors(gateway, appConfig),
            DialogueEvaluator(gateway),
            AlignmentGate(gateway),
            appConfig
        )

    # --- Events ---

    def addListener(self, callback: Callable[[PipelineEvent], None]):
        self.listeners.append(callback)

    def _emit(self, session: Session, kind: str, detail: str = ""):
        event = PipelineEvent(session.sessionId, kind, session.phase.value, session.progress, detail)
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Pipeline listener failed on {kind} event")

    # --- State mutation ---

    def _getSession(self, sessionId: str) -> Session:
        session = self.sessions.get(sessionId)
        if session is None:
            raise SessionNotFoundError(sessionId)
        return session

    def _advanceProgress(self, session: Session, value: float):
        updated = max(session.progress, int(value))
        if updated != session.progress:
            session.progress = updated
            self._emit(session, "progress")

    def _transition(self, session: Session, target: PipelinePhase, detail: str = ""):
        if session.terminal:
            raise SessionTerminalError(f"Session {session.sessionId} is {session.phase.value}")
        if target not in ALLOWED_TRANSITIONS[session.phase]:
            raise InvalidSessionStateError(f"Illegal transition {session.phase.value} -> {target.value}")

        logger.info(f"[{session.sessionId[:8]}] {session.phase.value} -> {target.value} {detail}".rstrip())
        session.phase = target
        session.updatedAt = datetime.now().isoformat()
        if target in TERMINAL_PHASES:
            session.terminal = True
        if target in PHASE_PROGRESS:
            session.progress = max(session.progress, PHASE_PROGRESS[target])
        self._emit(session, "transition", detail)

    def _record(self, session: Session, name: str, output: Any):
        session.phaseLog.append(PhaseRecord(session.phase.value, name, output))

    def _archiveFinishedSessions(self):
        """Drop the longest-finished sessions once more than maxRetainedSessions are held."""
        finished = [
            s.sessionId for s in sorted(self.sessions.values(), key=lambda s: s.updatedAt)
            if s.terminal and not s.running
        ]
        excess = len(finished) - self.maxRetainedSessions
        if excess <= 0:
            return
        for sessionId in finished[:excess]:
            del self.sessions[sessionId]
        logger.info(f"Archived {excess} finished sessions, {len(self.sessions)} still held")

    def _abort(self, session: Session, kind: Optional[str], reason: str):
        if session.terminal:
            return
        session.failureKind = kind
        session.failureReason = reason
        session.pendingQuestion = None
        if kind:
            logger.error(f"[{session.sessionId[:8]}] Aborting in {session.phase.value}: {kind} - {reason}")
        self._transition(session, PipelinePhase.ABORTED, reason)

    # --- Caller interface ---

    def createSession(self, query: str, maxRounds: Optional[int] = None) -> str:
        if not query or not query.strip():
            raise ValueError("Research query must not be empty")
        rounds = self.config.validatedMaxRounds(maxRounds)
        self._archiveFinishedSessions()
        sessionId = uuid.uuid4().hex
        self.sessions[sessionId] = Session(sessionId=sessionId, query=query.strip(), maxRounds=rounds)
        logger.info(f"Created session {sessionId[:8]} (maxRounds={rounds}): '{query.strip()}'")
        return sessionId

    def getSession(self, sessionId: str) -> Session:
        return self._getSession(sessionId)

    async def runSession(self, sessionId: str) -> Session:
        """
        Drive the session until it completes, aborts, or needs the caller's input.
        Calling it on a terminal session is a no-op.
        """
        session = self._getSession(sessionId)
        if session.terminal:
            return session
        if session.running:
            raise InvalidSessionStateError(f"Session {sessionId} is already running")
        if session.phase is PipelinePhase.NEEDS_CLARIFICATION:
            raise InvalidSessionStateError(f"Session {sessionId} is waiting for a clarification answer")

        session.running = True
        try:
            while not session.terminal and session.phase is not PipelinePhase.NEEDS_CLARIFICATION:
                if session.cancelRequested:
                    self._abort(session, None, CANCELLED_REASON)
                    break
                try:
                    await self._steps[session.phase](session)
                except GatewayFailure as failure:
                    if session.cancelRequested:
                        self._abort(session, None, CANCELLED_REASON)
                    else:
                        self._abort(session, failure.kind.value, failure.reason)
        except asyncio.CancelledError:
            self._abort(session, None, CANCELLED_REASON)
            raise
        except Exception as exc:
            logger.exception(f"[{sessionId[:8]}] Unexpected error in {session.phase.value}")
            self._abort(session, FailureKind.UNKNOWN.value, repr(exc))
        finally:
            session.running = False
        return session

    def submitClarificationAnswer(self, sessionId: str, answer: str):
        session = self._getSession(sessionId)
        if session.terminal:
            raise SessionTerminalError(f"Session {sessionId} is {session.phase.value}")
        if session.phase is not PipelinePhase.NEEDS_CLARIFICATION:
            raise InvalidSessionStateError(f"Session {sessionId} is not waiting for clarification")
        if not answer or not answer.strip():
            raise ValueError("Clarification answer must not be empty")

        session.clarificationAnswer = answer.strip()
        session.userAnswers.append(answer.strip())
        session.pendingQuestion = None
        # The user's answer stands in for the alignment check of the resumed round
        session.gatePassed = True
        self._transition(session, PipelinePhase.DIALOGUING, f"resuming round {session.roundCounter}")

    def cancelSession(self, sessionId: str) -> bool:
        """Request cancellation. Running sessions stop at the next transition boundary."""
        session = self._getSession(sessionId)
        if session.terminal:
            return False
        session.cancelRequested = True
        if not session.running:
            self._abort(session, None, CANCELLED_REASON)
        return True

    async def askFollowUp(self, sessionId: str, question: str) -> str:
        session = self._getSession(sessionId)
        if session.phase is not PipelinePhase.COMPLETE:
            raise InvalidSessionStateError(f"Follow-up questions need a Complete session, not {session.phase.value}")
        if not question or not question.strip():
            raise ValueError("Follow-up question must not be empty")

        summary = self._researchSummary(session)
        if session.synthesis:
            summary += f"\n\nSynthesis: {session.synthesis.executiveSummary}"
        answer = await self.executors.answerFollowUp(question.strip(), summary)
        session.followUps.append({"question": question.strip(), "answer": answer})
        return answer

    def listFindings(self, sessionId: str) -> List[Dict[str, Any]]:
        session = self._getSession(sessionId)
        return toPlain(session.analysis.facts) if session.analysis else []

    def listDialogue(self, sessionId: str) -> List[Dict[str, Any]]:
        return toPlain(self._getSession(sessionId).history)

    def getSessionState(self, sessionId: str) -> Dict[str, Any]:
        session = self._getSession(sessionId)
        failure = None
        if session.phase is PipelinePhase.ABORTED:
            failure = {"kind": session.failureKind, "reason": session.failureReason}
        return {
            "sessionId": session.sessionId,
            "query": session.query,
            "phase": session.phase.value,
            "progress": session.progress,
            "roundCounter": session.roundCounter,
            "maxRounds": session.maxRounds,
            "terminal": session.terminal,
            "running": session.running,
            "pendingQuestion": session.pendingQuestion,
            "failure": failure,
            "dialogueTurns": len(session.history),
            "phaseLog": [{"phase": r.phase, "name": r.name, "recordedAt": r.recordedAt} for r in session.phaseLog],
            "outputs": toPlain({
                "clarification": session.clarification,
                "search": session.searchBundle,
                "analysis": session.analysis,
                "deepResearch": session.deepResearch,
                "agentSelection": session.agentSelection,
                "lastEvaluation": session.lastEvaluation,
                "lastVerdict": session.lastVerdict,
                "synthesis": session.synthesis,
            }),
            "reportPath": session.reportPath,
            "createdAt": session.createdAt,
            "updatedAt": session.updatedAt,
        }

    # --- Phase steps ---

    def _researchSummary(self, session: Session) -> str:
        return PhaseExecutors.summarizeResearch(session.clarification, session.analysis, session.deepResearch)

    async def _stepClarify(self, session: Session):
        clarification = await self.executors.clarify(session.query)
        if session.cancelRequested:
            return
        session.clarification = clarification
        self._record(session, "clarification", clarification)
        self._transition(session, PipelinePhase.RESEARCHING)

    async def _stepResearch(self, session: Session):
        bundle = await self.executors.search(session.clarification)
        if session.cancelRequested:
            return
        session.searchBundle = bundle
        self._record(session, "search", bundle)
        self._advanceProgress(session, SEARCH_DONE_PROGRESS)

        analysis = await self.executors.analyze(session.clarification, bundle)
        if session.cancelRequested:
            return
        session.analysis = analysis
        self._record(session, "analysis", analysis)
        self._advanceProgress(session, ANALYSIS_DONE_PROGRESS)

        deep = await self.executors.deepResearch(analysis)
        if session.cancelRequested:
            return
        session.deepResearch = deep
        self._record(session, "deepResearch", deep)
        self._advanceProgress(session, DEEP_DONE_PROGRESS)
        self._transition(session, PipelinePhase.AGENT_SELECTING)

    async def _stepSelectAgents(self, session: Session):
        selection = await self.executors.selectAgents(self._researchSummary(session))
        if session.cancelRequested:
            return
        session.agentSelection = selection
        self._record(session, "agentSelection", selection)
        session.roundCounter = 1
        self._transition(session, PipelinePhase.DIALOGUING, "round 1")

    async def _stepDialogue(self, session: Session):
        roundNumber = session.roundCounter

        if roundNumber > 1 and not session.gatePassed:
            verdict = await self.alignmentGate.checkAlignment(list(session.history), session.intent, roundNumber)
            if session.cancelRequested:
                return
            session.lastVerdict = verdict
            self._record(session, "alignment", verdict)
            if verdict.action is AlignmentAction.CLARIFY:
                session.pendingQuestion = verdict.checkpointQuestion
                self._transition(session, PipelinePhase.NEEDS_CLARIFICATION, f"alignment clarify at round {roundNumber}")
                return
            if verdict.action is AlignmentAction.REALIGN:
                session.alignmentNotes.extend(verdict.driftAreas or ["Dialogue drifted from the research intent"])
                self._transition(session, PipelinePhase.SYNTHESIZING, f"realign before round {roundNumber}")
                return
        session.gatePassed = False

        steering = PhaseExecutors.buildSteering(
            session.pendingQuestions, session.pendingFeedback, session.clarificationAnswer
        )
        turns = await self.executors.runDialogueRound(
            roundNumber, session.agentSelection, self._researchSummary(session), list(session.history), steering
        )
        if session.cancelRequested:
            return
        session.history.extend(turns)
        session.pendingQuestions, session.pendingFeedback, session.clarificationAnswer = [], [], ""
        self._emit(session, "round", f"round {roundNumber} complete")
        self._advanceProgress(
            session, PHASE_PROGRESS[PipelinePhase.DIALOGUING] + DIALOGUE_PROGRESS_SPAN * roundNumber / session.maxRounds
        )

        evaluation = await self.evaluator.evaluate(roundNumber, session.maxRounds, list(session.history), session.intent)
        if session.cancelRequested:
            return
        session.lastEvaluation = evaluation
        self._record(session, "evaluation", evaluation)

        if evaluation.decision is EvaluationDecision.ABORT:
            self._abort(session, evaluation.failureKind or FailureKind.UNKNOWN.value, evaluation.rationale)
            return
        if roundNumber >= session.maxRounds or evaluation.decision is EvaluationDecision.CONCLUDE:
            self._transition(session, PipelinePhase.SYNTHESIZING, f"concluded after round {roundNumber}")
            return

        session.roundCounter = roundNumber + 1
        if evaluation.decision is EvaluationDecision.HOLD:
            session.pendingQuestions = list(evaluation.questions)
            session.pendingQuestion = evaluation.questions[0] if evaluation.questions else None
            self._transition(session, PipelinePhase.NEEDS_CLARIFICATION, f"evaluation held after round {roundNumber}")
            return
        session.pendingQuestions = list(evaluation.questions)
        session.pendingFeedback = list(evaluation.feedback)

    async def _stepSynthesize(self, session: Session):
        report = await self.executors.synthesize(
            session.intent,
            session.analysis.report if session.analysis else "",
            session.deepResearch.report if session.deepResearch else "",
            list(session.history),
            list(session.alignmentNotes)
        )
        if session.cancelRequested:
            return
        session.synthesis = report
        self._record(session, "synthesis", report)
        if self.exportReports:
            self.exportResearchReport(session)
        self._transition(session, PipelinePhase.COMPLETE)

    # --- Utility Methods ---

    def exportResearchReport(self, session: Session) -> Optional[Path]:
        """Writes the synthesized report as markdown. A write failure is logged, not fatal."""
        report = session.synthesis
        if report is None:
            return None

        def _bullets(items: List[str]) -> str:
            return "\n".join(f"- {item}" for item in items) or "- None"

        creationTime = datetime.now().strftime("%Y%m%d_%H%M%S")
        outputFilepath = self.outputDir / f"research_{session.sessionId[:8]}_{creationTime}.md"
        content = cfg.MARKDOWN_REPORT_TEMPLATE.format(
            query=session.query,
            sessionId=session.sessionId,
            timestamp=datetime.now().isoformat(),
            rounds=len({turn.roundNumber for turn in session.history}),
            maxRounds=session.maxRounds,
            confidence=report.confidence,
            executiveSummary=report.executiveSummary,
            keyFindings=_bullets(report.keyFindings),
            recommendations=_bullets(report.recommendations),
            risks=_bullets(report.risks),
            openQuestions=_bullets(report.openQuestions)
        )
        try:
            self.outputDir.mkdir(parents=True, exist_ok=True)
            with open(outputFilepath, 'w', encoding='utf-8') as artifact:
                artifact.write(content)
        except OSError as exc:
            logger.error(f"Could not export research report to {outputFilepath}: {exc}")
            return None
        session.reportPath = str(outputFilepath)
        logger.info(f"Research artifact exported to {outputFilepath}")
        return outputFilepath


async def main():
    try:
        cfg.config.verifyConfiguration()
    except ValueError as e:
        print(e)
        return

    query = input(f"Enter research query [{cfg.config.DEFAULT_RESEARCH_QUERY}]: ").strip() or cfg.config.DEFAULT_RESEARCH_QUERY
    roundsInput = input(f"Maximum dialogue rounds [{cfg.config.MAX_DIALOGUE_ROUNDS}]: ").strip()

    orchestrator = PipelineOrchestrator.fromConfig()
    try:
        sessionId = orchestrator.createSession(query, int(roundsInput) if roundsInput else None)
    except ValueError as e:
        print(f"Invalid session settings: {e}")
        return

    session = await orchestrator.runSession(sessionId)
    while session.phase is PipelinePhase.NEEDS_CLARIFICATION:
        print(f"\nThe agents need your input: {session.pendingQuestion}")
        answer = input("Your answer (blank to cancel): ").strip()
        if not answer:
            orchestrator.cancelSession(sessionId)
            break
        orchestrator.submitClarificationAnswer(sessionId, answer)
        session = await orchestrator.runSession(sessionId)

    if session.phase is not PipelinePhase.COMPLETE:
        print(f"\nResearch ended in {session.phase.value}: {session.failureKind or ''} {session.failureReason or ''}")
        return

    print("\n=== RESEARCH COMPLETE ===")
    print(session.synthesis.executiveSummary)
    if session.reportPath:
        print(f"Artifact: {session.reportPath}")

    while True:
        question = input("\nFollow-up question (blank to exit): ").strip()
        if not question:
            break
        try:
            print(await orchestrator.askFollowUp(sessionId, question))
        except GatewayFailure as e:
            print(f"Follow-up failed: {e}")


if __name__ == "__main__":
    asyncio.run(main())
