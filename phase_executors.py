# ABOUTME: One executor per research phase, each a request/response transform over the call gateway.
# ABOUTME: Executors never see the session; they take the inputs their phase needs and return typed outputs.

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import internal_configs as cfg
from agent_engine import AgentProfile, AgentSpecLoader, DialogueAgent
from call_gateway import (
    ExternalCallGateway,
    FailureKind,
    GatewayFailure,
    LlmRequest,
    SearchRequest,
    invokeWithTransientRetry,
)
from output_pruner import compactDialogueHistory, compactResearchData, extractJsonObject, truncateText
from research_models import (
    AgentConfig,
    AgentRole,
    AgentSelection,
    AnalysisResult,
    ClarificationResult,
    DeepResearchResult,
    DialogueTurn,
    ExtractedFact,
    SearchBundle,
    SearchResult,
    SynthesisReport,
)
from search_providers import RedditSearchProvider

logger = logging.getLogger(__name__)

MAX_DEEP_QUERY_CHARS = 220


def _stringList(value: Any, limit: int = 0) -> List[str]:
    if not isinstance(value, list):
        return []
    items = [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]
    return items[:limit] if limit else items


def _score(value: Any, scale: float = 1.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, min(scale, float(value)))


def _raiseFirstFailure(results: Sequence[Any]):
    """Re-raise the most severe failure from a fan-out. A missing credential outranks everything."""
    failures = [r for r in results if isinstance(r, BaseException)]
    if not failures:
        return
    for failure in failures:
        if isinstance(failure, GatewayFailure) and failure.kind is FailureKind.AUTH_MISSING:
            raise failure
    raise failures[0]


def _resultsForPrompt(results: List[SearchResult], limit: int = 15) -> str:
    return json.dumps([
        {"title": r.title, "url": r.url, "snippet": truncateText(r.snippet, 400)} for r in results[:limit]
    ])


class PhaseExecutors:
    """Stateless phase transforms. Transient failures get one retry; every other failure propagates."""

    def __init__(
        self,
        gateway: ExternalCallGateway,
        appConfig: cfg.AppConfig = cfg.config,
        agentsDir: Optional[Path] = None
    ):
        self.gateway = gateway
        self.config = appConfig
        self.agentsDir = agentsDir
        self._profiles: Dict[AgentRole, AgentProfile] = {}

    async def _complete(self, task: str, systemPrompt: str, userPrompt: str) -> str:
        request = LlmRequest(
            messages=[
                {"role": "system", "content": systemPrompt},
                {"role": "user", "content": userPrompt}
            ],
            model=self.config.modelForTask(task),
            task=task
        )
        response = await invokeWithTransientRetry(self.gateway, cfg.LLM_PROVIDER_ID, request)
        return response.content

    async def _completeJson(self, task: str, systemPrompt: str, userPrompt: str) -> Dict[str, Any]:
        content = await self._complete(task, systemPrompt, userPrompt)
        parsed = extractJsonObject(content)
        if parsed is None:
            logger.warning(f"{task}: reply carried no JSON object, using defaults")
            return {}
        return parsed

    # --- Clarify ---

    async def clarify(self, query: str) -> ClarificationResult:
        data = await self._completeJson(
            "clarify", cfg.CLARIFY_SYSTEM_PROMPT, cfg.CLARIFY_PROMPT_TEMPLATE.format(query=query)
        )
        questions = [q for q in data.get("questions", []) if isinstance(q, dict) and q.get("text")] \
            if isinstance(data.get("questions"), list) else []
        searchTerms = list(dict.fromkeys(_stringList(data.get("searchTerms"))))[:self.config.SEARCH_TERMS_LIMIT] or [query]
        subreddits = list(dict.fromkeys(
            RedditSearchProvider.normalizeSubreddit(s) for s in _stringList(data.get("subreddits"))
        ))

        result = ClarificationResult(
            scope=str(data.get("scope") or query),
            requirements=_stringList(data.get("requirements")),
            constraints=_stringList(data.get("constraints")),
            questions=questions,
            answerFormat=str(data.get("answerFormat") or ""),
            complexity=str(data.get("complexity") or "medium"),
            searchTerms=searchTerms,
            subreddits=[s for s in subreddits if s][:self.config.REDDIT_SUBREDDITS_LIMIT]
        )
        logger.info(f"Clarified scope with {len(result.searchTerms)} search terms and {len(result.questions)} questions")
        return result

    # --- Search ---

    async def search(self, clarification: ClarificationResult) -> SearchBundle:
        """
        Fan out to every search provider at once. A provider that fails contributes zero
        results and a note in providerFailures; the phase itself still succeeds. A missing
        credential is the exception and fails the phase.
        """
        terms = clarification.searchTerms
        requests = {
            cfg.WEB_PROVIDER_ID: SearchRequest(terms, self.config.WEB_RESULTS_PER_TERM * len(terms)),
            cfg.ARXIV_PROVIDER_ID: SearchRequest(terms, self.config.ARXIV_RESULTS_PER_TERM * len(terms)),
            cfg.REDDIT_PROVIDER_ID: SearchRequest(
                terms,
                self.config.REDDIT_POSTS_PER_SUBREDDIT * max(1, len(clarification.subreddits)),
                scopes=clarification.subreddits
            ),
        }
        providers = list(requests)
        outcomes = await asyncio.gather(
            *(invokeWithTransientRetry(self.gateway, p, requests[p]) for p in providers),
            return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, GatewayFailure) and outcome.kind is FailureKind.AUTH_MISSING:
                logger.error(f"Search provider {outcome.provider} has no usable credential: {outcome.reason}")
                raise outcome

        bundle = SearchBundle()
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, GatewayFailure):
                logger.warning(f"Search provider {provider} failed, continuing with zero results: {outcome}")
                bundle.providerFailures[provider] = f"{outcome.kind.value}: {outcome.reason}"
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            if provider == cfg.WEB_PROVIDER_ID:
                bundle.web = list(outcome)
            elif provider == cfg.ARXIV_PROVIDER_ID:
                bundle.academic = list(outcome)
            else:
                bundle.social = list(outcome)

        logger.info(
            f"Search complete: web={len(bundle.web)} academic={len(bundle.academic)} "
            f"social={len(bundle.social)} total={bundle.totalResults} failed={list(bundle.providerFailures)}"
        )
        return bundle

    # --- Extract / Analyze ---

    async def _extractFacts(self, sourceType: str, scope: str, results: List[SearchResult]) -> List[ExtractedFact]:
        if not results:
            return []
        data = await self._completeJson(
            "extract",
            cfg.EXTRACT_SYSTEM_PROMPT,
            cfg.EXTRACT_PROMPT_TEMPLATE.format(sourceLabel=sourceType, scope=scope, results=_resultsForPrompt(results))
        )
        facts = []
        for claim in data.get("claims", []) if isinstance(data.get("claims"), list) else []:
            if not isinstance(claim, dict) or not claim.get("claim"):
                continue
            facts.append(ExtractedFact(
                claim=str(claim["claim"]),
                evidence=str(claim.get("evidence") or ""),
                source=str(claim.get("source") or ""),
                sourceType=sourceType,
                relevanceScore=_score(claim.get("relevanceScore"), 100.0),
                qualityScore=_score(claim.get("qualityScore"), 100.0),
                isContradictory=bool(claim.get("isContradictory", False))
            ))
        return facts

    async def analyze(self, clarification: ClarificationResult, bundle: SearchBundle) -> AnalysisResult:
        """Extracts facts per source type in parallel, then analyzes them together. Any failure fails the phase."""
        sources = [("web", bundle.web), ("academic", bundle.academic), ("social", bundle.social)]
        extracted = await asyncio.gather(
            *(self._extractFacts(label, clarification.scope, results) for label, results in sources),
            return_exceptions=True
        )
        _raiseFirstFailure(extracted)

        facts = sorted((fact for group in extracted for fact in group), key=lambda f: f.rank, reverse=True)
        claimsForPrompt = json.dumps([
            {"claim": f.claim, "evidence": truncateText(f.evidence, 300), "source": f.source,
             "sourceType": f.sourceType, "isContradictory": f.isContradictory}
            for f in facts[:40]
        ])
        data = await self._completeJson(
            "analyze",
            cfg.ANALYZE_SYSTEM_PROMPT,
            cfg.ANALYZE_PROMPT_TEMPLATE.format(scope=clarification.scope, claims=claimsForPrompt)
        )
        contradictions = _stringList(data.get("contradictions")) or [f.claim for f in facts if f.isContradictory]

        return AnalysisResult(
            facts=facts,
            report=str(data.get("report") or ""),
            keyFindings=_stringList(data.get("keyFindings")) or [f.claim for f in facts[:5]],
            contradictions=contradictions,
            gaps=_stringList(data.get("gaps")),
            credibilityScore=_score(data.get("credibilityScore")),
            consistencyScore=_score(data.get("consistencyScore")),
            significanceLevel=str(data.get("significanceLevel") or "medium")
        )

    # --- Deep Research ---

    async def generateDeepQuery(self, analysis: AnalysisResult) -> str:
        context = json.dumps({
            "report": truncateText(analysis.report, 1500),
            "keyFindings": analysis.keyFindings[:8],
            "gaps": analysis.gaps[:5],
            "contradictions": analysis.contradictions[:5],
        })
        content = await self._complete(
            "deep_query", cfg.DEEP_QUERY_SYSTEM_PROMPT, cfg.DEEP_QUERY_PROMPT_TEMPLATE.format(analysis=context)
        )
        query = content.strip().strip('"').strip("'").strip()
        if not query:
            return cfg.DEEP_QUERY_FALLBACK
        return query[:MAX_DEEP_QUERY_CHARS]

    async def deepResearch(self, analysis: AnalysisResult) -> DeepResearchResult:
        query = await self.generateDeepQuery(analysis)
        logger.info(f"Deep research query: {query}")

        deepResponse = await invokeWithTransientRetry(self.gateway, cfg.DEEP_PROVIDER_ID, LlmRequest(
            messages=[
                {"role": "system", "content": cfg.DEEP_SEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": query}
            ],
            task="deep_search"
        ))

        data = await self._completeJson(
            "deep_report",
            cfg.DEEP_REPORT_SYSTEM_PROMPT,
            cfg.DEEP_REPORT_PROMPT_TEMPLATE.format(results=json.dumps({
                "query": query,
                "content": truncateText(deepResponse.content, 6000),
                "sources": deepResponse.sources[:15],
            }))
        )
        return DeepResearchResult(
            query=query,
            content=deepResponse.content,
            sources=list(deepResponse.sources),
            report=str(data.get("report") or truncateText(deepResponse.content, 2000)),
            keyFindings=_stringList(data.get("keyFindings")),
            confidenceAssessment=str(data.get("confidenceAssessment") or "medium"),
            nextValidationSteps=_stringList(data.get("nextValidationSteps"))
        )

    # --- Agent Select ---

    def _configFor(self, role: AgentRole, raw: Any, model: str) -> AgentConfig:
        agentConfig = AgentConfig.defaultFor(role)
        agentConfig.model = model
        if isinstance(raw, dict):
            for key in ("focus", "evidenceWeight", "temporal", "risk"):
                value = raw.get(key)
                if isinstance(value, str) and value.strip():
                    setattr(agentConfig, key, value.strip())
        return agentConfig

    async def selectAgents(self, researchSummary: str) -> AgentSelection:
        data = await self._completeJson(
            "select_agents",
            cfg.SELECT_AGENTS_SYSTEM_PROMPT,
            cfg.SELECT_AGENTS_PROMPT_TEMPLATE.format(research=researchSummary)
        )
        return AgentSelection(
            inductive=self._configFor(AgentRole.INDUCTIVE, data.get("inductive"), self.config.INDUCTIVE_AGENT_MODEL),
            deductive=self._configFor(AgentRole.DEDUCTIVE, data.get("deductive"), self.config.DEDUCTIVE_AGENT_MODEL),
            successCriteria=_stringList(data.get("successCriteria")),
            rationale=str(data.get("rationale") or "")
        )

    # --- Dialogue Round ---

    def _profileFor(self, role: AgentRole) -> AgentProfile:
        if role not in self._profiles:
            self._profiles[role] = AgentSpecLoader.loadForRole(role, self.agentsDir)
        return self._profiles[role]

    @staticmethod
    def buildSteering(questions: Sequence[str] = (), feedback: Sequence[str] = (), userAnswer: str = "") -> str:
        steering = ""
        if questions:
            steering += cfg.DIALOGUE_STEERING_TEMPLATE.format(
                questions="\n".join(f"{i + 1}. {q}" for i, q in enumerate(questions))
            )
        if feedback:
            steering += cfg.DIALOGUE_FEEDBACK_TEMPLATE.format(feedback="; ".join(feedback))
        if userAnswer:
            steering += cfg.DIALOGUE_USER_ANSWER_TEMPLATE.format(answer=userAnswer)
        return steering

    async def runDialogueRound(
        self,
        roundNumber: int,
        selection: AgentSelection,
        researchContext: str,
        history: Sequence[DialogueTurn],
        steering: str = ""
    ) -> List[DialogueTurn]:
        """Both agents speak concurrently against the same prior history. Returns inductive then deductive."""
        agents = [
            DialogueAgent(self._profileFor(role), selection.configFor(role), self.gateway)
            for role in (AgentRole.INDUCTIVE, AgentRole.DEDUCTIVE)
        ]
        turns = await asyncio.gather(
            *(agent.respond(roundNumber, researchContext, history, steering) for agent in agents),
            return_exceptions=True
        )
        _raiseFirstFailure(turns)
        return list(turns)

    # --- Synthesize ---

    async def synthesize(
        self,
        intent: str,
        surfaceReport: str,
        deepReport: str,
        history: Sequence[DialogueTurn],
        alignmentNotes: Sequence[str] = ()
    ) -> SynthesisReport:
        content = await self._complete(
            "synthesize",
            cfg.SYNTHESIZE_SYSTEM_PROMPT,
            cfg.SYNTHESIZE_PROMPT_TEMPLATE.format(
                intent=intent,
                surfaceReport=truncateText(surfaceReport, 3000),
                deepReport=truncateText(deepReport, 3000),
                dialogue=compactDialogueHistory(history, lastTurns=max(1, len(history))),
                alignmentNotes=json.dumps(list(alignmentNotes))
            )
        )
        data = extractJsonObject(content) or {}
        return SynthesisReport(
            executiveSummary=str(data.get("executiveSummary") or content.strip()),
            keyFindings=_stringList(data.get("keyFindings")),
            recommendations=_stringList(data.get("recommendations")),
            confidence=str(data.get("confidence") or "medium"),
            nextSteps=_stringList(data.get("nextSteps")),
            risks=_stringList(data.get("risks")),
            openQuestions=_stringList(data.get("openQuestions")),
            alignmentNotes=_stringList(data.get("alignmentNotes")) or list(alignmentNotes)
        )

    # --- Follow-up ---

    async def answerFollowUp(self, question: str, researchSummary: str) -> str:
        return await self._complete(
            "follow_up",
            cfg.FOLLOW_UP_SYSTEM_PROMPT,
            cfg.FOLLOW_UP_PROMPT_TEMPLATE.format(question=question, research=researchSummary)
        )

    @staticmethod
    def summarizeResearch(
        clarification: ClarificationResult,
        analysis: Optional[AnalysisResult],
        deep: Optional[DeepResearchResult]
    ) -> str:
        return compactResearchData(
            scope=clarification.scope,
            surfaceReport=analysis.report if analysis else "",
            keyFindings=analysis.keyFindings if analysis else None,
            deepReport=(deep.report or deep.content) if deep else "",
            deepSources=deep.sources if deep else None
        )
