# ABOUTME: Strict decision parsing for round evaluation and the alignment gate.
# ABOUTME: Maps a closed set of JSON fields onto fixed enums; anything else is held, never guessed from prose.

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import internal_configs as cfg
from call_gateway import ExternalCallGateway, FailureKind, GatewayFailure, LlmRequest, invokeWithTransientRetry
from output_pruner import compactDialogueHistory, extractJsonObject
from research_models import (
    AlignmentAction,
    AlignmentVerdict,
    DialogueTurn,
    EvaluationDecision,
    EvaluationResult,
)

logger = logging.getLogger(__name__)

HOLD_QUESTION = "The dialogue evaluation was inconclusive. Should the agents keep debating, or is the research ready to synthesize?"
ALIGNMENT_QUESTION = "Is the dialogue still addressing what you want to learn? Please restate or refine your research goal."

_DECISION_VALUES = {
    "continue": EvaluationDecision.CONTINUE,
    "conclude": EvaluationDecision.CONCLUDE,
}

_ALIGNMENT_VALUES = {
    "proceed": AlignmentAction.PROCEED,
    "clarify": AlignmentAction.CLARIFY,
    "realign": AlignmentAction.REALIGN,
}


def _stringList(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parseEvaluation(payload: Optional[Dict[str, Any]]) -> EvaluationResult:
    """
    Recognized fields: "decision" ("continue" | "conclude", case-insensitive) and the
    boolean "shouldContinue". Absent, unrecognized, or conflicting values hold the round.
    """
    if not isinstance(payload, dict):
        return EvaluationResult(EvaluationDecision.HOLD, rationale="Evaluation reply carried no JSON object")

    votes = []
    unrecognized = False

    if "decision" in payload:
        rawDecision = payload["decision"]
        decision = _DECISION_VALUES.get(rawDecision.strip().lower()) if isinstance(rawDecision, str) else None
        if decision is None:
            unrecognized = True
        else:
            votes.append(decision)

    if "shouldContinue" in payload:
        rawContinue = payload["shouldContinue"]
        if isinstance(rawContinue, bool):
            votes.append(EvaluationDecision.CONTINUE if rawContinue else EvaluationDecision.CONCLUDE)
        else:
            unrecognized = True

    rationale = str(payload.get("rationale") or payload.get("reasoning") or "")
    feedback = _stringList(payload.get("feedback"))
    questions = _stringList(payload.get("questions"))
    quality = payload.get("qualityScore")
    quality = float(quality) if isinstance(quality, (int, float)) and not isinstance(quality, bool) else None

    if unrecognized or not votes or len(set(votes)) > 1:
        logger.warning(f"Evaluation decision not recognized, holding round: {json.dumps(payload)[:200]}")
        return EvaluationResult(EvaluationDecision.HOLD, rationale, feedback, questions, quality)

    return EvaluationResult(votes[0], rationale, feedback, questions, quality)


def parseAlignment(payload: Optional[Dict[str, Any]]) -> AlignmentVerdict:
    """
    "recommendAction" wins when recognized; otherwise the boolean "isAligned" maps to
    proceed/clarify. Anything else asks the user rather than continuing.
    """
    if not isinstance(payload, dict):
        return AlignmentVerdict(AlignmentAction.CLARIFY, ALIGNMENT_QUESTION)

    action = None
    rawAction = payload.get("recommendAction")
    if isinstance(rawAction, str):
        action = _ALIGNMENT_VALUES.get(rawAction.strip().lower())
    if action is None and isinstance(payload.get("isAligned"), bool):
        action = AlignmentAction.PROCEED if payload["isAligned"] else AlignmentAction.CLARIFY
    if action is None:
        logger.warning(f"Alignment verdict not recognized, asking for clarification: {json.dumps(payload)[:200]}")
        action = AlignmentAction.CLARIFY

    question = payload.get("checkpointQuestion")
    question = question.strip() if isinstance(question, str) and question.strip() else None
    if action is AlignmentAction.CLARIFY and not question:
        question = ALIGNMENT_QUESTION

    return AlignmentVerdict(action, question, _stringList(payload.get("driftAreas")))


class DialogueEvaluator:
    """Judges a finished round. The round cap is enforced here as well as by the orchestrator."""

    def __init__(self, gateway: ExternalCallGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.model = model or cfg.config.modelForTask("evaluate")

    def _buildContext(self, roundNumber: int, maxRounds: int, history: Sequence[DialogueTurn], intent: str) -> str:
        return json.dumps({
            "roundNumber": roundNumber,
            "maxRounds": maxRounds,
            "userIntent": intent,
            "dialogue": compactDialogueHistory(history),
        })

    async def evaluate(
        self,
        roundNumber: int,
        maxRounds: int,
        history: Sequence[DialogueTurn],
        intent: str
    ) -> EvaluationResult:
        request = LlmRequest(
            messages=[
                {"role": "system", "content": cfg.EVALUATE_SYSTEM_PROMPT},
                {"role": "user", "content": cfg.EVALUATE_PROMPT_TEMPLATE.format(
                    context=self._buildContext(roundNumber, maxRounds, history, intent)
                )}
            ],
            model=self.model,
            task="evaluate"
        )
        try:
            response = await invokeWithTransientRetry(self.gateway, cfg.LLM_PROVIDER_ID, request)
        except GatewayFailure as failure:
            if failure.kind is FailureKind.AUTH_MISSING:
                return EvaluationResult(EvaluationDecision.ABORT, failure.reason, failureKind=failure.kind.value)
            logger.error(f"Evaluation unavailable after round {roundNumber}, concluding dialogue: {failure}")
            return EvaluationResult(
                EvaluationDecision.CONCLUDE, f"Evaluation failed: {failure.reason}", failureKind=failure.kind.value
            )

        result = parseEvaluation(extractJsonObject(response.content))
        if roundNumber >= maxRounds and result.decision is not EvaluationDecision.CONCLUDE:
            logger.info(f"Round {roundNumber} reached the cap of {maxRounds}; forcing conclude")
            result.decision = EvaluationDecision.CONCLUDE
        if result.decision is EvaluationDecision.HOLD and not result.questions:
            result.questions = [HOLD_QUESTION]
        return result


class AlignmentGate:
    """Checks the dialogue against the user's intent before a round starts."""

    def __init__(self, gateway: ExternalCallGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.model = model or cfg.config.modelForTask("alignment")

    async def checkAlignment(self, history: Sequence[DialogueTurn], intent: str, roundNumber: int) -> AlignmentVerdict:
        """
        A gateway failure is treated as realign so the dialogue never runs unverified.
        A missing credential is re-raised because it ends the whole session.
        """
        request = LlmRequest(
            messages=[
                {"role": "system", "content": cfg.ALIGNMENT_SYSTEM_PROMPT},
                {"role": "user", "content": cfg.ALIGNMENT_PROMPT_TEMPLATE.format(
                    roundNumber=roundNumber,
                    history=compactDialogueHistory(history),
                    intent=intent
                )}
            ],
            model=self.model,
            task="alignment"
        )
        try:
            response = await invokeWithTransientRetry(self.gateway, cfg.LLM_PROVIDER_ID, request)
        except GatewayFailure as failure:
            if failure.kind is FailureKind.AUTH_MISSING:
                raise
            logger.error(f"Alignment check failed before round {roundNumber}, realigning: {failure}")
            return AlignmentVerdict(
                AlignmentAction.REALIGN,
                driftAreas=[f"Alignment could not be verified ({failure.kind.value}): {failure.reason}"]
            )

        verdict = parseAlignment(extractJsonObject(response.content))
        logger.info(f"Alignment before round {roundNumber}: {verdict.action.value}")
        return verdict
