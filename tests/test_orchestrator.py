# ABOUTME: End-to-end state machine tests for the pipeline orchestrator with scripted providers.
# ABOUTME: Covers round limits, alignment gating, clarification pauses, failure routing, and cancellation.

import random
import tempfile
import unittest

import httpx

from fakes import RecordingSleep, Script, ScriptedAdapter, TaskScriptedLlm, buildGateway, buildOrchestrator

import internal_configs as cfg
from call_gateway import FailureKind, GatewayFailure
from dialogue_evaluator import HOLD_QUESTION
from internal_configs import ProviderQuota
from llm_client import LlmProviderAdapter, OpenRouterClient
from multi_agent_research import (
    InvalidSessionStateError,
    PipelineOrchestrator,
    PipelinePhase,
    SessionNotFoundError,
    SessionTerminalError,
)
from quota_governor import QuotaGovernor
from search_providers import WebSearchProvider


def roundsRun(session):
    return sorted({turn.roundNumber for turn in session.history})


class TestOrchestratorScenarios(unittest.IsolatedAsyncioTestCase):
    def setUpOrchestrator(self, replies=None, llm=None, **gatewayArgs):
        self.llm = llm or TaskScriptedLlm(replies)
        self.gateway = buildGateway(self.llm, **gatewayArgs)
        self.orchestrator = buildOrchestrator(self.gateway)
        self.events = []
        self.orchestrator.addListener(self.events.append)
        return self.orchestrator

    async def test_three_rounds_of_continue_and_proceed(self):
        orchestrator = self.setUpOrchestrator()
        sessionId = orchestrator.createSession("Is remote work killing downtown offices?", maxRounds=3)
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1, 2, 3])
        self.assertEqual(len(session.history), 6)
        self.assertEqual(session.roundCounter, 3)
        self.assertEqual(self.llm.tasks().count("evaluate"), 3)
        self.assertEqual(self.llm.tasks().count("alignment"), 2)
        self.assertEqual(session.progress, 100)

        transitions = [e.phase for e in self.events if e.kind == "transition"]
        self.assertEqual(transitions, ["Researching", "AgentSelecting", "Dialoguing", "Synthesizing", "Complete"])
        progress = [e.progress for e in self.events]
        self.assertEqual(progress, sorted(progress))

    async def test_alignment_clarify_freezes_round_and_resumes_same_round(self):
        orchestrator = self.setUpOrchestrator({
            "alignment": Script([
                {"recommendAction": "clarify", "checkpointQuestion": "Should we focus on US cities?"},
                {"recommendAction": "proceed"},
            ])
        })
        sessionId = orchestrator.createSession("office demand", maxRounds=3)
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.NEEDS_CLARIFICATION)
        self.assertEqual(session.roundCounter, 2)
        self.assertEqual(roundsRun(session), [1])
        self.assertEqual(orchestrator.getSessionState(sessionId)["pendingQuestion"], "Should we focus on US cities?")

        with self.assertRaises(InvalidSessionStateError):
            await orchestrator.runSession(sessionId)

        orchestrator.submitClarificationAnswer(sessionId, "Yes, US only")
        self.assertIs(session.phase, PipelinePhase.DIALOGUING)
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1, 2, 3])
        # Round 2 resumed on the user's answer without re-checking; round 3 was gated again
        self.assertEqual(self.llm.tasks().count("alignment"), 2)
        roundTwoPrompts = [c.messages[1]["content"] for c in self.llm.calls
                           if c.task == "dialogue_inductive" and "round 2" in c.messages[1]["content"]]
        self.assertEqual(len(roundTwoPrompts), 1)
        self.assertIn("Yes, US only", roundTwoPrompts[0])
        self.assertIn("Yes, US only", session.intent)

    async def test_realign_goes_straight_to_synthesis_with_unchanged_history(self):
        orchestrator = self.setUpOrchestrator({
            "alignment": {"recommendAction": "realign", "driftAreas": ["Drifted into retail"]}
        })
        captured = {}
        originalSynthesize = orchestrator.executors.synthesize

        async def spySynthesize(intent, surfaceReport, deepReport, history, alignmentNotes=()):
            captured["history"] = list(history)
            captured["notes"] = list(alignmentNotes)
            return await originalSynthesize(intent, surfaceReport, deepReport, history, alignmentNotes)

        orchestrator.executors.synthesize = spySynthesize
        sessionId = orchestrator.createSession("office demand", maxRounds=5)
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1])
        self.assertEqual(captured["history"], session.history)
        self.assertEqual(captured["notes"], ["Drifted into retail"])
        self.assertEqual(self.llm.tasks().count("dialogue_inductive"), 1)

    async def test_alignment_failure_is_treated_as_realign(self):
        transient = GatewayFailure(FailureKind.TRANSIENT, "llm", "timeout")
        orchestrator = self.setUpOrchestrator({"alignment": transient})
        session = await orchestrator.runSession(orchestrator.createSession("office demand", maxRounds=3))

        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1])
        self.assertTrue(session.alignmentNotes[0].startswith("Alignment could not be verified"))

    async def test_evaluator_conclude_stops_after_one_round(self):
        orchestrator = self.setUpOrchestrator({"evaluate": {"decision": "conclude"}})
        session = await orchestrator.runSession(orchestrator.createSession("office demand", maxRounds=5))
        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1])
        self.assertNotIn("alignment", self.llm.tasks())

    async def test_single_round_cap_ignores_continue(self):
        orchestrator = self.setUpOrchestrator({"evaluate": {"decision": "continue", "shouldContinue": True}})
        session = await orchestrator.runSession(orchestrator.createSession("office demand", maxRounds=1))
        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1])
        self.assertEqual(session.roundCounter, 1)

    async def test_inconclusive_evaluation_pauses_for_clarification(self):
        orchestrator = self.setUpOrchestrator({
            "evaluate": Script(["No strong opinion either way.", {"decision": "conclude"}])
        })
        sessionId = orchestrator.createSession("office demand", maxRounds=3)
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.NEEDS_CLARIFICATION)
        self.assertEqual(session.pendingQuestion, HOLD_QUESTION)
        self.assertEqual(session.roundCounter, 2)

        orchestrator.submitClarificationAnswer(sessionId, "Keep going on financing risk")
        session = await orchestrator.runSession(sessionId)
        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(roundsRun(session), [1, 2])
        self.assertNotIn("alignment", self.llm.tasks())

    async def test_quota_exceeded_until_cap_aborts(self):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        quotaError = httpx.HTTPStatusError("429", request=request, response=httpx.Response(429, request=request))
        sleep = RecordingSleep()
        governor = QuotaGovernor(
            quotas={cfg.LLM_PROVIDER_ID: ProviderQuota(maxCalls=1000, maxQuotaAttempts=5)},
            defaultQuota=ProviderQuota(maxCalls=1000)
        )
        orchestrator = self.setUpOrchestrator({"clarify": quotaError}, governor=governor, sleep=sleep)
        sessionId = orchestrator.createSession("office demand")
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.ABORTED)
        self.assertEqual(session.failureKind, "QuotaExceeded")
        self.assertEqual(len(self.llm.calls), 5)
        self.assertEqual(sleep.delays, [60.0] * 4)
        self.assertEqual(orchestrator.getSessionState(sessionId)["failure"]["kind"], "QuotaExceeded")

    async def test_missing_credential_on_first_call_aborts_without_retry(self):
        sleep = RecordingSleep()
        llm = LlmProviderAdapter(OpenRouterClient(apiKey=""))
        records = []
        orchestrator = self.setUpOrchestrator(llm=llm, sleep=sleep)
        self.gateway.addListener(records.append)
        session = await orchestrator.runSession(orchestrator.createSession("office demand"))

        self.assertIs(session.phase, PipelinePhase.ABORTED)
        self.assertEqual(session.failureKind, "AuthMissing")
        self.assertEqual(len(records), 1)
        self.assertEqual(sleep.delays, [])
        self.assertEqual(session.phaseLog, [])

    async def test_transient_failure_is_retried_once_per_phase(self):
        transient = GatewayFailure(FailureKind.TRANSIENT, "llm", "reset")
        orchestrator = self.setUpOrchestrator({
            "clarify": Script([transient, {"scope": "offices", "searchTerms": ["offices"]}])
        })
        session = await orchestrator.runSession(orchestrator.createSession("office demand"))
        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertEqual(self.llm.tasks().count("clarify"), 2)

    async def test_failed_extraction_aborts_instead_of_skipping(self):
        orchestrator = self.setUpOrchestrator({
            "extract": GatewayFailure(FailureKind.MALFORMED, "llm", "empty completion")
        })
        session = await orchestrator.runSession(orchestrator.createSession("office demand"))
        self.assertIs(session.phase, PipelinePhase.ABORTED)
        self.assertEqual(session.failureKind, "Malformed")
        self.assertIsNone(session.analysis)
        self.assertNotIn("select_agents", self.llm.tasks())

    async def test_aborted_session_never_transitions_again(self):
        orchestrator = self.setUpOrchestrator({"clarify": GatewayFailure(FailureKind.UNKNOWN, "llm", "boom")})
        sessionId = orchestrator.createSession("office demand")
        session = await orchestrator.runSession(sessionId)
        self.assertIs(session.phase, PipelinePhase.ABORTED)
        callsBefore = len(self.llm.calls)
        eventsBefore = len(self.events)

        again = await orchestrator.runSession(sessionId)
        self.assertIs(again.phase, PipelinePhase.ABORTED)
        self.assertFalse(orchestrator.cancelSession(sessionId))
        with self.assertRaises(SessionTerminalError):
            orchestrator.submitClarificationAnswer(sessionId, "anything")
        with self.assertRaises(InvalidSessionStateError):
            await orchestrator.askFollowUp(sessionId, "why?")
        self.assertEqual(len(self.llm.calls), callsBefore)
        self.assertEqual(len(self.events), eventsBefore)

    async def test_cancel_before_running(self):
        orchestrator = self.setUpOrchestrator()
        sessionId = orchestrator.createSession("office demand")
        self.assertTrue(orchestrator.cancelSession(sessionId))
        session = await orchestrator.runSession(sessionId)
        self.assertIs(session.phase, PipelinePhase.ABORTED)
        self.assertEqual(session.failureReason, "cancelled")
        self.assertIsNone(session.failureKind)
        self.assertEqual(self.llm.calls, [])

    async def test_cancel_during_run_stops_at_next_boundary(self):
        orchestrator = self.setUpOrchestrator()
        sessionId = orchestrator.createSession("office demand")

        def cancelOnResearch(event):
            if event.kind == "transition" and event.phase == "Researching":
                orchestrator.cancelSession(sessionId)

        orchestrator.addListener(cancelOnResearch)
        session = await orchestrator.runSession(sessionId)

        self.assertIs(session.phase, PipelinePhase.ABORTED)
        self.assertEqual(session.failureReason, "cancelled")
        self.assertIsNone(session.searchBundle)
        self.assertNotIn("extract", self.llm.tasks())

    async def test_missing_search_credential_aborts(self):
        orchestrator = self.setUpOrchestrator(overrides={cfg.WEB_PROVIDER_ID: WebSearchProvider(apiKey="")})
        session = await orchestrator.runSession(orchestrator.createSession("office demand"))

        self.assertIs(session.phase, PipelinePhase.ABORTED)
        self.assertEqual(session.failureKind, "AuthMissing")
        self.assertIsNone(session.searchBundle)
        self.assertNotIn("extract", self.llm.tasks())

    async def test_search_provider_failure_does_not_abort(self):
        orchestrator = self.setUpOrchestrator(overrides={
            cfg.REDDIT_PROVIDER_ID: ScriptedAdapter(cfg.REDDIT_PROVIDER_ID, [httpx.HTTPStatusError(
                "HTTP 403",
                request=httpx.Request("GET", "https://www.reddit.com/search.json"),
                response=httpx.Response(403, request=httpx.Request("GET", "https://www.reddit.com/search.json"))
            )])
        })
        session = await orchestrator.runSession(orchestrator.createSession("office demand"))

        self.assertIs(session.phase, PipelinePhase.COMPLETE)
        self.assertTrue(session.searchBundle.providerFailures[cfg.REDDIT_PROVIDER_ID].startswith("Unknown"))
        self.assertEqual(session.searchBundle.social, [])

    async def test_round_counter_never_exceeds_max(self):
        rng = random.Random(11)
        replies = [{"decision": "continue"}, {"decision": "conclude"}, {"shouldContinue": True}, "unclear"]
        alignments = [{"recommendAction": "proceed"}, {"recommendAction": "clarify"}, {"isAligned": True}]

        for maxRounds in (1, 2, 3, 5):
            orchestrator = self.setUpOrchestrator({
                "evaluate": lambda request: rng.choice(replies),
                "alignment": lambda request: rng.choice(alignments),
            })
            sessionId = orchestrator.createSession("office demand", maxRounds=maxRounds)
            counters = []
            orchestrator.addListener(lambda event: counters.append(orchestrator.getSession(sessionId).roundCounter))

            session = await orchestrator.runSession(sessionId)
            while session.phase is PipelinePhase.NEEDS_CLARIFICATION:
                orchestrator.submitClarificationAnswer(sessionId, "continue please")
                session = await orchestrator.runSession(sessionId)

            self.assertIs(session.phase, PipelinePhase.COMPLETE)
            self.assertLessEqual(max(counters), maxRounds)
            self.assertLessEqual(max(roundsRun(session)), maxRounds)


class TestOrchestratorInterface(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.llm = TaskScriptedLlm()
        self.orchestrator = buildOrchestrator(buildGateway(self.llm))

    def test_create_session_validates_input(self):
        with self.assertRaises(ValueError):
            self.orchestrator.createSession("   ")
        with self.assertRaises(ValueError):
            self.orchestrator.createSession("query", maxRounds=16)
        with self.assertRaises(ValueError):
            self.orchestrator.createSession("query", maxRounds=0)
        sessionId = self.orchestrator.createSession("query")
        self.assertEqual(self.orchestrator.getSession(sessionId).maxRounds, cfg.config.MAX_DIALOGUE_ROUNDS)

    def test_unknown_session(self):
        with self.assertRaises(SessionNotFoundError):
            self.orchestrator.getSessionState("missing")
        with self.assertRaises(KeyError):
            self.orchestrator.cancelSession("missing")

    def test_submit_answer_outside_clarification(self):
        sessionId = self.orchestrator.createSession("query")
        with self.assertRaises(InvalidSessionStateError):
            self.orchestrator.submitClarificationAnswer(sessionId, "answer")

    async def test_state_findings_dialogue_and_follow_up(self):
        sessionId = self.orchestrator.createSession("office demand", maxRounds=2)
        await self.orchestrator.runSession(sessionId)

        state = self.orchestrator.getSessionState(sessionId)
        self.assertEqual(state["phase"], "Complete")
        self.assertEqual(state["progress"], 100)
        self.assertIsNone(state["failure"])
        self.assertEqual(state["outputs"]["synthesis"]["confidence"], "medium")
        self.assertEqual(state["outputs"]["agentSelection"]["inductive"]["role"], "inductive")
        self.assertEqual(
            [r["name"] for r in state["phaseLog"]][:4], ["clarification", "search", "analysis", "deepResearch"]
        )

        findings = self.orchestrator.listFindings(sessionId)
        self.assertEqual(len(findings), 6)
        dialogue = self.orchestrator.listDialogue(sessionId)
        self.assertEqual(dialogue[0]["agent"], "inductive")
        self.assertEqual(dialogue[0]["sources"], ["[Surface: Example Report]"])

        answer = await self.orchestrator.askFollowUp(sessionId, "What should investors watch?")
        self.assertEqual(answer, "A detailed essay answer.")
        self.assertEqual(self.orchestrator.getSession(sessionId).followUps[0]["answer"], answer)

    async def test_report_export_writes_markdown(self):
        with tempfile.TemporaryDirectory() as outputDir:
            orchestrator = PipelineOrchestrator(
                self.orchestrator.executors, self.orchestrator.evaluator, self.orchestrator.alignmentGate,
                outputDirectory=outputDir, exportReports=True
            )
            session = await orchestrator.runSession(orchestrator.createSession("office demand", maxRounds=1))

            self.assertIs(session.phase, PipelinePhase.COMPLETE)
            self.assertTrue(session.reportPath.startswith(outputDir))
            with open(session.reportPath, encoding="utf-8") as report:
                content = report.read()
            self.assertIn("office demand", content)
            self.assertIn("Office demand stays below pre-2020 levels.", content)
            self.assertIn("- Track lease expirations", content)

    async def test_follow_up_requires_complete_session(self):
        sessionId = self.orchestrator.createSession("office demand")
        with self.assertRaises(InvalidSessionStateError):
            await self.orchestrator.askFollowUp(sessionId, "why?")

    async def test_finished_sessions_beyond_limit_are_archived(self):
        orchestrator = PipelineOrchestrator(
            self.orchestrator.executors, self.orchestrator.evaluator, self.orchestrator.alignmentGate,
            exportReports=False, maxRetainedSessions=2
        )
        finished = []
        for _ in range(3):
            sessionId = orchestrator.createSession("office demand")
            orchestrator.cancelSession(sessionId)
            await orchestrator.runSession(sessionId)
            finished.append(sessionId)
        self.assertEqual(len(orchestrator.sessions), 3)

        active = orchestrator.createSession("office demand")
        with self.assertRaises(SessionNotFoundError):
            orchestrator.getSessionState(finished[0])
        self.assertEqual(set(orchestrator.sessions), {finished[1], finished[2], active})

        orchestrator.createSession("office demand")
        self.assertIn(active, orchestrator.sessions)
        self.assertEqual(len(orchestrator.sessions), 4)

    def test_retention_limit_must_be_non_negative(self):
        with self.assertRaises(ValueError):
            PipelineOrchestrator(
                self.orchestrator.executors, self.orchestrator.evaluator, self.orchestrator.alignmentGate,
                exportReports=False, maxRetainedSessions=-1
            )


if __name__ == "__main__":
    unittest.main()
