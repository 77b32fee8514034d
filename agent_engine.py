# ABOUTME: Dialogue agents for the two-perspective research debate.
# ABOUTME: Loads agent personas from markdown and turns one gateway call into one cited dialogue turn.

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import internal_configs as cfg
from call_gateway import ExternalCallGateway, LlmRequest, invokeWithTransientRetry
from output_pruner import compactDialogueHistory, pruneAgentOutput
from research_models import AgentConfig, AgentRole, DialogueTurn

logger = logging.getLogger(__name__)

CITATION_RE = re.compile(r"\[(?:Surface|Deep|Research):[^\]]+\]")
SPECULATION_RE = re.compile(r"\[SPECULATION[^\]]*\]")
CONFIDENCE_RE = re.compile(r"Confidence:\s*(\d{1,3}(?:\.\d+)?)\s*%", re.IGNORECASE)

AGENT_DEFINITION_FILES = {
    AgentRole.INDUCTIVE: "inductive_agent.md",
    AgentRole.DEDUCTIVE: "deductive_agent.md",
}


@dataclass
class AgentProfile:
    """Hybrid agent profile with metadata and full specification"""
    name: str
    skills: List[str]
    personality: List[str]
    specialization: str
    fullSpec: str  # Complete markdown content as system prompt


def extractCitations(content: str) -> List[str]:
    """Unique bracketed source citations in order of first appearance."""
    seen = []
    for match in CITATION_RE.findall(content or ""):
        if match not in seen:
            seen.append(match)
    return seen


def extractSpeculations(content: str) -> List[str]:
    return SPECULATION_RE.findall(content or "")


def parseConfidence(content: str) -> Optional[float]:
    """Reads the last 'Confidence: NN%' marker as a 0-1 score."""
    matches = CONFIDENCE_RE.findall(content or "")
    if not matches:
        return None
    return max(0.0, min(1.0, float(matches[-1]) / 100.0))


class DialogueAgent:
    """One side of the dialogue. Stateless between rounds: history arrives with every call."""

    def __init__(
        self,
        profile: AgentProfile,
        config: AgentConfig,
        gateway: ExternalCallGateway,
        model: Optional[str] = None
    ):
        self.profile = profile
        self.config = config
        self.gateway = gateway
        self.model = model or config.model

    @property
    def role(self) -> AgentRole:
        return self.config.role

    def buildMessages(
        self,
        roundNumber: int,
        researchContext: str,
        history: Sequence[DialogueTurn],
        steering: str = ""
    ) -> List[Dict[str, str]]:
        systemPrompt = self.profile.fullSpec + "\n" + cfg.AGENT_CONFIG_PROMPT_TEMPLATE.format(
            approach=self.role.value,
            focus=self.config.focus,
            evidenceWeight=self.config.evidenceWeight,
            temporal=self.config.temporal,
            risk=self.config.risk,
            researchContext=researchContext,
            previousDialogue=compactDialogueHistory(history)
        )
        userPrompt = cfg.DIALOGUE_BASE_PROMPT.format(roundNumber=roundNumber) + steering
        return [
            {"role": "system", "content": systemPrompt},
            {"role": "user", "content": userPrompt}
        ]

    async def respond(
        self,
        roundNumber: int,
        researchContext: str,
        history: Sequence[DialogueTurn],
        steering: str = ""
    ) -> DialogueTurn:
        request = LlmRequest(
            messages=self.buildMessages(roundNumber, researchContext, history, steering),
            model=self.model,
            task=f"dialogue_{self.role.value}"
        )
        response = await invokeWithTransientRetry(self.gateway, cfg.LLM_PROVIDER_ID, request)
        content = pruneAgentOutput(response.content)

        turn = DialogueTurn(
            agent=self.role,
            roundNumber=roundNumber,
            content=content,
            confidence=parseConfidence(content),
            sources=tuple(extractCitations(content)),
            speculations=tuple(extractSpeculations(content))
        )
        logger.info(
            f"{self.profile.name}: round {roundNumber} turn ready "
            f"({len(content)} chars, {len(turn.sources)} citations, confidence={turn.confidence})"
        )
        return turn


class AgentSpecLoader:
    """Loads agent persona specifications from markdown definition files."""

    @staticmethod
    def loadFromMarkdown(content: str) -> AgentProfile:
        """
        Parse the hybrid markdown structure to extract metadata and system prompt.
        """
        name, skills, personality, specialization = "", [], [], ""
        currentSection = None

        for line in content.split('\n'):
            stripped = line.strip()
            if stripped.startswith('# ') and not name:
                name = stripped[2:].strip()
            elif stripped.startswith('## Skills'):
                currentSection = 'skills'
            elif stripped.startswith('## Personality'):
                currentSection = 'personality'
            elif stripped.startswith('## Specialization'):
                currentSection = 'specialization'
            elif stripped.startswith('##'):
                currentSection = None
            elif stripped.startswith('- ') and currentSection == 'skills':
                skills.append(stripped[2:].strip())
            elif stripped.startswith('- ') and currentSection == 'personality':
                personality.append(stripped[2:].strip())
            elif stripped and currentSection == 'specialization':
                specialization = stripped
                currentSection = None

        if not name:
            raise ValueError("Agent definition must have a name (# Header)")

        return AgentProfile(name, skills, personality, specialization, content)

    @staticmethod
    def loadForRole(role: AgentRole, agentsDir: Optional[Path] = None) -> AgentProfile:
        agentsDir = Path(agentsDir) if agentsDir else Path(__file__).parent / "agent-definition-files"
        with open(agentsDir / AGENT_DEFINITION_FILES[role], 'r', encoding='utf-8') as specFile:
            return AgentSpecLoader.loadFromMarkdown(specFile.read())
