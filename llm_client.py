# ABOUTME: strict abstraction layer for LLM interactions.
# ABOUTME: Handles network transport and response mapping; retries and quotas belong to the call gateway.

import logging
import re
from typing import Dict, List, Optional, Tuple, Any
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx
from openai import AsyncOpenAI

import internal_configs as cfg
from call_gateway import FailureKind, GatewayFailure, IProviderAdapter, LlmRequest

# Configure logging
logger = logging.getLogger(__name__)

@dataclass
class ChatResponse:
    """
    ABOUTME: Structured container for LLM responses.
    ABOUTME: Unifies different provider formats and separates 'Thinking' from 'Content'.
    """
    id: str
    content: str
    role: str = "assistant"
    reasoning: Optional[str] = None
    model: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)
    finishReason: Optional[str] = None

    @property
    def usageSummary(self) -> str:
        """Friendly summary of token consumption."""
        if not self.usage:
            return "Usage unknown"

        promptTokens = self.usage.get("prompt_tokens", 0)
        completionTokens = self.usage.get("completion_tokens", 0)
        return f"Tokens: {promptTokens + completionTokens} (Prompt: {promptTokens}, Completion: {completionTokens})"

class ILlmClient(ABC):
    """Interface for LLM interactions to enable swapping real/mock implementations."""

    @abstractmethod
    async def chatCompletion(self, model: str, messages: List[Dict]) -> ChatResponse:
        pass

def _requireKey(apiKey: str, provider: str):
    if not apiKey:
        raise GatewayFailure(FailureKind.AUTH_MISSING, provider, "No API key configured")

def _splitThinking(content: str) -> Tuple[str, Optional[str]]:
    """Extract DeepSeek-style <think> blocks from content."""
    if "<think>" in content and "</think>" in content:
        match = re.search(r"<think>(.*?)</think>", content, re.DOTALL)
        if match:
            return content.replace(match.group(0), "").strip(), match.group(1).strip()
    return content, None

def _mapChatPayload(data: Dict[str, Any], fallbackId: str) -> ChatResponse:
    """Map a raw OpenAI-compatible chat completion payload. Missing fields raise KeyError/IndexError."""
    choice = data["choices"][0]
    msg = choice["message"]
    content, reasoning = _splitThinking(msg.get("content") or "")
    return ChatResponse(
        id=data.get("id") or fallbackId,
        content=content,
        role=msg.get("role", "assistant"),
        reasoning=msg.get("reasoning") or reasoning,
        model=data.get("model"),
        usage=_normalizeUsage(data.get("usage", {})),
        finishReason=choice.get("finish_reason")
    )

class LocalLlmClient(ILlmClient):
    """Client for local LLM interactions using OpenAI-compatible API format (Ollama/Docker Model Runner)."""

    def __init__(self, baseUrl: str, model: str, temperature: float = 0.1, maxTokens: int = 2048):
        """
        Initialize LLM client with baseUrl and model name.
        baseUrl should be the root (e.g., http://localhost:11434)
        """
        self.baseUrl = baseUrl.rstrip('/')
        self.model = model
        self.temperature = temperature
        self.maxTokens = maxTokens

        logger.info(f"LocalLlmClient initialized: {self.baseUrl} using {self.model}")

    async def chatCompletion(self, model: str, messages: List[Dict]) -> ChatResponse:
        endpoint = f"{self.baseUrl}/v1/chat/completions"

        payload = {
            "model": model or self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.maxTokens
        }

        # A 503 while the model is still loading surfaces as a transient failure
        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.post(endpoint, json=payload)
            response.raise_for_status()
            return _mapChatPayload(response.json(), "local_id")

class OpenRouterClient(ILlmClient):
    """Production client for OpenRouter API."""

    def __init__(self, apiKey: str, baseUrl: str = cfg.config.OPENROUTER_CHAT_ENDPOINT):
        self.apiKey = apiKey
        self.baseUrl = baseUrl

    async def chatCompletion(self, model: str, messages: List[Dict]) -> ChatResponse:
        _requireKey(self.apiKey, "openrouter")
        payload = {
            "model": model,
            "messages": messages
        }

        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.post(
                self.baseUrl,
                headers={
                    "Authorization": f"Bearer {self.apiKey}",
                    "Content-Type": "application/json"
                },
                json=payload
            )
            response.raise_for_status()
            return _mapChatPayload(response.json(), "openrouter_id")

class OpenAIClient(ILlmClient):
    """
    ABOUTME: Primary production client using OpenAI SDK over OpenRouter.
    ABOUTME: Automatically detects and extracts reasoning for capable models.
    """

    OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(self, apiKey: str, baseUrl: str = OPENROUTER_BASE_URL):
        self.apiKey = apiKey
        self._client = AsyncOpenAI(
            api_key=apiKey or "missing",
            base_url=baseUrl,
            default_headers={
                "HTTP-Referer": "https://github.com/research-dialogue-pipeline",
                "X-Title": "Research Dialogue Pipeline"
            },
            max_retries=0  # The call gateway owns retries and quota accounting
        )
        logger.info(f"OpenAIClient (SDK) initialized pointing to {baseUrl}")

    async def chatCompletion(self, model: str, messages: List[Dict]) -> ChatResponse:
        _requireKey(self.apiKey, "openai")
        logger.debug(f"OpenAIClient SDK request: model={model}, messages={len(messages)}")
        completion = await self._client.chat.completions.create(model=model, messages=messages)
        return self._mapCompletion(completion)

    def _mapCompletion(self, completion) -> ChatResponse:
        """Internal mapper from OpenAI SDK objects to ChatResponse."""
        choice = completion.choices[0]
        msg = choice.message
        content = msg.content or ""

        # OpenRouter / SDK extract reasoning if it's in model_extra or reasoning_content
        reasoning = None
        if hasattr(msg, 'reasoning_content') and msg.reasoning_content:
            reasoning = msg.reasoning_content
        elif hasattr(msg, 'model_extra') and msg.model_extra:
            reasoning = msg.model_extra.get('reasoning')

        # Fallback: check content for common thinking tags (DeepSeek style)
        if not reasoning:
            content, reasoning = _splitThinking(content)

        usageMap = {
            "prompt_tokens": completion.usage.prompt_tokens if completion.usage else 0,
            "completion_tokens": completion.usage.completion_tokens if completion.usage else 0,
            "total_tokens": completion.usage.total_tokens if completion.usage else 0,
        }

        return ChatResponse(
            id=completion.id,
            content=content,
            role=msg.role,
            reasoning=reasoning,
            model=getattr(completion, "model", None),
            usage=_normalizeUsage(usageMap),
            finishReason=choice.finish_reason
        )

class LlmProviderAdapter(IProviderAdapter):
    """Exposes an ILlmClient to the call gateway. Empty completions are unusable data."""

    def __init__(self, llmClient: ILlmClient, defaultModel: str = cfg.config.PRIMARY_MODEL, name: str = cfg.LLM_PROVIDER_ID):
        self.llmClient = llmClient
        self.defaultModel = defaultModel
        self.name = name

    async def call(self, request: LlmRequest) -> ChatResponse:
        model = request.model or self.defaultModel
        response = await self.llmClient.chatCompletion(model, request.messages)
        if not response.content.strip():
            raise GatewayFailure(FailureKind.MALFORMED, self.name, f"Empty completion for task '{request.task}'")
        logger.debug(f"{self.name}: {request.task} completed with {model}. {response.usageSummary}")
        return response

def _normalizeUsage(usage: Any) -> Dict[str, int]:
    """Normalize any usage object/dict into a consistent {prompt_tokens, completion_tokens, total_tokens} dict."""
    if isinstance(usage, dict):
        raw = usage
    elif hasattr(usage, "__dict__"):
        raw = usage.__dict__
    else:
        raw = {}
    prompt = int(raw.get("prompt_tokens", 0) or 0)
    completion = int(raw.get("completion_tokens", 0) or 0)
    total = int(raw.get("total_tokens", 0) or prompt + completion)
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": total
    }

def getLlmClient(
    provider: str,
    model: str,
    apiKey: Optional[str] = None,
    baseUrl: Optional[str] = None
) -> ILlmClient:
    """
    Factory to instantiate the correct LLM client based on provider.
    Handles URL normalization so callers never need to know which URL format each client expects:
      - openai:     SDK auto-appends /chat/completions, so we strip it if caller passed the full endpoint.
      - openrouter: Raw httpx, so we ensure the full endpoint URL is present.
      - local:      Uses base URL only (we append /v1/chat/completions ourselves).
    """
    provider = provider.lower()

    if provider == "local":
        return LocalLlmClient(
            baseUrl=baseUrl or "http://localhost:11434",
            model=model
        )

    elif provider == "openai":
        # SDK appends /chat/completions itself; strip it if the caller passed the full endpoint
        sdkBase = re.sub(r"/chat/completions$", "", baseUrl or OpenAIClient.OPENROUTER_BASE_URL).rstrip("/")
        return OpenAIClient(
            apiKey=apiKey or "",
            baseUrl=sdkBase
        )

    else:  # openrouter: raw httpx needs the full endpoint
        openRouterDefault = "https://openrouter.ai/api/v1/chat/completions"
        rawEndpoint = baseUrl or openRouterDefault
        if not rawEndpoint.rstrip("/").endswith("/chat/completions"):
            rawEndpoint = rawEndpoint.rstrip("/") + "/chat/completions"
        return OpenRouterClient(
            apiKey=apiKey or "",
            baseUrl=rawEndpoint
        )
