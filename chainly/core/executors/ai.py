"""
LLM executors

OPENAI, ANTHROPIC and GEMINI nodes render a system and a user prompt
against the context, send them to the provider and store ``{"text": ...}``
under the node's variable name.

Provider failures are classified once: rate limits, timeouts, connection
problems and 5xx are transient; anything else (bad key, unknown model) is
permanent.
"""

import logging
import os
from typing import Optional

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ..context import Context, with_variable
from ..exceptions import NonRetriableNodeError, TransientNodeError
from ..nodes import NodeType
from .base import NodeCall, NodeExecutor
from .http import raise_for_status

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
ANTHROPIC_MAX_TOKENS = 4096
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def _classify_provider_error(label: str, error: Exception, node_id: str) -> Exception:
    status = getattr(error, "status_code", None)
    message = f"{label} Node: {error}"
    if isinstance(error, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return TransientNodeError(message, node_id=node_id)
    if status is not None and (status == 429 or status >= 500):
        return TransientNodeError(message, node_id=node_id, status_code=status)
    return NonRetriableNodeError(message, node_id=node_id, status_code=status)


class LLMExecutor(NodeExecutor):
    """Common validation, prompt rendering and output shape for LLM nodes."""

    credential_required = True
    step_purpose = "generate-text"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "model", "Model is required")
        self.require(call, "userPrompt", "User prompt is required")
        if self.credential_required:
            self.require(call, "credentialId", "Credential is required")

    async def resolve_api_key(self, call: NodeCall) -> str:
        return await self.get_credential(call, call.config["credentialId"])

    async def generate(self, api_key: str, model: str, system: str, prompt: str, call: NodeCall) -> str:
        raise NotImplementedError

    async def run(self, call: NodeCall) -> Context:
        api_key = await self.resolve_api_key(call)

        system_template = call.config.get("systemPrompt") or DEFAULT_SYSTEM_PROMPT
        system = self.templates.render(system_template, call.context)
        prompt = self.templates.render(call.config["userPrompt"], call.context)
        model = call.config["model"]

        text = await call.step.run(
            self.step_name(self.step_purpose, call),
            lambda: self.generate(api_key, model, system, prompt, call),
        )
        logger.info(f"{self.label} node {call.node_id}: {len(text)} chars generated with {model}")
        return with_variable(call.context, call.config["variableName"], {"text": text})


class OpenAIExecutor(LLMExecutor):
    node_type = NodeType.OPENAI
    label = "OpenAI"
    step_purpose = "openai-generate-text"

    async def generate(self, api_key, model, system, prompt, call) -> str:
        client = AsyncOpenAI(api_key=api_key)
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.OpenAIError as e:
            raise _classify_provider_error(self.label, e, call.node_id) from e
        return response.choices[0].message.content or ""


class AnthropicExecutor(LLMExecutor):
    """
    Anthropic node. Uses the node's credential when set, otherwise the
    ANTHROPIC_API_KEY environment variable.
    """

    node_type = NodeType.ANTHROPIC
    label = "Anthropic"
    step_purpose = "anthropic-generate-text"
    credential_required = False

    async def resolve_api_key(self, call: NodeCall) -> str:
        if call.config.get("credentialId"):
            return await self.get_credential(call, call.config["credentialId"])
        api_key: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise self.config_error(call, "Credential is required")
        return api_key

    async def generate(self, api_key, model, system, prompt, call) -> str:
        client = AsyncAnthropic(api_key=api_key)
        try:
            response = await client.messages.create(
                model=model,
                max_tokens=ANTHROPIC_MAX_TOKENS,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.AnthropicError as e:
            raise _classify_provider_error(self.label, e, call.node_id) from e
        return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")


class GeminiExecutor(LLMExecutor):
    """Gemini through its REST endpoint (httpx)."""

    node_type = NodeType.GEMINI
    label = "Gemini"
    step_purpose = "gemini-generate-text"

    async def generate(self, api_key, model, system, prompt, call) -> str:
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        async with self.http_client() as client:
            try:
                response = await client.post(
                    GEMINI_API_URL.format(model=model),
                    params={"key": api_key},
                    json=payload,
                )
            except httpx.TransportError as e:
                raise TransientNodeError(f"Gemini Node: {e}", node_id=call.node_id) from e
        raise_for_status(self.label, response, call.node_id)

        candidates = response.json().get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)
