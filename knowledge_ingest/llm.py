"""
Language model providers behind one complete/stream interface.

Messages are plain dicts with "role" ("user" or "system") and "content",
kept in the order the caller built them. A provider is chosen by name from
configuration through create_language_model().
"""
import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from openai import OpenAI, OpenAIError

from .errors import InvalidInput, LanguageModelError
from .models import ResponseFragment

logger = logging.getLogger(__name__)

Message = Dict[str, str]


def user_message(content: str) -> Message:
    return {"role": "user", "content": content}


def system_message(content: str) -> Message:
    return {"role": "system", "content": content}


class LanguageModel:
    """Capability interface for chat models."""

    provider: str = "base"

    def complete(self, messages: List[Message], model: str) -> str:
        raise NotImplementedError

    def stream(self, messages: List[Message], model: str) -> Iterator[ResponseFragment]:
        raise NotImplementedError


class BedrockLanguageModel(LanguageModel):
    """
    Claude (and other Anthropic-format models) through AWS Bedrock.

    Args:
        aws_region: AWS region for Bedrock
        max_tokens: Upper bound on generated tokens
        temperature: Sampling temperature
    """

    provider = "bedrock"

    def __init__(self, aws_region: str = "us-east-1", max_tokens: int = 2048, temperature: float = 0.5):
        self.bedrock_client = boto3.client(
            service_name="bedrock-runtime",
            region_name=aws_region
        )
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _native_request(self, messages: List[Message]) -> Dict[str, Any]:
        # Anthropic format keeps system text outside the message list
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        native_request: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [
                {"role": m["role"], "content": [{"type": "text", "text": m["content"]}]}
                for m in messages if m["role"] != "system"
            ]
        }
        if system:
            native_request["system"] = system
        return native_request

    def complete(self, messages: List[Message], model: str) -> str:
        try:
            response = self.bedrock_client.invoke_model(
                modelId=model,
                body=json.dumps(self._native_request(messages))
            )
            model_response = json.loads(response["body"].read())
        except (BotoCoreError, ClientError) as e:
            raise LanguageModelError(f"Can't invoke '{model}'. Reason: {e}", context={"model": model}) from e

        return "".join(
            block.get("text", "") for block in model_response.get("content", [])
            if block.get("type", "text") == "text"
        )

    def stream(self, messages: List[Message], model: str) -> Iterator[ResponseFragment]:
        try:
            response = self.bedrock_client.invoke_model_with_response_stream(
                modelId=model,
                body=json.dumps(self._native_request(messages))
            )
            for event in response["body"]:
                payload = event.get("chunk")
                if not payload:
                    continue
                data = json.loads(payload["bytes"])
                if data.get("type") == "content_block_delta":
                    text = data.get("delta", {}).get("text", "")
                    if text:
                        yield ResponseFragment(content=text)
                elif data.get("type") == "message_delta":
                    stop_reason = data.get("delta", {}).get("stop_reason")
                    if stop_reason:
                        yield ResponseFragment(finish_reason=stop_reason)
        except (BotoCoreError, ClientError) as e:
            raise LanguageModelError(f"Stream from '{model}' failed: {e}", context={"model": model}) from e


class OpenAILanguageModel(LanguageModel):
    """
    OpenAI chat completions; also serves Ollama through its /v1 endpoint.

    Args:
        api_key: API key (Ollama accepts any non-empty value)
        base_url: Override for OpenAI-compatible servers
    """

    provider = "openai"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, client: Optional[OpenAI] = None):
        self.client = client or OpenAI(api_key=api_key, base_url=base_url)

    def complete(self, messages: List[Message], model: str) -> str:
        try:
            response = self.client.chat.completions.create(model=model, messages=messages)
        except (OpenAIError, httpx.HTTPError) as e:
            raise LanguageModelError(f"Can't invoke '{model}'. Reason: {e}", context={"model": model}) from e
        return response.choices[0].message.content or ""

    def stream(self, messages: List[Message], model: str) -> Iterator[ResponseFragment]:
        try:
            for chunk in self.client.chat.completions.create(model=model, messages=messages, stream=True):
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                content = choice.delta.content if choice.delta else None
                if content or choice.finish_reason:
                    yield ResponseFragment(content=content or "", finish_reason=choice.finish_reason)
        except (OpenAIError, httpx.HTTPError) as e:
            raise LanguageModelError(f"Stream from '{model}' failed: {e}", context={"model": model}) from e


PROVIDERS = ("bedrock", "openai", "ollama")


def create_language_model(provider: str, settings) -> LanguageModel:
    """
    Build the configured provider.

    Args:
        provider: "bedrock", "openai" or "ollama"
        settings: Settings with the provider's connection details
    """
    name = (provider or "").strip().lower()
    if name == "bedrock":
        return BedrockLanguageModel(aws_region=settings.aws_region)
    if name == "openai":
        return OpenAILanguageModel(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    if name == "ollama":
        model = OpenAILanguageModel(api_key="ollama", base_url=settings.ollama_base_url)
        model.provider = "ollama"
        return model
    raise InvalidInput(
        f"Unknown language model provider: {provider!r}. Use one of {', '.join(PROVIDERS)}.",
        context={"provider": provider}
    )
