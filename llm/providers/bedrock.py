"""
AWS Bedrock LLM Provider.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import CompletionError

logger = logging.getLogger(__name__)


class BedrockProvider:
    """
    AWS Bedrock completion provider.

    Supports Claude models via Bedrock. boto3 is synchronous, so calls run
    in a worker thread.
    """

    DEFAULT_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        region: str = "us-east-1",
        client: Any = None,
    ):
        """
        Initialize Bedrock provider.

        Args:
            model_id: Bedrock model ID
            region: AWS region
            client: Pre-built bedrock-runtime client, mainly for tests
        """
        self.model_id = model_id
        self.region = region

        self._client = client or boto3.client("bedrock-runtime", region_name=region)
        logger.info(f"Bedrock provider initialized: {model_id} in {region}")

    @staticmethod
    def _build_body(
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> Dict[str, Any]:
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        if json_mode:
            system_parts.append("Respond with a single valid JSON object and nothing else.")

        # Claude requires alternating turns starting with the user
        formatted: List[Dict[str, Any]] = []
        for msg in messages:
            if msg["role"] == "system":
                continue
            if formatted and formatted[-1]["role"] == msg["role"]:
                formatted[-1]["content"][0]["text"] += "\n\n" + msg["content"]
                continue
            formatted.append({
                "role": msg["role"],
                "content": [{"type": "text", "text": msg["content"]}],
            })
        if not formatted or formatted[0]["role"] != "user":
            formatted.insert(0, {"role": "user", "content": [{"type": "text", "text": "(conversation start)"}]})

        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": max_tokens,
            "temperature": min(temperature, 1.0),
            "messages": formatted,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        return body

    def _invoke(self, model_id: str, body: Dict[str, Any]) -> str:
        response = self._client.invoke_model(
            modelId=model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        response_body = json.loads(response["body"].read())
        if "content" in response_body and response_body["content"]:
            return response_body["content"][0]["text"].strip()
        return ""

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        json_mode: bool = False,
    ) -> str:
        body = self._build_body(messages, temperature, max_tokens, json_mode)
        try:
            text = await asyncio.to_thread(self._invoke, model or self.model_id, body)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Bedrock API error: {e}")
            raise CompletionError(str(e), provider="bedrock", cause=e) from e

        if not text:
            logger.warning("Empty response from Bedrock")
            raise CompletionError("Empty response from Bedrock", provider="bedrock")
        return text
