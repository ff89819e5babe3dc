"""
Thin wrapper over the OpenAI chat API that returns parsed JSON objects.
"""
import json
import logging
import re
from typing import Any

from openai import OpenAI, OpenAIError

from aiborn.core.errors import ConfigurationError

logger = logging.getLogger("aiborn.llm")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class LlmError(Exception):
    pass


class LlmClient:
    def __init__(self, api_key: str | None, model: str, timeout: float = 60.0, client: OpenAI | None = None):
        self.model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("OPENAI_API_KEY is not configured", code="MISSING_API_KEY")
            self._client = OpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    def complete_json(self, prompt: str, max_tokens: int = 2000) -> dict[str, Any]:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as e:
            raise LlmError(f"LLM request failed: {e}") from e

        text = resp.choices[0].message.content or ""
        return extract_json_object(text)


def extract_json_object(text: str) -> dict[str, Any]:
    m = _JSON_OBJECT.search(text)
    if not m:
        raise LlmError("No JSON found in LLM response")
    try:
        data = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise LlmError(f"Invalid JSON in LLM response: {e}") from e
    if not isinstance(data, dict):
        raise LlmError("LLM response JSON is not an object")
    return data
