"""
Judgment invoker - asks a chat-completions model for a structured verdict on
a normalized judgment context.

Model configuration is read on first use and kept for the life of the
invoker. Every failure after configuration is reported as
``JudgmentInvocationError``; a partially valid verdict is never returned.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from gitconnect.config import Settings
from gitconnect.judgment.context import JudgmentContext

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You are a senior software engineer who reviews GitHub pull requests, issues, and commits.
Given context about a change, decide whether it should be approved, needs changes, or needs further discussion.
Respond with a single JSON object that matches the provided schema and nothing else.
Keep the summary under five sentences and make every finding, risk and action concrete."""

TEMPERATURE = 0.2
TOP_P = 0.8
MAX_TOKENS = 1024
REQUEST_TIMEOUT = 60


class JudgmentConfigError(Exception):
    """Required model configuration is missing"""

    pass


class JudgmentInvocationError(Exception):
    """The model call failed or returned an unusable answer"""

    def __init__(self, message: str, cause: Any = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class VerdictTarget(BaseModel):
    type: Literal["pull_request", "issue", "commit"]
    repository: str
    identifier: str


class ModelVerdict(BaseModel):
    decision: Literal["approve", "request_changes", "needs_discussion"]
    confidence: float = Field(ge=0, le=1)
    summary: str = Field(min_length=1)
    findings: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)


class Verdict(ModelVerdict):
    target: VerdictTarget


VERDICT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "decision": {
            "type": "string",
            "enum": ["approve", "request_changes", "needs_discussion"],
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "summary": {"type": "string"},
        "findings": {"type": "array", "items": {"type": "string"}},
        "risks": {"type": "array", "items": {"type": "string"}},
        "recommended_actions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["decision", "confidence", "summary", "findings", "risks", "recommended_actions"],
    "additionalProperties": False,
}


def build_prompt(context: JudgmentContext) -> str:
    context_json = json.dumps(context.model_dump(mode="json"), indent=2)
    return "\n".join(
        [
            f"Repository: {context.repository}",
            f"Target: {context.identifier} ({context.type})",
            "---",
            "Context JSON:",
            context_json,
        ]
    )


def strip_code_fence(text: str) -> str:
    """Drop a surrounding ```json fence some models add despite instructions"""
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        stripped = stripped[3:-3].strip()
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()


def parse_verdict(text: Optional[str], context: JudgmentContext) -> Verdict:
    """
    Parse model output into a Verdict for ``context``

    Raises:
        JudgmentInvocationError: Empty output, invalid JSON or a schema mismatch
    """
    if not text or not text.strip():
        raise JudgmentInvocationError("Model returned an empty response")

    try:
        payload = json.loads(strip_code_fence(text))
    except ValueError as e:
        raise JudgmentInvocationError("Model response is not valid JSON", cause=str(e))

    if not isinstance(payload, dict):
        raise JudgmentInvocationError("Model response is not a JSON object")

    try:
        verdict = ModelVerdict.model_validate(payload)
    except ValidationError as e:
        raise JudgmentInvocationError(
            "Model response does not match the verdict schema", cause=str(e)
        )

    return Verdict(
        **verdict.model_dump(),
        target=VerdictTarget(
            type=context.type,
            repository=context.repository,
            identifier=context.identifier,
        ),
    )


@dataclass(frozen=True)
class ModelConfig:
    api_key: str
    api_url: str
    model: str


class JudgmentInvoker:
    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.settings = settings
        self._config: Optional[ModelConfig] = None

    def get_config(self) -> ModelConfig:
        if self._config is not None:
            return self._config

        if not self.settings.openrouter_api_key:
            raise JudgmentConfigError("OPENROUTER_API_KEY not configured")
        if not self.settings.judgment_model:
            raise JudgmentConfigError("JUDGMENT_MODEL not configured")

        self._config = ModelConfig(
            api_key=self.settings.openrouter_api_key,
            api_url=self.settings.openrouter_api_url,
            model=self.settings.judgment_model,
        )
        logger.info(f"Judgment model configured: {self._config.model}")
        return self._config

    async def invoke(self, context: JudgmentContext) -> Verdict:
        """
        Generate a verdict for ``context``

        Raises:
            JudgmentConfigError: Missing configuration, before any network call
            JudgmentInvocationError: Transport, HTTP or output failures
        """
        config = self.get_config()
        start_time = time.time()

        body = {
            "model": config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": build_prompt(context)},
            ],
            "temperature": TEMPERATURE,
            "top_p": TOP_P,
            "max_tokens": MAX_TOKENS,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "judgment_verdict", "strict": True, "schema": VERDICT_SCHEMA},
            },
        }
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

        try:
            resp = await self.http.post(
                config.api_url, headers=headers, json=body, timeout=REQUEST_TIMEOUT
            )
            resp.raise_for_status()
            response_data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Judgment model HTTP error: {e.response.status_code} {e.response.text}")
            raise JudgmentInvocationError(
                "Judgment model returned an error response", cause=e.response.text
            )
        except httpx.HTTPError as e:
            logger.error(f"Judgment model request failed: {e}")
            raise JudgmentInvocationError("Failed to reach the judgment model", cause=str(e))
        except ValueError as e:
            raise JudgmentInvocationError("Judgment model returned invalid JSON", cause=str(e))

        try:
            content = response_data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise JudgmentInvocationError("Judgment model response has no content")

        verdict = parse_verdict(content, context)
        processing_time = (time.time() - start_time) * 1000
        logger.info(
            f"Judgment for {context.identifier} in {context.repository}: "
            f"{verdict.decision} ({processing_time:.2f}ms)"
        )
        return verdict
