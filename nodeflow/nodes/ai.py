"""AI nodes."""

from typing import Any, Dict, Optional

from openai import AsyncOpenAI, OpenAIError

from ..core.exceptions import ExpressionError
from ..core.expressions import fill_placeholders
from ..core.logging import get_logger
from ..models.core import NodeResult
from .base import as_mapping, failure, success

logger = get_logger(__name__)


class OpenAIChatHandler:
    """Sends ``prompt`` to an OpenAI chat model and returns the reply.

    ``{name}`` placeholders in the prompt are filled from the node input.
    ``model`` and ``temperature`` are optional.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "gpt-4o-mini",
        client: Optional[AsyncOpenAI] = None
    ):
        self.api_key = api_key
        self.default_model = default_model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def __call__(self, node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
        template = parameters.get("prompt")
        if not template:
            return failure(node_id, "OpenAI node requires a 'prompt' parameter")

        try:
            prompt = fill_placeholders(str(template), as_mapping(input_data))
        except ExpressionError as e:
            return failure(node_id, e.message)

        model = parameters.get("model") or self.default_model
        request: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if parameters.get("temperature") is not None:
            request["temperature"] = float(parameters["temperature"])

        try:
            response = await self.client.chat.completions.create(**request)
        except OpenAIError as e:
            logger.warning(f"OpenAI node {node_id} request failed: {e}")
            return failure(node_id, f"OpenAI request failed: {e}")

        content = response.choices[0].message.content if response.choices else None
        return success(node_id, {
            "response": content,
            "model": model,
            "prompt": prompt,
        })

