"""Vision-capable LLM client with provider-agnostic interface."""

import logging

import openai
from openai import OpenAI

from ..errors import ServiceError

logger = logging.getLogger(__name__)


class LLMClient:
    """Generic LLM client. Currently uses OpenAI, interface is provider-agnostic."""

    def __init__(self, api_key: str, model: str = "gpt-5.2", timeout: float = 120.0):
        self._client = OpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    def call(
        self,
        system_prompt: str,
        user_message: str,
        image_urls: list[str] | None = None,
        label: str = "",
    ) -> str:
        """Make LLM call and return response text.

        Args:
            system_prompt: System/developer prompt.
            user_message: User message.
            image_urls: Images attached to the user message, in order.
            label: Optional label for logging token usage.

        Returns:
            Response text content.

        Raises:
            ServiceError: On any API or transport failure.
        """
        content = [{"type": "input_text", "text": user_message}]
        for url in image_urls or []:
            content.append({"type": "input_image", "image_url": url})

        try:
            response = self._client.responses.create(
                model=self.model,
                input=[
                    {"role": "developer", "content": system_prompt},
                    {"role": "user", "content": content},
                ],
                reasoning={"effort": "low"},
            )
        except openai.OpenAIError as e:
            status = getattr(e, "status_code", None)
            raise ServiceError(f"LLM call failed ({label or 'call'}): {e}", status_code=status) from e

        # Track tokens
        usage = response.usage
        if usage is not None:
            self.total_input_tokens += usage.input_tokens
            self.total_output_tokens += usage.output_tokens
            if label:
                logger.info(f"{label}: input={usage.input_tokens}, output={usage.output_tokens}")

        return (response.output_text or "").strip()

    def get_token_totals(self) -> tuple[int, int]:
        """Return accumulated (input, output) tokens."""
        return self.total_input_tokens, self.total_output_tokens
