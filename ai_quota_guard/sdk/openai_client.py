"""
Quota-guarded OpenAI client wrapper.

Picks the model for each call from the user's remaining quota and records
the call once it has succeeded.
"""

from typing import Any, Dict, List, Optional

import structlog
from openai import OpenAI

from ..core.limiter import ModelQuotaLimiter
from ..core.selector import SelectionDecision

logger = structlog.get_logger()


class QuotaExhausted(Exception):
    """Raised when no model may serve the user's request right now."""
    def __init__(self, decision: SelectionDecision):
        message = decision.message or "No model available"
        super().__init__(message)
        self.decision = decision
        self.next_available_at = decision.next_available_at


class QuotaGuardedOpenAI:
    """OpenAI client wrapper that routes each call to an allowed model.

    The model argument of every completion is chosen by the quota engine.
    Failed calls are neither retried nor counted.
    """

    def __init__(self, user_id: str, limiter: ModelQuotaLimiter, client: Optional[OpenAI] = None):
        """Initialize the guarded client.

        Args:
            user_id: User the calls are made for (required)
            limiter: Quota limiter deciding and recording usage
            client: OpenAI client (defaults to a new ``OpenAI()``)

        Raises:
            ValueError: If user_id is missing/empty
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required and cannot be empty")

        self.user_id = user_id
        self.limiter = limiter
        self.client = client or OpenAI()
        self.last_decision: Optional[SelectionDecision] = None

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion on the best available model.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            QuotaExhausted: If every model is out of quota or cooling down
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        decision = self.limiter.check(self.user_id)
        self.last_decision = decision
        if not decision.allowed:
            raise QuotaExhausted(decision)

        model_name = decision.selected_model.name
        response = self.client.chat.completions.create(
            model=model_name,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        if not self.limiter.record(self.user_id, model_name):
            logger.warning("usage_not_recorded", user_id=self.user_id, model=model_name)

        return response
