"""ValidationAgent: second-opinion audit of already-categorized transactions."""

import json
from typing import Any

from app.agents.base import BaseAgent
from app.agents.prompts import VALIDATION_PROMPT
from app.agents.registry import AgentRegistry
from app.agents.schemas import ValidatedItemPayload, ValidationPayload


class ValidationAgent(BaseAgent):
    """Agent responsible for flagging wrong categories or profiles."""

    name = "validation"

    def validate_batch(self, items: list[dict[str, Any]], label: str = "Re-validate") -> list[ValidatedItemPayload]:
        """Re-validate one batch of transaction summaries (each carries ``transactionId``)."""
        prompt = VALIDATION_PROMPT.format(transactions=json.dumps(items, indent=2, default=str))
        data = self.complete_json(
            [{"role": "user", "content": prompt}],
            max_tokens=self.settings.validation_max_tokens,
            timeout=self.settings.page_timeout,
            label=label,
        )
        return self.parse(ValidationPayload, data, label).validated_transactions


AgentRegistry.register(ValidationAgent.name, ValidationAgent)
