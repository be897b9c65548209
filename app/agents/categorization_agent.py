"""CategorizationAgent: asks the completion model to categorize a numbered batch of transactions."""

import json

from app.agents.base import BaseAgent
from app.agents.prompts import CATEGORIZATION_PROMPT, CONTEXT_TEMPLATE
from app.agents.registry import AgentRegistry
from app.agents.schemas import CategorizationPayload, CategorizedItemPayload
from app.core.models import RawTransaction, UserContext


def context_prompt(context: UserContext) -> str:
    """Industry-aware hint appended to the categorization prompt, empty when nothing is known."""
    if not (context.industry or context.business_type):
        return ""
    company = f' Company name: "{context.company_name}".' if context.company_name else ""
    return CONTEXT_TEMPLATE.format(
        business_type=context.business_type or "business",
        industry=context.industry or "general",
        company=company,
    )


class CategorizationAgent(BaseAgent):
    """Agent responsible for per-batch categorization and BUSINESS/PERSONAL classification."""

    name = "categorization"

    def categorize_batch(
        self, batch: list[RawTransaction], context: UserContext, label: str = "Categorize"
    ) -> list[CategorizedItemPayload]:
        """Categorize one batch; items carry the 1-based ordinal they were sent with."""
        numbered = [
            {
                "index": position,
                "date": txn.date.isoformat(),
                "description": txn.description,
                "amount": txn.amount,
                "type": txn.type,
                "categoryHint": txn.category,
            }
            for position, txn in enumerate(batch, start=1)
        ]
        prompt = CATEGORIZATION_PROMPT.format(
            count=len(batch),
            transactions=json.dumps(numbered, indent=2),
            context=context_prompt(context),
        )
        data = self.complete_json(
            [{"role": "user", "content": prompt}],
            max_tokens=self.settings.categorize_max_tokens,
            timeout=self.settings.page_timeout,
            label=label,
        )
        return self.parse(CategorizationPayload, data, label).categorized_transactions


AgentRegistry.register(CategorizationAgent.name, CategorizationAgent)
