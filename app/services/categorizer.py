"""Categorizer stage: batch categorization with reconciliation and fallbacks.

Every raw transaction that goes in comes out as exactly one CategorizedTransaction, in input
order. Items the model drops get a low-confidence fallback; batches that fail outright get an
even lower one. Fallbacks carry ``is_fallback=True`` so they always land in the review queue.
"""

import concurrent.futures
import time
from collections.abc import Callable

from app.agents.categorization_agent import CategorizationAgent
from app.agents.schemas import CategorizedItemPayload
from app.core.errors import CompletionError, ExtractionError
from app.core.models import CategorizedTransaction, ProfileType, RawTransaction, UserContext
from app.core.settings import Settings
from app.core.thresholds import DROPPED_ITEM_CONFIDENCE, FAILED_BATCH_CONFIDENCE
from app.core.utils import RetryPolicy, get_logger, retry_with_backoff

logger = get_logger("statement-pipeline.categorizer")

INCOME_FALLBACK_CATEGORY = "Business Revenue"
EXPENSE_FALLBACK_CATEGORY = "Uncategorized Expense"
AMOUNT_TOLERANCE = 0.005


def fallback_for(txn: RawTransaction, context: UserContext, confidence: float, reason: str) -> CategorizedTransaction:
    """Build the fallback categorization used when the model gives no usable answer."""
    category = INCOME_FALLBACK_CATEGORY if txn.amount > 0 else EXPENSE_FALLBACK_CATEGORY
    return CategorizedTransaction(
        original=txn,
        suggested_category=category,
        confidence=confidence,
        merchant=txn.merchant or txn.description,
        is_recurring=False,
        profile_type=context.default_profile_type,
        reasoning=f"Auto-generated fallback: {reason}",
        is_fallback=True,
    )


def _profile(value: str | None, default: ProfileType) -> ProfileType:
    try:
        return ProfileType(str(value).upper())
    except ValueError:
        return default


def _from_item(txn: RawTransaction, item: CategorizedItemPayload, context: UserContext) -> CategorizedTransaction:
    category = (item.suggested_category or "").strip()
    if not category:
        return fallback_for(txn, context, DROPPED_ITEM_CONFIDENCE, "model returned no category")
    return CategorizedTransaction(
        original=txn,
        suggested_category=category,
        confidence=item.confidence,
        merchant=(item.merchant or "").strip() or txn.merchant or txn.description,
        is_recurring=item.is_recurring,
        profile_type=_profile(item.profile_type, context.default_profile_type),
        reasoning=item.reasoning or "",
    )


def reconcile(
    batch: list[RawTransaction], items: list[CategorizedItemPayload], context: UserContext, label: str = "Batch"
) -> list[CategorizedTransaction]:
    """Match returned items back to the batch: by index, then description, then date and amount.

    The output always has ``len(batch)`` entries in batch order.
    """
    matched: list[CategorizedItemPayload | None] = [None] * len(batch)
    leftovers: list[CategorizedItemPayload] = []
    for item in items:
        position = (item.index - 1) if item.index is not None else -1
        if 0 <= position < len(batch) and matched[position] is None:
            matched[position] = item
        else:
            leftovers.append(item)

    for item in leftovers:
        description = (item.description or "").strip().lower()
        position = next(
            (
                pos
                for pos, txn in enumerate(batch)
                if matched[pos] is None and description and txn.description.strip().lower() == description
            ),
            None,
        )
        if position is None and item.date and item.amount is not None:
            position = next(
                (
                    pos
                    for pos, txn in enumerate(batch)
                    if matched[pos] is None
                    and txn.date.isoformat() == item.date.strip()[:10]
                    and abs(txn.amount - item.amount) < AMOUNT_TOLERANCE
                ),
                None,
            )
        if position is None:
            logger.warning(f"[{label}] Could not match returned item to the batch: {item.description!r}")
            continue
        matched[position] = item

    results: list[CategorizedTransaction] = []
    for txn, item in zip(batch, matched, strict=True):
        if item is None:
            logger.warning(f"[{label}] Model dropped '{txn.description}', using fallback")
            results.append(fallback_for(txn, context, DROPPED_ITEM_CONFIDENCE, "transaction missing from AI response"))
        else:
            results.append(_from_item(txn, item, context))
    return results


class TransactionCategorizer:
    """Splits transactions into batches and categorizes them through the completion model."""

    def __init__(
        self, agent: CategorizationAgent, settings: Settings, sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.agent = agent
        self.settings = settings
        self.sleep = sleep

    def categorize(self, transactions: list[RawTransaction], context: UserContext) -> list[CategorizedTransaction]:
        """Categorize every transaction; output length and order match the input."""
        if not transactions:
            return []
        size = max(1, self.settings.categorize_batch_size)
        batches = [transactions[start : start + size] for start in range(0, len(transactions), size)]
        logger.info(f"[Categorizer] {len(transactions)} transactions in {len(batches)} batches of up to {size}")
        results: list[list[CategorizedTransaction] | None] = [None] * len(batches)

        def process_batch(idx_batch: tuple[int, list[RawTransaction]]) -> tuple[int, list[CategorizedTransaction]]:
            idx, batch = idx_batch
            return idx, self._categorize_batch(batch, context, f"Batch {idx + 1}/{len(batches)}")

        with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, self.settings.categorize_max_workers)) as executor:
            futures = [executor.submit(process_batch, (idx, batch)) for idx, batch in enumerate(batches)]
            for future in concurrent.futures.as_completed(futures):
                idx, categorized = future.result()
                results[idx] = categorized

        flattened = [txn for batch in results for txn in batch or []]
        fallbacks = sum(1 for txn in flattened if txn.is_fallback)
        logger.info(f"[Categorizer] Categorized {len(flattened)} transactions ({fallbacks} fallbacks)")
        return flattened

    def _categorize_batch(
        self, batch: list[RawTransaction], context: UserContext, label: str
    ) -> list[CategorizedTransaction]:
        policy = RetryPolicy(
            max_attempts=self.settings.categorize_retries + 1,
            base_delay=self.settings.categorize_retry_base_delay,
        )
        try:
            items = retry_with_backoff(
                lambda attempt: self.agent.categorize_batch(batch, context, f"{label} attempt {attempt}"),
                policy,
                should_retry=lambda exc: isinstance(exc, CompletionError | ExtractionError),
                label=label,
                sleep=self.sleep,
            )
        except (CompletionError, ExtractionError) as exc:
            logger.error(f"[{label}] Categorization failed after {policy.max_attempts} attempts: {exc}")
            return [fallback_for(txn, context, FAILED_BATCH_CONFIDENCE, "categorization batch failed") for txn in batch]
        logger.info(f"[{label}] Model returned {len(items)}/{len(batch)} items")
        return reconcile(batch, items, context, label)
