"""Confidence thresholds shared by the persister, enhancer and validator."""

REVIEW_THRESHOLD = 0.85
HIGH_SEVERITY_THRESHOLD = 0.70
VERY_LOW_THRESHOLD = 0.50

AUTO_APPLY_THRESHOLD = 0.85

MERCHANT_RULE_CONFIDENCE = 0.95
HISTORICAL_PATTERN_FLOOR = 0.70
HISTORICAL_BOOST = 0.10
RECURRING_BOOST = 0.05
MAX_BLENDED_CONFIDENCE = 0.99

DROPPED_ITEM_CONFIDENCE = 0.40
FAILED_BATCH_CONFIDENCE = 0.30
