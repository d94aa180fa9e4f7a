from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from assistant.services.intent.resolver import Intent


class ConversationStage(str, enum.Enum):
    DISCOVERY = "Discovery"
    NARROWING = "Narrowing"
    RECOMMENDATION = "Recommendation"
    CONVERSION = "Conversion"


PURCHASE_KEYWORDS = ("buy", "purchase", "price", "cost", "how much", "checkout", "order")

DISCOVERY_LIMIT = 3
NARROWING_LIMIT = 8
RECOMMENDATION_LIMIT = 12


@dataclass(frozen=True)
class ConversationState:
    stage: ConversationStage
    confidence: float
    message_count: int
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def goal(self) -> str:
        return str(self.context.get("goal", ""))

    @property
    def next_action(self) -> str:
        return str(self.context.get("next_action", ""))


def has_purchase_intent(message: str) -> bool:
    lower = (message or "").lower()
    return any(keyword in lower for keyword in PURCHASE_KEYWORDS)


def track_conversation_state(
    history: Optional[Sequence[Any]],
    message: str,
    intent: Optional[Intent] = None,
) -> ConversationState:
    """Recompute the funnel stage from history length, the current message and intent.

    Stateless: nothing is remembered between calls.
    """
    count = len(history or ())
    intent = intent or Intent.none()

    if count < DISCOVERY_LIMIT:
        return ConversationState(
            stage=ConversationStage.DISCOVERY,
            confidence=0.9,
            message_count=count,
            context={
                "goal": "Understand user type (individual, business, enterprise) and primary needs",
                "next_action": "Ask about team size, business type, or specific use case",
            },
        )

    if count < NARROWING_LIMIT:
        if intent.has_category or intent.category_name:
            return ConversationState(
                stage=ConversationStage.RECOMMENDATION,
                confidence=0.85,
                message_count=count,
                context={
                    "goal": "Recommend 1-2 best-fit products based on identified category",
                    "next_action": "Suggest specific products with reasoning",
                    "category": intent.category_name,
                    "sub_category_id": intent.sub_category_id,
                },
            )
        return ConversationState(
            stage=ConversationStage.NARROWING,
            confidence=0.8,
            message_count=count,
            context={
                "goal": "Help user select the right category or subcategory",
                "next_action": (
                    "Ask clarifying questions about specific needs (email, security, collaboration, etc.)"
                ),
            },
        )

    if count < RECOMMENDATION_LIMIT:
        if has_purchase_intent(message):
            return ConversationState(
                stage=ConversationStage.CONVERSION,
                confidence=0.9,
                message_count=count,
                context={
                    "goal": "Help user complete purchase or get detailed pricing",
                    "next_action": "Provide pricing details and direct to product page",
                },
            )
        return ConversationState(
            stage=ConversationStage.RECOMMENDATION,
            confidence=0.85,
            message_count=count,
            context={
                "goal": "Recommend and explain product options",
                "next_action": "Compare products, explain features, or suggest upgrades",
            },
        )

    return ConversationState(
        stage=ConversationStage.CONVERSION,
        confidence=0.9,
        message_count=count,
        context={
            "goal": "Help user complete purchase or provide final information",
            "next_action": "Direct to product page, offer checkout assistance, or provide contact info",
        },
    )
