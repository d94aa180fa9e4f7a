"""Stage-specific steering for the completion prompt and the chat widget."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from assistant.schemas.chat import ChatMessage
from assistant.services.conversation.stage_tracker import ConversationStage
from assistant.services.intent.resolver import Intent

STAGE_PROMPTS: Dict[ConversationStage, str] = {
    ConversationStage.DISCOVERY: """
CURRENT STAGE: DISCOVERY
Your goal: Understand the user's type and primary needs.

BEHAVIOR:
- Ask ONE clarifying question about their business/use case
- Determine if they are: individual, small business (1-50 employees), or enterprise (50+ employees)
- Identify primary goal: email, collaboration, security, cloud storage, or other
- Be warm and conversational, not interrogative
- DO NOT list products yet - focus on understanding needs

TRANSITION: Move to Narrowing stage once you understand user type and primary goal.
""",
    ConversationStage.NARROWING: """
CURRENT STAGE: NARROWING
Your goal: Help user select the right category or subcategory.

BEHAVIOR:
- Ask ONE specific question to narrow down to a category/subcategory
- Based on their previous answers, suggest 2-3 relevant categories
- DO NOT list all products - just help them choose the right category
- Use their business size and goals to guide recommendations

TRANSITION: Move to Recommendation stage once category/subcategory is identified.
""",
    ConversationStage.RECOMMENDATION: """
CURRENT STAGE: RECOMMENDATION
Your goal: Recommend 1-2 best-fit products with clear reasoning.

BEHAVIOR:
- Recommend ONLY 1-2 products that best fit their needs
- Explain WHY each product is a good fit based on their stated needs
- Mention pricing clearly for each option
- ALWAYS include the direct "Link:" from the data for each recommended product
- Offer to compare options if they're unsure

TRANSITION: Move to Conversion stage when user asks about pricing, purchasing, or shows buying intent.
""",
    ConversationStage.CONVERSION: """
CURRENT STAGE: CONVERSION
Your goal: Help user complete purchase or get detailed information.

BEHAVIOR:
- Provide exact pricing and billing details
- Include direct product page links
- Offer to help with checkout process
- Provide contact information for sales support if needed
- Soft upsell: mention upgrade paths only if genuinely beneficial

TRANSITION: Offer continued support or return to Discovery if user has new questions.
""",
}

QUICK_REPLIES: Dict[ConversationStage, List[str]] = {
    ConversationStage.DISCOVERY: ["Small Business (1-50)", "Enterprise (50+)", "Individual Use"],
    ConversationStage.NARROWING: ["Email & Collaboration", "Security & Compliance", "Cloud Storage"],
    ConversationStage.RECOMMENDATION: ["Compare Options", "Show Pricing", "See Features"],
    ConversationStage.CONVERSION: ["View Product Page", "Contact Sales", "Check Other Options"],
}

GREETING_QUICK_REPLIES = ["Show Best Sellers", "Browse Categories"]

RESTART_KEYWORDS = ("start over", "restart", "begin again", "new search", "different product")

NEEDS_KEYWORDS: Dict[str, Sequence[str]] = {
    "email": ("email", "outlook", "mail"),
    "collaboration": ("collaboration", "teams", "sharepoint", "onedrive"),
    "security": ("security", "compliance", "protection", "defender"),
    "cloud": ("cloud", "storage", "azure"),
}

FEATURE_KEYWORDS = ("backup", "encryption", "mfa", "sso", "device management", "video calls", "archiving")

_TEAM_SIZE = re.compile(r"(\d+)\s*(people|employees|users|team)", re.IGNORECASE)
_BUDGET = re.compile(r"budget.*?(\d+)", re.IGNORECASE)
_RUPEES = re.compile(r"₹\s*(\d+)")

SMALL_BUSINESS_MAX_TEAM = 50


def stage_prompt(stage: ConversationStage) -> str:
    return STAGE_PROMPTS.get(stage, STAGE_PROMPTS[ConversationStage.DISCOVERY])


def quick_replies(stage: ConversationStage) -> List[str]:
    return list(QUICK_REPLIES.get(stage, []))


def guiding_question(stage: ConversationStage, intent: Optional[Intent] = None, products: Sequence = ()) -> str:
    if stage is ConversationStage.DISCOVERY:
        return "To help you find the perfect solution, could you tell me a bit about your team size or business type?"
    if stage is ConversationStage.NARROWING:
        if intent is not None and intent.category_name:
            return (
                f"Great! For {intent.category_name}, do you have any specific requirements "
                "like pricing range or features you need?"
            )
        return "What's most important to you - collaboration tools, security features, or cloud storage?"
    if stage is ConversationStage.RECOMMENDATION:
        if len(products) > 1:
            return "Would you like me to compare these options for you, or do you have questions about a specific product?"
        return "Does this solution meet your needs, or would you like to explore other options?"
    if stage is ConversationStage.CONVERSION:
        return "Would you like the direct link to purchase, or do you have any final questions?"
    return "How can I help you find the right solution today?"


def detect_restart_intent(message: str) -> bool:
    lower = (message or "").lower()
    return any(keyword in lower for keyword in RESTART_KEYWORDS)


@dataclass
class UserPreferences:
    team_size: Optional[int] = None
    business_type: Optional[str] = None
    budget: Optional[int] = None
    primary_needs: List[str] = field(default_factory=list)
    mentioned_features: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.team_size or self.budget or self.primary_needs or self.mentioned_features)

    def summary(self) -> str:
        parts: List[str] = []
        if self.team_size:
            parts.append(f"team size {self.team_size} ({self.business_type})")
        if self.budget:
            parts.append(f"budget around ₹{self.budget:,}")
        if self.primary_needs:
            parts.append("needs: " + ", ".join(self.primary_needs))
        if self.mentioned_features:
            parts.append("features: " + ", ".join(self.mentioned_features))
        return "; ".join(parts)


def extract_user_preferences(history: Sequence[ChatMessage]) -> UserPreferences:
    """Scan user turns only. Later mentions overwrite earlier numbers."""
    prefs = UserPreferences()
    for msg in history or ():
        if msg.role != "user":
            continue
        text = (msg.text or "").lower()

        team = _TEAM_SIZE.search(text)
        if team:
            prefs.team_size = int(team.group(1))
            prefs.business_type = "small_business" if prefs.team_size <= SMALL_BUSINESS_MAX_TEAM else "enterprise"

        budget = _BUDGET.search(text) or _RUPEES.search(text)
        if budget:
            prefs.budget = int(budget.group(1))

        for need, keywords in NEEDS_KEYWORDS.items():
            if need not in prefs.primary_needs and any(k in text for k in keywords):
                prefs.primary_needs.append(need)

        for feature in FEATURE_KEYWORDS:
            if feature in text and feature not in prefs.mentioned_features:
                prefs.mentioned_features.append(feature)
    return prefs
