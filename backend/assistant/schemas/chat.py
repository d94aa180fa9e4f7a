from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChatMessage(BaseModel):
    """One history turn. Accepts the widget shape (`from`/`text`) and the
    completion shape (`role`/`content`)."""

    model_config = ConfigDict(populate_by_name=True)

    sender: Literal["user", "bot", "assistant", "system"] = Field(default="user", alias="from")
    text: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_role_content(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "from" not in data and "sender" not in data and "role" in data:
                data["from"] = data.pop("role")
            if "text" not in data and "content" in data:
                data["text"] = data.pop("content")
        return data

    @property
    def role(self) -> str:
        if self.sender in ("bot", "assistant"):
            return "assistant"
        if self.sender == "system":
            return "system"
        return "user"


class ChatRequest(BaseModel):
    message: str
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    include_full_catalog: bool = False


class IntentInfo(BaseModel):
    sub_category_id: Optional[str] = None
    category_name: Optional[str] = None
    oem_id: Optional[str] = None
    confidence: float = 0.0
    listing_urls: List[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    success: bool = True
    message: str
    quick_replies: List[str] = Field(default_factory=list)
    conversation_stage: Optional[str] = None
    intent: Optional[IntentInfo] = None


class SourceOutcomeInfo(BaseModel):
    label: str
    status: str
    elapsed_ms: float


class ContextResponse(BaseModel):
    knowledge_block: str
    stage_instructions: str
    conversation_stage: str
    stage_confidence: float
    stage_context: Dict[str, Any] = Field(default_factory=dict)
    intent: IntentInfo
    quick_replies: List[str] = Field(default_factory=list)
    degraded: List[str] = Field(default_factory=list)
    outcomes: List[SourceOutcomeInfo] = Field(default_factory=list)


class ReindexResponse(BaseModel):
    indexed_chunks: int
    ready: bool
