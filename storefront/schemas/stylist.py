from pydantic import BaseModel, Field
from typing import List, Literal

class ChatTurn(BaseModel):
    role: Literal["user", "model"]
    text: str = Field(..., max_length=4000)

class StylistRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000, description="The shopper's message")
    history: List[ChatTurn] = Field(default_factory=list, max_length=20)

class StylistResponse(BaseModel):
    reply: str
    fallback: bool = False
