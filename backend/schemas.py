# schemas.py
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Dict, List, Optional, Literal

class QuestionCreate(BaseModel):
    text: str
    order_index: int = 0
    type: Literal["mcq", "text"] = "text"
    options: Optional[List[str]] = None    # mcq only

    @model_validator(mode="after")
    def _mcq_needs_options(self):
        if self.type == "mcq":
            opts = [o.strip() for o in (self.options or []) if o and o.strip()]
            if not opts:
                raise ValueError("mcq questions need at least one option")
            self.options = opts
        else:
            self.options = None
        return self

class FormCreate(BaseModel):
    title: str
    description: str
    type: Literal["public", "private"] = "public"
    questions: List[QuestionCreate] = []

class QuestionOut(BaseModel):
    id: int
    order_index: int
    text: str
    type: str
    options: Optional[List[str]] = None
    class Config:
        from_attributes = True

class FormOut(BaseModel):
    id: int
    title: str
    description: str
    type: str
    created_at: Optional[datetime] = None
    questions: List[QuestionOut] = []
    class Config:
        from_attributes = True

class ResponseCreate(BaseModel):
    form_id: int
    answers: Dict[int, str]      # question_id -> answer

class IssueTokens(BaseModel):
    form_id: int
    emails: List[str]
    form_title: Optional[str] = None   # defaults to the stored form title

class ValidateToken(BaseModel):
    form_id: int
    token: str = Field(..., description="Access token received by email")

class AccessTokenOut(BaseModel):
    email: str
    token: str
    used: bool
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
