# hoa_dispute/schema.py
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field

class ChargeItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str
    description: str = ""
    amount: float = 0
    questionable: bool = False
    # Only set on placeholder records
    raw_output: Optional[str] = Field(default=None, alias="rawOutput")
    error: Optional[str] = None

class SuggestionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    suggestion: str
    category: str
    estimated_savings: float = 0
    raw_output: Optional[str] = Field(default=None, alias="rawOutput")
    error: Optional[str] = None

class SuggestionRequest(BaseModel):
    # Validated by hand so a bad breakdown is a 400, not a 422
    breakdown: Any = None

class SuggestionResponse(BaseModel):
    suggestions: List[SuggestionItem] = Field(default_factory=list)

class LegalQuestionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Optional[str] = None
    region: Optional[str] = None
    language_note: Optional[str] = Field(default=None, alias="languageNote")

class LegalAnswer(BaseModel):
    answer: str

class DisputeLetterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    context: Optional[str] = None
    language_note: Optional[str] = Field(default=None, alias="languageNote")

class DisputeLetter(BaseModel):
    letter: str
