# app/schemas/items.py
# 문제 은행 관리자 입력 스키마
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class CodingCaseIn(BaseModel):
    input: str = ""
    expected_output: str
    hidden: bool = False


class ItemIn(BaseModel):
    item_type: Literal["mcq", "coding", "behavioral", "technical"]
    category: str = Field(..., min_length=1, max_length=40)
    difficulty: Literal["easy", "medium", "hard"] = "easy"
    prompt: str = Field(..., min_length=1)
    options: List[str] = Field(default_factory=list)
    correct_index: Optional[int] = None
    explanation: Optional[str] = None
    test_cases: List[CodingCaseIn] = Field(default_factory=list)
    rubric: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_oracle(self):
        # 문항 종류별 정답 판정 수단이 있어야 한다
        if self.item_type == "mcq":
            if len(self.options) < 2:
                raise ValueError("mcq items need at least two options")
            if self.correct_index is None or not 0 <= self.correct_index < len(self.options):
                raise ValueError("mcq correct_index must point at an option")
        if self.item_type == "coding" and not self.test_cases:
            raise ValueError("coding items need at least one test case")
        return self


class AddItemsRequest(BaseModel):
    items: List[ItemIn] = Field(..., min_length=1, max_length=500)


class SweepRequest(BaseModel):
    older_than_minutes: Optional[int] = Field(None, ge=1)
