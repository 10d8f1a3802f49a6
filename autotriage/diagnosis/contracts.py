from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from autotriage.models import DiagnosisCategory


SCHEMA_V1 = "autotriage.diagnosis.v1"


class SuggestedFix(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: str = "other"  # code_patch|config_change|manual_step|other
    description: Optional[str] = None
    # Only for kind=code_patch: path -> COMPLETE new file content.
    files: Optional[Dict[str, str]] = None


class DiagnosisResponseV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schema_version: str = SCHEMA_V1
    actionable: bool = False
    category: Optional[DiagnosisCategory] = None
    probable_root_cause: str = ""
    suggested_fixes: List[SuggestedFix] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    quick_issue_title: Optional[str] = None
    quick_issue_body: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _unknown_category_is_other(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        allowed = {c.value for c in DiagnosisCategory}
        s = str(v).strip().lower()
        return s if s in allowed else DiagnosisCategory.other.value

    def first_code_patch(self) -> Optional[Dict[str, str]]:
        for fix in self.suggested_fixes:
            if fix.kind == "code_patch" and fix.files:
                return dict(fix.files)
        return None


# Shape description embedded in prompts; kept next to the model it describes.
RESPONSE_SHAPE_STRUCTURED = """{
  "actionable": <boolean>,
  "category": "crash" | "performance" | "conflict" | "config" | "memory" | "other",
  "probable_root_cause": "<one paragraph>",
  "suggested_fixes": [
    {
      "kind": "code_patch" | "config_change" | "manual_step",
      "description": "<what the change does>",
      "files": {"path/relative/to/repo.ts": "THE FULL, NEW, COMPLETE CONTENT OF THE FILE. NO DIFFS."}
    }
  ],
  "confidence": <number between 0 and 1>,
  "quick_issue_title": "<short issue/PR title>",
  "quick_issue_body": "<markdown explanation of the problem and the proposed solution>"
}"""

RESPONSE_SHAPE_GENERIC = """{
  "actionable": <boolean>,
  "probable_root_cause": "<one paragraph>",
  "suggested_fixes": [
    {
      "kind": "code_patch" | "config_change" | "manual_step",
      "description": "<what the change does>",
      "files": {"path/relative/to/repo.ts": "THE FULL, NEW, COMPLETE CONTENT OF THE FILE. NO DIFFS."}
    }
  ],
  "confidence": <number between 0 and 1>,
  "quick_issue_title": "<short issue/PR title>",
  "quick_issue_body": "<markdown explanation of the problem and the proposed solution>"
}"""
