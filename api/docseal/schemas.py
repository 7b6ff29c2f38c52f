from pydantic import BaseModel
from typing import Any, Dict, List, Optional

class GenerateRequest(BaseModel):
    template_id: int
    data: Optional[Dict[str, Any]] = None  # single document
    rows: Optional[List[Dict[str, Any]]] = None  # batch
    certificate_id: Optional[int] = None
    auto_sign: bool = False
    label: Optional[str] = None

    def value_rows(self) -> List[Dict[str, Any]]:
        if self.rows is not None:
            return self.rows
        return [self.data or {}]

class TemplateRename(BaseModel):
    name: str

class SignRequest(BaseModel):
    certificate_id: Optional[int] = None
