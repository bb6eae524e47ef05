from pydantic import BaseModel
from typing import Any, Dict, Optional, Union

class RegisterLogRequest(BaseModel):
    text: Optional[str] = None
    # object, or the JSON-encoded string a form field carries
    meta: Optional[Union[Dict[str, Any], str]] = None

class VerifyFileRequest(BaseModel):
    text: Optional[str] = None
    meta: Optional[Union[Dict[str, Any], str]] = None
    commitmentHex: Optional[str] = None

