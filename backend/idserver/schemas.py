from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field

class MatrixError(BaseModel):
    errcode: str
    error: Optional[str] = None

class HashDetails(BaseModel):
    """Body of `GET /_matrix/identity/v2/hash_details`."""
    algorithms: List[str] = Field(min_length=1)
    lookup_pepper: str
    alt_lookup_peppers: Optional[List[str]] = None

class HashWithActive(BaseModel):
    hash: str
    active: int

class LookupsRequest(BaseModel):
    """Body of `POST /_matrix/identity/v2/lookups` sent to peers."""
    algorithm: str
    pepper: str
    mappings: Dict[str, Union[List[str], List[HashWithActive]]]
