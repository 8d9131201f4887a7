from typing import Dict, List, Optional
from pydantic import BaseModel

# Plain strings: empty fields must reach the session controller's own checks.
class UserCreds(BaseModel):
    email: str = ""
    password: str = ""

class NoteDraft(BaseModel):
    content: str = ""

class EditText(BaseModel):
    content: Optional[str] = None

class CategoryDraft(BaseModel):
    name: str = ""

class FilterSelection(BaseModel):
    filter: str = "all"

class ScratchText(BaseModel):
    text: str = ""

class SessionState(BaseModel):
    screen: str
    authenticated: bool
    user: Optional[Dict[str, str]] = None
    errors: Dict[str, str]
    notice: str = ""

class NoteRow(BaseModel):
    id: str
    content: str
    category: str
    category_name: str
    mode: str
    edit_buffer: Optional[str] = None

class WorkspaceState(BaseModel):
    screen: str
    user: Optional[Dict[str, str]] = None
    filter: str
    categories: List[Dict[str, str]]
    notes: List[NoteRow]
    new_note: str
    new_category: str
    pending_delete: Optional[str] = None
    scratch: str
    notice: str
    clipboard: Optional[str] = None
