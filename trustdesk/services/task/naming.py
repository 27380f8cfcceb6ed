"""Storage path and file name conventions for task artifacts."""

import re
from datetime import datetime
from typing import Optional

SIGNED_FILE_STEM = "signed-document"

# Placeholder objects used to materialise empty folders in object storage
KEEP_FILES = frozenset({".gitkeep", ".emptyFolderPlaceholder"})

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def clean_name(value: str) -> str:
    """``"Trust Deed (v2)"`` -> ``"Trust_Deed_v2"``."""
    return _WHITESPACE.sub("_", _UNSAFE_CHARS.sub("", value or "").strip())


def generate_file_name(template_name: str, client_name: str, now: Optional[datetime] = None) -> str:
    """Base file name for a generated document, without extension."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%d")
    return f"{clean_name(client_name)}_{clean_name(template_name)}_{stamp}"


def generated_document_path(client_id: str, task_id: str, template_id: str, file_name: str) -> str:
    return f"{client_id}/{task_id}/{template_id}-{file_name}.html"


def task_folder(client_id: str, task_id: str) -> str:
    return f"{client_id}/{task_id}"


def signed_task_folder(task_id: str) -> str:
    return f"task-{task_id}"


def signed_document_path(task_id: str, template_id: str, file_name: Optional[str] = None) -> str:
    """Folder for a template's signed upload, or the file inside it."""
    base_path = f"{signed_task_folder(task_id)}/template-{template_id}"
    return f"{base_path}/{file_name}" if file_name else base_path


def signed_file_name(original_name: str) -> str:
    """Uploads are renamed so a new upload overwrites the previous one."""
    extension = original_name.rsplit(".", 1)[-1].lower() if "." in original_name else "pdf"
    return f"{SIGNED_FILE_STEM}.{extension}"


def is_keep_file(file_name: str) -> bool:
    return file_name in KEEP_FILES
