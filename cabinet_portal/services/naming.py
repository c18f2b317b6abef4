"""
Folder naming and name matching for the OneDrive client tree.

Matching is case-insensitive and accent-insensitive, nothing more:
"Élodie  MARTIN" and "elodie martin" match, "Martine" and "Martin" do not.
"""

import re
import unicodedata
from typing import Optional

# Characters OneDrive refuses in item names
_INVALID_CHARS = re.compile(r'[*:<>?/\\|"]')
_WHITESPACE = re.compile(r"\s+")
_CASE_FOLDER = re.compile(r"^(.+?)\s+-\s+(.+)$")
_REFERENCE_IN_TEXT = re.compile(r"\b(DOS-\d{4}-\d{4}|\d{4}-\d{3,4}-[A-Z]{2,4})\b", re.IGNORECASE)

MAX_FOLDER_NAME_LENGTH = 250

_EXTENSION_TYPES = {
    "pdf": "procedure",
    "doc": "procedure",
    "docx": "procedure",
    "xls": "invoice",
    "xlsx": "invoice",
    "jpg": "photo",
    "jpeg": "photo",
    "png": "photo",
    "gif": "photo",
}


def sanitize_folder_name(name: str) -> str:
    cleaned = _INVALID_CHARS.sub("-", name)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:MAX_FOLDER_NAME_LENGTH].rstrip(" .")


def normalize_name(value: str) -> str:
    """Comparison key: sanitized, accents stripped, casefolded."""
    decomposed = unicodedata.normalize("NFKD", sanitize_folder_name(value))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _WHITESPACE.sub(" ", stripped).strip().casefold()


def client_folder_name(first_name: str, last_name: str) -> str:
    return sanitize_folder_name(f"{first_name} {last_name}")


def case_folder_path(
    root_folder: str,
    clients_folder: str,
    client_folder: str,
    case_folder: str,
) -> str:
    parts = [root_folder, clients_folder, client_folder, sanitize_folder_name(case_folder)]
    return "/" + "/".join(parts)


def split_case_folder_name(name: str) -> tuple[str, Optional[str]]:
    """Split "REF - Title" into its parts; a bare name is all reference."""
    match = _CASE_FOLDER.match(name.strip())
    if match:
        return match.group(1), match.group(2)
    return name.strip(), None


def extract_reference(text: str) -> Optional[str]:
    """Find a case reference (DOS-2024-0001, 2024-123-ABC) in free text."""
    match = _REFERENCE_IN_TEXT.search(text or "")
    return match.group(1).upper() if match else None


def file_extension(filename: str) -> Optional[str]:
    if "." not in filename:
        return None
    return filename.rsplit(".", 1)[1].lower() or None


def guess_document_type(filename: str) -> str:
    return _EXTENSION_TYPES.get(file_extension(filename) or "", "other")
