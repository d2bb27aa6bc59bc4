import io
import re
import json
import base64
import hashlib
import os

import fitz
import docx
from PIL import Image

from jackometer import config

# ─── Upload text extraction ────────────────────────────────────────────

def pdf_to_text(file_bytes: bytes) -> str:
    pdf = fitz.open(stream=file_bytes, filetype="pdf")
    return "".join(page.get_text() for page in pdf)

def docx_to_text(file_bytes: bytes) -> str:
    buf = io.BytesIO(file_bytes)
    doc = docx.Document(buf)
    return "\n".join(p.text for p in doc.paragraphs)

def upload_to_text(filename: str, file_bytes: bytes):
    """Extract plain text from an uploaded document, or None if unsupported."""
    name = filename.lower()
    if name.endswith(".pdf"):
        return pdf_to_text(file_bytes)
    if name.endswith(".docx"):
        return docx_to_text(file_bytes)
    if name.endswith((".txt", ".md")):
        return file_bytes.decode("utf-8", errors="ignore")
    return None

# ─── Images ────────────────────────────────────────────────────────────

def image_to_base64(file_bytes: bytes) -> str:
    """Re-encode any readable image as base64 JPEG for vision prompts."""
    img = Image.open(io.BytesIO(file_bytes))
    if img.mode != "RGB":
        img = img.convert("RGB")
    with io.BytesIO() as out:
        img.save(out, format="JPEG", quality=90)
        return base64.b64encode(out.getvalue()).decode()

def strip_data_url(value: str) -> str:
    # "data:image/jpeg;base64,AAAA" -> "AAAA"
    if value and value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value

# ─── Rendering ─────────────────────────────────────────────────────────

LINK_RE = re.compile(r"(\[.*?\]\(.*?\))")
LINK_PARTS_RE = re.compile(r"\[(.*?)\]\((.*?)\)")

def split_markdown_links(text: str) -> list:
    """Split text into plain and link segments for the reader panes."""
    segments = []
    for part in LINK_RE.split(text or ""):
        if not part:
            continue
        match = LINK_PARTS_RE.fullmatch(part)
        if match:
            segments.append({"type": "link", "text": match.group(1), "url": match.group(2)})
        else:
            segments.append({"type": "text", "text": part})
    return segments

def format_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    size = float(num_bytes)
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"

# ─── Downloads ─────────────────────────────────────────────────────────

WORD_SHELL = (
    "<html xmlns:o='urn:schemas-microsoft-com:office:office' "
    "xmlns:w='urn:schemas-microsoft-com:office:word' "
    "xmlns='http://www.w3.org/TR/REC-html40'>"
    "<head><meta charset='utf-8'><title>{title}</title></head>"
    "<body style=\"font-family: 'Times New Roman', serif; font-size: 12pt; line-height: 1.5;\">"
    "{body}"
    "</body></html>"
)

def build_download(content: str, filename: str, mime_type: str) -> bytes:
    """Encode export content the way word processors and spreadsheets expect it."""
    if "msword" in mime_type or "opendocument" in mime_type:
        body = content.replace("\n\n", "<p>").replace("\n", "<br>")
        return WORD_SHELL.format(title=filename, body=body).encode("utf-8")
    if "csv" in mime_type or "text" in mime_type:
        return ("\ufeff" + content).encode("utf-8")
    return content.encode("utf-8")

# ─── user.json management ──────────────────────────────────────────────

USERS_FILE = config.USERS_FILE
SPECIAL_CHARS = "!@#$%^&*()-_=+[]{}|;:,.<>?/`~"

def _load_users():
    if not os.path.exists(USERS_FILE):
        return {}
    with open(USERS_FILE, "r") as f:
        return json.load(f)

def _save_users(data):
    with open(USERS_FILE, "w") as f:
        json.dump(data, f, indent=4)

def _hash_password(password):
    return hashlib.sha256(password.encode()).hexdigest()

def password_problem(password: str):
    """Return a message describing why the password is rejected, or None."""
    if not (8 <= len(password) <= 16):
        return "Password must be 8-16 characters"
    if not any(c.islower() for c in password) or not any(c.isupper() for c in password):
        return "Password must include both lowercase and uppercase letters"
    if not any(c.isdigit() for c in password):
        return "Password must include a number"
    if not any(c in SPECIAL_CHARS for c in password):
        return "Password must include a special character"
    return None
