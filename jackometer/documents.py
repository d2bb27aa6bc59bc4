"""
Drafts and field tables: the editable documents behind the writer panels.
"""
import time
import uuid
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from jackometer import config

DEFAULT_CHAPTERS = [
    "Chapter One: Introduction",
    "Chapter Two: Literature Review",
    "Chapter Three: Methodology",
    "Chapter Four: Analysis",
    "Chapter Five: Conclusion",
]

# Default section outline per draft kind
DEFAULT_SECTIONS = {
    "research": DEFAULT_CHAPTERS,
    "document": [
        "Abstract", "Introduction", "Literature Review", "Methodology",
        "Results", "Discussion", "Conclusion", "References",
    ],
    "technical_report": [
        "Introduction", "Experience Gained", "Technical Procedures",
        "Challenges", "Conclusion", "References",
    ],
    "lab_report": [
        "Title", "Aim", "Apparatus", "Procedure", "Results", "Calculation",
        "Discussion", "Conclusion", "References",
    ],
}

DRAFT_KINDS = tuple(DEFAULT_SECTIONS)


def new_id():
    return uuid.uuid4().hex[:12]


@dataclass
class Section:
    title: str
    type: str = "section"
    content: str = ""
    id: str = field(default_factory=new_id)


class Draft:
    """
    Free text plus an outline of sections and a linear edit history.

    ``history`` holds full-text snapshots and ``index`` points at the one
    currently shown. Editing after an undo discards the redo tail.
    """

    def __init__(self, text="", sections=None, history=None, index=None,
                 limit=None):
        self.sections = list(sections or [])
        self.limit = limit or config.HISTORY_LIMIT
        if history:
            self.history = list(history)
            self.index = len(self.history) - 1 if index is None else index
            self.index = max(0, min(self.index, len(self.history) - 1))
        else:
            self.history = [text]
            self.index = 0

    @property
    def text(self):
        return self.history[self.index]

    @property
    def can_undo(self):
        return self.index > 0

    @property
    def can_redo(self):
        return self.index < len(self.history) - 1

    def edit(self, text):
        if text == self.text:
            return
        self.history = self.history[:self.index + 1]
        self.history.append(text)
        if len(self.history) > self.limit:
            self.history = self.history[-self.limit:]
        self.index = len(self.history) - 1

    def append(self, text):
        self.edit(self.text + text)

    def undo(self):
        if self.can_undo:
            self.index -= 1
        return self.text

    def redo(self):
        if self.can_redo:
            self.index += 1
        return self.text

    # sections

    def add_section(self, title, type="section", content="", id=None):
        section = Section(title=title, type=type, content=content, id=id or new_id())
        self.sections.append(asdict(section))
        return self.sections[-1]

    def find_section(self, section_id):
        return next((s for s in self.sections if s["id"] == section_id), None)

    def update_section(self, section_id, **changes):
        section = self.find_section(section_id)
        if section is None:
            raise KeyError(section_id)
        for key in ("title", "type", "content"):
            if changes.get(key) is not None:
                section[key] = changes[key]
        return section

    def remove_section(self, section_id):
        before = len(self.sections)
        self.sections = [s for s in self.sections if s["id"] != section_id]
        if len(self.sections) == before:
            raise KeyError(section_id)

    def to_dict(self):
        return {
            "text": self.text,
            "sections": self.sections,
            "history": self.history,
            "index": self.index,
        }

    @classmethod
    def from_dict(cls, data, kind="document"):
        data = data or {}
        draft = cls(
            text=data.get("text", ""),
            sections=data.get("sections"),
            history=data.get("history"),
            index=data.get("index"),
        )
        if data.get("sections") is None:
            section_type = "chapter" if kind == "research" else "section"
            for i, title in enumerate(DEFAULT_SECTIONS.get(kind, []), 1):
                draft.add_section(title, type=section_type, id=f"{kind}-{i}")
        return draft


# ─── Field tables ──────────────────────────────────────────────────────

DEFAULT_HEADERS = ["Parameter", "Observation", "Remarks"]


@dataclass
class FieldTable:
    name: str
    headers: List[str] = field(default_factory=lambda: list(DEFAULT_HEADERS))
    rows: List[List[str]] = field(default_factory=list)
    collapsed: bool = False
    id: str = field(default_factory=lambda: str(int(time.time() * 1000)) + new_id()[:4])

    def __post_init__(self):
        if not self.rows:
            self.rows = [[""] * len(self.headers)]

    def add_row(self):
        self.rows.append([""] * len(self.headers))

    def update_cell(self, row, col, value):
        if row < 0 or col < 0:
            raise IndexError(f"cell ({row}, {col}) out of range")
        self.rows[row][col] = value

    def toggle(self):
        self.collapsed = not self.collapsed

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            name=data["name"],
            headers=list(data.get("headers") or DEFAULT_HEADERS),
            rows=[list(r) for r in data.get("rows") or []],
            collapsed=bool(data.get("collapsed", False)),
            id=data.get("id") or new_id(),
        )


def new_table(existing: list, name: Optional[str] = None, headers=None) -> FieldTable:
    return FieldTable(name=name or f"Table {len(existing) + 1}",
                      headers=list(headers) if headers else list(DEFAULT_HEADERS))


def format_tables_for_ai(tables) -> str:
    """Flatten field tables into the plain-text layout used in prompts."""
    blocks = []
    for t in tables:
        if isinstance(t, dict):
            t = FieldTable.from_dict(t)
        rows = "\n".join(" | ".join(r) for r in t.rows)
        blocks.append(f"Table: {t.name}\nHeaders: {', '.join(t.headers)}\nRows:\n{rows}")
    return "\n\n".join(blocks)
