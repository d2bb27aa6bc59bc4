import io
import json
import pathlib
import mimetypes
import functools
import threading
from enum import Enum
from concurrent.futures import ThreadPoolExecutor

from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from PIL import UnidentifiedImageError
import openai

from jackometer import config, gateway, storage, social, compressor
from jackometer.config import setup_logger
from jackometer.documents import (
    Draft, FieldTable, DRAFT_KINDS, new_id, new_table, format_tables_for_ai,
)
from jackometer.helpers import (
    _load_users, _save_users, _hash_password, password_problem,
    upload_to_text, image_to_base64, strip_data_url, split_markdown_links,
    build_download, format_size,
)

logger = setup_logger(__name__)

# ─── Flask app ─────────────────────────────────────────────────────────
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = config.MAX_CONTENT_LENGTH
CORS(app)


class AppView(str, Enum):
    DASHBOARD = "DASHBOARD"
    RESEARCH = "RESEARCH"
    DOCUMENT_WRITER = "DOCUMENT_WRITER"
    ASSIGNMENT = "ASSIGNMENT"
    FIELD_TRIP = "FIELD_TRIP"
    TECHNICAL_REPORT = "TECHNICAL_REPORT"
    LAB_REPORT = "LAB_REPORT"
    CAREER = "CAREER"
    DATA_CRUNCHER = "DATA_CRUNCHER"
    COMPRESSOR = "COMPRESSOR"
    COMMUNITY = "COMMUNITY"
    INBOX = "INBOX"
    NOTIFICATIONS = "NOTIFICATIONS"
    SETTINGS = "SETTINGS"
    PROFILE = "PROFILE"


CV_FIELDS = ("fullName", "email", "phone", "education", "experience", "skills")
PROFILE_FIELDS = ("firstName", "lastName", "email", "institution", "course", "level", "bio")
CONTACT_FIELDS = ("email", "phone", "recoveryEmail")

# Default state of every persisted panel
PANELS = {
    "shell": {"view": AppView.DASHBOARD.value, "theme": "light"},
    "research": {"mode": "FORGE", "topicInput": "", "titles": [], "selectedTitle": None,
                 "draft": None, "citations": [], "bibliography": ""},
    "document": {"level": "Undergraduate", "course": "", "topic": "", "details": "",
                 "appendix": [], "draft": None, "videos": []},
    "technical_report": {"topic": "", "details": "", "draft": None},
    "lab_report": {"topic": "", "details": "", "draft": None, "analysis": ""},
    "fieldtrip": {"topic": "", "notes": "", "requirements": "", "coords": None,
                  "weather": None, "tables": [], "checklist": [], "deck": None, "document": ""},
    "data": {"input": "", "result": None},
    "assignment": {"mode": "GRADER", "input": "", "instruction": "", "output": "",
                   "biasProfile": "", "solution": ""},
    "career": {"cv": {k: "" for k in CV_FIELDS}, "docOutput": "", "reviewOutput": ""},
    "settings": {"contact": {"email": "", "phone": "", "recoveryEmail": ""}},
    "profile": {k: "" for k in PROFILE_FIELDS},
}

# Compressed files live only as long as the process
_compressed = {}
_compressed_lock = threading.Lock()


def needs_user(view):
    """Pass the caller's Username header to the view, or reject the request."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        username = request.headers.get("Username")
        if not username:
            return jsonify(error="Missing username"), 401
        return view(username, *args, **kwargs)
    return wrapper


def _state(username, panel):
    return storage.load_state(username, panel, PANELS[panel])

def _persist(username, panel, state):
    storage.save_state(username, panel, state)

def _body():
    return request.get_json(silent=True) or request.form.to_dict()

def _draft_view(draft):
    return {
        "text": draft.text,
        "segments": split_markdown_links(draft.text),
        "sections": draft.sections,
        "canUndo": draft.can_undo,
        "canRedo": draft.can_redo,
    }

def _image_arg(data, field="image"):
    """Base64 JPEG from an uploaded file or a data URL in the body."""
    upload = request.files.get(field)
    if upload:
        return image_to_base64(upload.read())
    value = data.get(field)
    return strip_data_url(value) if value else None

def _tables_arg(data):
    tables = data.get("tables") or []
    if isinstance(tables, str):
        return tables
    return format_tables_for_ai(tables)


@app.errorhandler(openai.OpenAIError)
@app.errorhandler(gateway.GatewayError)
@app.errorhandler(json.JSONDecodeError)
def generation_failed(e):
    logger.error("AI request failed: %s", e, exc_info=e)
    return jsonify(error="Generation failed. Try again."), 502


@app.errorhandler(UnidentifiedImageError)
def unreadable_image(e):
    return jsonify(error="Could not read image"), 400

# ─── 1) AUTH ───────────────────────────────────────────────────────────
@app.post("/register")
def register():
    data = request.get_json(force=True)
    username = data.get("username", "").strip()
    password = data.get("password", "").strip()

    if not username or not password:
        return jsonify(error="Missing username or password"), 400
    problem = password_problem(password)
    if problem:
        return jsonify(error=problem), 400

    users = _load_users()
    if username in users:
        return jsonify(error="Username already exists"), 400

    users[username] = {
        "password": _hash_password(password),
        "profile": {
            "name": data.get("fullName", "").strip() or username,
            "email": username,
            "institution": data.get("institution", "").strip(),
            "role": "Scholar",
            "avatar": None,
        },
    }
    _save_users(users)
    logger.info("Registered %s", username)
    return jsonify(message="User registered successfully")


@app.post("/login")
def login():
    data = request.get_json(force=True)
    username = data.get("username", "").strip()
    password = data.get("password", "").strip()

    if not username or not password:
        return jsonify(error="Missing username or password"), 400

    users = _load_users()
    hashed = _hash_password(password)

    if username not in users or users[username]["password"] != hashed:
        return jsonify(error="Invalid username or password"), 401

    profile = users[username].get("profile") or {
        "name": "Academic User", "email": username,
        "institution": "University of Science", "role": "Scholar", "avatar": None,
    }
    storage.save_state(username, "user", profile)
    return jsonify(message="Login successful", user=profile)


@app.post("/login/google")
def login_google():
    # No real OAuth: every Google sign-in lands on the same demo scholar
    profile = {
        "name": "Google Scholar",
        "email": "scholar@gmail.com",
        "institution": "Google Academy",
        "role": "Researcher",
        "avatar": "G",
    }
    storage.save_state(profile["email"], "user", profile)
    return jsonify(message="Login successful", user=profile)


@app.post("/logout")
@needs_user
def logout(username):
    storage.remove_item(username, "user")
    return jsonify(message="Logged out")


@app.get("/me")
@needs_user
def me(username):
    profile = storage.load_state(username, "user", {})
    if not profile:
        return jsonify(error="Not logged in"), 404
    return jsonify(user=profile)

# ─── 2) SHELL ──────────────────────────────────────────────────────────
@app.get("/shell")
@needs_user
def shell(username):
    state = _state(username, "shell")
    state["user"] = storage.load_state(username, "user", {}) or None
    return jsonify(state)


@app.post("/shell/view")
@needs_user
def set_view(username):
    view = (request.get_json(force=True).get("view") or "").upper()
    if view not in AppView.__members__:
        return jsonify(error=f"Unknown view '{view}'"), 400
    state = _state(username, "shell")
    state["view"] = view
    _persist(username, "shell", state)
    return jsonify(state)


@app.post("/shell/theme")
@needs_user
def toggle_theme(username):
    state = _state(username, "shell")
    state["theme"] = "dark" if state["theme"] == "light" else "light"
    _persist(username, "shell", state)
    return jsonify(state)

# ─── 3) RESEARCH ENGINE ────────────────────────────────────────────────
def _research_view(state):
    draft = Draft.from_dict(state["draft"], "research")
    view = dict(state)
    view["draft"] = _draft_view(draft)
    view["chapters"] = [s for s in draft.sections if s["type"] == "chapter"]
    return view


@app.get("/research")
@needs_user
def research(username):
    return jsonify(_research_view(_state(username, "research")))


@app.post("/research/forge")
@needs_user
def forge_titles(username):
    topic = (request.get_json(force=True).get("topic") or "").strip()
    if not topic:
        return jsonify(error="Missing topic"), 400

    state = _state(username, "research")
    state["topicInput"] = topic
    state["titles"] = gateway.generate_research_titles(topic)
    _persist(username, "research", state)
    return jsonify(titles=state["titles"])


@app.post("/research/select")
@needs_user
def select_title(username):
    data = request.get_json(force=True)
    state = _state(username, "research")
    if "index" in data:
        try:
            chosen = state["titles"][int(data["index"])]
        except (IndexError, ValueError, TypeError):
            return jsonify(error="Title not found"), 404
    elif isinstance(data.get("title"), dict):
        chosen = data["title"]
    else:
        return jsonify(error="Missing 'index' or 'title'"), 400

    state["selectedTitle"] = chosen
    state["mode"] = "WRITER"
    _persist(username, "research", state)
    return jsonify(_research_view(state))


@app.post("/research/mode")
@needs_user
def research_mode(username):
    mode = (request.get_json(force=True).get("mode") or "").upper()
    if mode not in ("FORGE", "WRITER"):
        return jsonify(error="Mode must be FORGE or WRITER"), 400
    state = _state(username, "research")
    state["mode"] = mode
    _persist(username, "research", state)
    return jsonify(mode=mode)


@app.post("/research/chapters")
@needs_user
def add_chapter(username):
    name = (request.get_json(force=True).get("title") or "").strip()
    if not name:
        return jsonify(error="Missing chapter title"), 400
    state = _state(username, "research")
    draft = Draft.from_dict(state["draft"], "research")
    chapter = draft.add_section(name, type="chapter")
    state["draft"] = draft.to_dict()
    _persist(username, "research", state)
    return jsonify(chapter=chapter)


@app.delete("/research/chapters/<section_id>")
@needs_user
def remove_chapter(username, section_id):
    state = _state(username, "research")
    draft = Draft.from_dict(state["draft"], "research")
    try:
        draft.remove_section(section_id)
    except KeyError:
        return jsonify(error="Chapter not found"), 404
    state["draft"] = draft.to_dict()
    _persist(username, "research", state)
    return jsonify(chapters=draft.sections)


@app.post("/research/generate")
@needs_user
def generate_chapter(username):
    key = (request.get_json(force=True).get("chapter") or "").strip()
    state = _state(username, "research")
    selected = state["selectedTitle"]
    if not selected:
        return jsonify(error="Select a title first"), 400
    if not key:
        return jsonify(error="Missing chapter"), 400

    draft = Draft.from_dict(state["draft"], "research")
    section = draft.find_section(key) or next(
        (s for s in draft.sections if s["title"] == key), None)
    title = section["title"] if section else key

    content = gateway.generate_deep_research(
        selected.get("title", ""), title, selected.get("description", ""))
    if section:
        section["content"] = content
    draft.append(f"\n\n{title.upper()}\n\n{content}")

    state["draft"] = draft.to_dict()
    _persist(username, "research", state)
    return jsonify(chapter=title, content=content, draft=_draft_view(draft))

# ─── 4) CITATIONS ──────────────────────────────────────────────────────
@app.post("/research/citations")
@needs_user
def add_citation(username):
    url = (request.get_json(force=True).get("url") or "").strip()
    if not url:
        return jsonify(error="Missing url"), 400
    citation = gateway.enrich_citation_from_url(url)
    citation["id"] = new_id()

    state = _state(username, "research")
    state["citations"].append(citation)
    _persist(username, "research", state)
    return jsonify(citation=citation)


@app.delete("/research/citations/<citation_id>")
@needs_user
def remove_citation(username, citation_id):
    state = _state(username, "research")
    remaining = [c for c in state["citations"] if c.get("id") != citation_id]
    if len(remaining) == len(state["citations"]):
        return jsonify(error="Citation not found"), 404
    state["citations"] = remaining
    _persist(username, "research", state)
    return jsonify(citations=remaining)


@app.post("/research/citations/verify")
@needs_user
def verify_citations(username):
    state = _state(username, "research")
    if not state["citations"]:
        return jsonify(error="No citations to verify"), 400

    checks = {c.get("id"): c for c in gateway.verify_citations(state["citations"])
              if isinstance(c, dict)}
    for citation in state["citations"]:
        check = checks.get(citation.get("id"))
        if check:
            citation["status"] = check.get("status")
            citation["note"] = check.get("note")
    _persist(username, "research", state)
    return jsonify(citations=state["citations"])


@app.post("/research/citations/<citation_id>/quotes")
@needs_user
def citation_quotes(username, citation_id):
    context = request.get_json(force=True).get("context", "")
    state = _state(username, "research")
    citation = next((c for c in state["citations"] if c.get("id") == citation_id), None)
    if citation is None:
        return jsonify(error="Citation not found"), 404
    if not context:
        context = Draft.from_dict(state["draft"], "research").text
    return jsonify(quotes=gateway.get_contextual_quotes(citation, context))


@app.post("/research/bibliography")
@needs_user
def bibliography(username):
    style = request.get_json(force=True).get("style") or "APA 7th Edition"
    state = _state(username, "research")
    if not state["citations"]:
        return jsonify(error="No citations to format"), 400
    state["bibliography"] = gateway.generate_bibliography(state["citations"], style)
    _persist(username, "research", state)
    return jsonify(bibliography=state["bibliography"],
                   segments=split_markdown_links(state["bibliography"]))

# ─── 5) DOCUMENT WRITER ────────────────────────────────────────────────
def _appendix_text(items):
    return "; ".join(f"{i['name']}: {i['caption']}" for i in items)


@app.get("/document")
@needs_user
def document(username):
    state = _state(username, "document")
    state["draft"] = _draft_view(Draft.from_dict(state["draft"], "document"))
    return jsonify(state)


@app.post("/document/appendix")
@needs_user
def add_appendix(username):
    data = _body()
    image = _image_arg(data)
    if not image:
        return jsonify(error="Missing image"), 400
    caption = (data.get("caption") or "").strip() or gateway.generate_image_caption(image)
    upload = request.files.get("image")
    item = {
        "id": new_id(),
        "name": data.get("name") or (upload.filename if upload else "Figure"),
        "caption": caption,
    }
    state = _state(username, "document")
    state["appendix"].append(item)
    _persist(username, "document", state)
    return jsonify(item=item)


@app.delete("/document/appendix/<item_id>")
@needs_user
def remove_appendix(username, item_id):
    state = _state(username, "document")
    state["appendix"] = [i for i in state["appendix"] if i["id"] != item_id]
    _persist(username, "document", state)
    return jsonify(appendix=state["appendix"])


@app.post("/document/generate")
@needs_user
def generate_document(username):
    data = request.get_json(force=True)
    state = _state(username, "document")
    for key in ("level", "course", "topic", "details"):
        if key in data:
            state[key] = (data.get(key) or "").strip()
    if not state["topic"] or not state["course"]:
        return jsonify(error="Missing topic or course"), 400

    with ThreadPoolExecutor(max_workers=2) as pool:
        doc_future = pool.submit(
            gateway.generate_academic_document, state["level"], state["course"],
            state["topic"], state["details"], _appendix_text(state["appendix"]))
        videos_future = pool.submit(gateway.search_youtube_videos, state["topic"])
        text, videos = doc_future.result(), videos_future.result()

    draft = Draft.from_dict(state["draft"], "document")
    draft.edit(text)
    state["draft"] = draft.to_dict()
    state["videos"] = videos
    _persist(username, "document", state)
    return jsonify(draft=_draft_view(draft), videos=videos)

# ─── 6) REPORT SUITE ───────────────────────────────────────────────────
REPORT_TYPES = {"technical": "technical_report", "lab": "lab_report"}


@app.get("/reports/<kind>")
@needs_user
def report(username, kind):
    panel = REPORT_TYPES.get(kind.lower())
    if panel is None:
        return jsonify(error="Report type must be technical or lab"), 404
    state = _state(username, panel)
    state["draft"] = _draft_view(Draft.from_dict(state["draft"], panel))
    return jsonify(state)


@app.post("/reports/<kind>/generate")
@needs_user
def generate_report(username, kind):
    panel = REPORT_TYPES.get(kind.lower())
    if panel is None:
        return jsonify(error="Report type must be technical or lab"), 404
    data = request.get_json(force=True)
    topic = (data.get("topic") or "").strip()
    details = (data.get("details") or "").strip()
    if not topic:
        return jsonify(error="Missing topic"), 400

    tables = _tables_arg(data)
    appendix = data.get("appendix", "")
    if panel == "technical_report":
        text = gateway.generate_technical_report(topic, details, tables, appendix)
    else:
        text = gateway.generate_lab_report(topic, details, tables, appendix)

    state = _state(username, panel)
    state["topic"], state["details"] = topic, details
    draft = Draft.from_dict(state["draft"], panel)
    draft.edit(text)
    state["draft"] = draft.to_dict()
    _persist(username, panel, state)
    return jsonify(draft=_draft_view(draft))


@app.post("/reports/lab/microscope")
@needs_user
def microscope(username):
    image = _image_arg(_body())
    if not image:
        return jsonify(error="Missing image"), 400
    analysis = gateway.analyze_microscope_image(image)
    state = _state(username, "lab_report")
    state["analysis"] = analysis
    _persist(username, "lab_report", state)
    return jsonify(analysis=analysis)

# ─── 7) DRAFTS (edit / undo / redo / sections) ─────────────────────────
def _load_draft(username, kind):
    state = _state(username, kind)
    return state, Draft.from_dict(state["draft"], kind)

def _store_draft(username, kind, state, draft):
    state["draft"] = draft.to_dict()
    _persist(username, kind, state)
    return jsonify(draft=_draft_view(draft))


@app.get("/drafts/<kind>")
@needs_user
def get_draft(username, kind):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    _, draft = _load_draft(username, kind)
    return jsonify(draft=_draft_view(draft))


@app.post("/drafts/<kind>/edit")
@needs_user
def edit_draft(username, kind):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    text = request.get_json(force=True).get("text")
    if text is None:
        return jsonify(error="Missing text"), 400
    state, draft = _load_draft(username, kind)
    draft.edit(text)
    return _store_draft(username, kind, state, draft)


@app.post("/drafts/<kind>/undo")
@needs_user
def undo_draft(username, kind):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    state, draft = _load_draft(username, kind)
    draft.undo()
    return _store_draft(username, kind, state, draft)


@app.post("/drafts/<kind>/redo")
@needs_user
def redo_draft(username, kind):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    state, draft = _load_draft(username, kind)
    draft.redo()
    return _store_draft(username, kind, state, draft)


@app.post("/drafts/<kind>/sections")
@needs_user
def add_section(username, kind):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    data = request.get_json(force=True)
    title = (data.get("title") or "").strip()
    if not title:
        return jsonify(error="Missing title"), 400
    state, draft = _load_draft(username, kind)
    draft.add_section(title, type=data.get("type") or "section", content=data.get("content", ""))
    return _store_draft(username, kind, state, draft)


@app.patch("/drafts/<kind>/sections/<section_id>")
@needs_user
def update_section(username, kind, section_id):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    data = request.get_json(force=True)
    state, draft = _load_draft(username, kind)
    try:
        draft.update_section(section_id, title=data.get("title"), type=data.get("type"),
                             content=data.get("content"))
    except KeyError:
        return jsonify(error="Section not found"), 404
    return _store_draft(username, kind, state, draft)


@app.delete("/drafts/<kind>/sections/<section_id>")
@needs_user
def delete_section(username, kind, section_id):
    if kind not in DRAFT_KINDS:
        return jsonify(error="Unknown draft"), 404
    state, draft = _load_draft(username, kind)
    try:
        draft.remove_section(section_id)
    except KeyError:
        return jsonify(error="Section not found"), 404
    return _store_draft(username, kind, state, draft)

# ─── 8) FIELD TRIP SUITE ───────────────────────────────────────────────
def _find_table(state, table_id):
    for i, t in enumerate(state["tables"]):
        if t["id"] == table_id:
            return i, FieldTable.from_dict(t)
    return None, None


@app.get("/fieldtrip")
@needs_user
def fieldtrip(username):
    return jsonify(_state(username, "fieldtrip"))


@app.post("/fieldtrip/info")
@needs_user
def fieldtrip_info(username):
    data = request.get_json(force=True)
    state = _state(username, "fieldtrip")
    for key in ("topic", "notes", "requirements"):
        if key in data:
            state[key] = data.get(key) or ""
    _persist(username, "fieldtrip", state)
    return jsonify(state)


@app.post("/fieldtrip/telemetry")
@needs_user
def telemetry(username):
    data = request.get_json(force=True)
    try:
        coords = {"lat": float(data["lat"]), "lng": float(data["lng"])}
    except (KeyError, TypeError, ValueError):
        return jsonify(error="Missing or invalid 'lat'/'lng'"), 400
    for key in ("altitude", "accuracy"):
        coords[key] = data.get(key)

    state = _state(username, "fieldtrip")
    state["coords"] = coords
    state["weather"] = gateway.estimate_weather_conditions(coords["lat"], coords["lng"])
    _persist(username, "fieldtrip", state)
    return jsonify(coords=coords, weather=state["weather"])


@app.post("/fieldtrip/tables")
@needs_user
def add_table(username):
    data = request.get_json(silent=True) or {}
    state = _state(username, "fieldtrip")
    table = new_table(state["tables"], data.get("name"), data.get("headers"))
    state["tables"].append(table.to_dict())
    _persist(username, "fieldtrip", state)
    return jsonify(table=table.to_dict())


@app.patch("/fieldtrip/tables/<table_id>")
@needs_user
def rename_table(username, table_id):
    name = (request.get_json(force=True).get("name") or "").strip()
    if not name:
        return jsonify(error="Missing name"), 400
    state = _state(username, "fieldtrip")
    i, table = _find_table(state, table_id)
    if table is None:
        return jsonify(error="Table not found"), 404
    table.name = name
    state["tables"][i] = table.to_dict()
    _persist(username, "fieldtrip", state)
    return jsonify(table=state["tables"][i])


@app.delete("/fieldtrip/tables/<table_id>")
@needs_user
def delete_table(username, table_id):
    state = _state(username, "fieldtrip")
    i, table = _find_table(state, table_id)
    if table is None:
        return jsonify(error="Table not found"), 404
    del state["tables"][i]
    _persist(username, "fieldtrip", state)
    return jsonify(tables=state["tables"])


@app.post("/fieldtrip/tables/<table_id>/rows")
@needs_user
def add_table_row(username, table_id):
    state = _state(username, "fieldtrip")
    i, table = _find_table(state, table_id)
    if table is None:
        return jsonify(error="Table not found"), 404
    table.add_row()
    state["tables"][i] = table.to_dict()
    _persist(username, "fieldtrip", state)
    return jsonify(table=state["tables"][i])


@app.post("/fieldtrip/tables/<table_id>/cell")
@needs_user
def update_table_cell(username, table_id):
    data = request.get_json(force=True)
    state = _state(username, "fieldtrip")
    i, table = _find_table(state, table_id)
    if table is None:
        return jsonify(error="Table not found"), 404
    try:
        table.update_cell(int(data["row"]), int(data["col"]), str(data.get("value", "")))
    except (KeyError, ValueError, TypeError, IndexError):
        return jsonify(error="Invalid row or column"), 400
    state["tables"][i] = table.to_dict()
    _persist(username, "fieldtrip", state)
    return jsonify(table=state["tables"][i])


@app.post("/fieldtrip/tables/<table_id>/toggle")
@needs_user
def toggle_table(username, table_id):
    state = _state(username, "fieldtrip")
    i, table = _find_table(state, table_id)
    if table is None:
        return jsonify(error="Table not found"), 404
    table.toggle()
    state["tables"][i] = table.to_dict()
    _persist(username, "fieldtrip", state)
    return jsonify(table=state["tables"][i])


@app.post("/fieldtrip/guide")
@needs_user
def fieldtrip_guide(username):
    state = _state(username, "fieldtrip")
    if not state["topic"]:
        return jsonify(error="Missing topic"), 400
    guide = gateway.generate_field_trip_guide(state["topic"], state["requirements"])
    for suggested in guide.get("tables") or []:
        if not isinstance(suggested, dict):
            continue
        table = new_table(state["tables"], suggested.get("name"), suggested.get("headers"))
        state["tables"].append(table.to_dict())
    state["checklist"] = guide.get("checklist", [])
    _persist(username, "fieldtrip", state)
    return jsonify(tables=state["tables"], checklist=state["checklist"])


@app.post("/fieldtrip/deck")
@needs_user
def fieldtrip_deck(username):
    state = _state(username, "fieldtrip")
    tables = format_tables_for_ai(state["tables"])
    state["deck"] = gateway.generate_rapid_presentation(state["topic"], f"{state['notes']}\n\n{tables}")
    _persist(username, "fieldtrip", state)
    return jsonify(deck=state["deck"])


@app.post("/fieldtrip/document")
@needs_user
def fieldtrip_document(username):
    state = _state(username, "fieldtrip")
    notes = state["notes"]
    if state["coords"]:
        c = state["coords"]
        notes += f"\n\nLocation: {c['lat']:.6f}, {c['lng']:.6f}"
        if c.get("altitude") is not None:
            notes += f", altitude {c['altitude']} m"
    if state["weather"]:
        w = state["weather"]
        notes += f"\nWeather: {w.get('temp')}, {w.get('humidity')} humidity, {w.get('conditions')}"
    state["document"] = gateway.generate_field_trip_document(
        state["topic"], format_tables_for_ai(state["tables"]), notes)
    _persist(username, "fieldtrip", state)
    return jsonify(document=state["document"], segments=split_markdown_links(state["document"]))

# ─── 9) DATA CRUNCHER ──────────────────────────────────────────────────
@app.post("/data/analyze")
@needs_user
def analyze(username):
    data = request.get_json(force=True)
    text = (data.get("input") or "").strip()
    if not text:
        return jsonify(error="Missing input"), 400
    state = _state(username, "data")
    state["input"] = text
    state["result"] = gateway.analyze_data(text, _tables_arg(data))
    _persist(username, "data", state)
    return jsonify(result=state["result"])


@app.get("/data/export")
@needs_user
def export_analysis(username):
    result = _state(username, "data")["result"]
    if not result:
        return jsonify(error="No analysis to export"), 404
    payload = json.dumps(result, indent=2).encode("utf-8")
    return send_file(io.BytesIO(payload), mimetype="application/json",
                     as_attachment=True, download_name="data_analysis.json")

# ─── 10) ASSIGNMENT SUITE ──────────────────────────────────────────────
def _text_arg(data, field):
    """Field text from the body, or extracted from an uploaded document."""
    upload = request.files.get("file")
    if upload:
        return upload_to_text(pathlib.Path(upload.filename).name, upload.read()) or ""
    return (data.get(field) or "").strip()


@app.post("/assignment/grade")
@needs_user
def grade(username):
    data = _body()
    essay = _text_arg(data, "essay")
    if not essay:
        return jsonify(error="Missing essay"), 400
    instruction = (data.get("instruction") or "").strip()
    state = _state(username, "assignment")
    state.update(mode="GRADER", input=essay, instruction=instruction)
    state["output"] = gateway.grade_essay(essay, instruction)
    _persist(username, "assignment", state)
    return jsonify(output=state["output"], segments=split_markdown_links(state["output"]))


@app.post("/assignment/critique")
@needs_user
def critique(username):
    data = _body()
    source = _text_arg(data, "source")
    if not source:
        return jsonify(error="Missing source"), 400
    state = _state(username, "assignment")
    state.update(mode="SYNTHESIZER", input=source)
    state["output"] = gateway.synthesize_critique(source)
    _persist(username, "assignment", state)
    return jsonify(output=state["output"], segments=split_markdown_links(state["output"]))


@app.post("/assignment/supervisor")
@needs_user
def supervisor_style(username):
    text = _text_arg(_body(), "text")
    if not text:
        return jsonify(error="Missing text"), 400
    state = _state(username, "assignment")
    state["biasProfile"] = gateway.analyze_supervisor_style(text)
    _persist(username, "assignment", state)
    return jsonify(biasProfile=state["biasProfile"])


@app.post("/assignment/solve")
@needs_user
def solve(username):
    data = request.get_json(force=True)
    question = (data.get("question") or "").strip()
    if not question:
        return jsonify(error="Missing question"), 400
    state = _state(username, "assignment")
    state["solution"] = gateway.solve_assignment(
        question, state["biasProfile"], (data.get("format") or "").strip())
    _persist(username, "assignment", state)
    return jsonify(solution=state["solution"], segments=split_markdown_links(state["solution"]))

# ─── 11) CAREER STUDIO ─────────────────────────────────────────────────
@app.post("/career/passport")
@needs_user
def passport(username):
    data = _body()
    background = (data.get("background") or "white").lower()
    if background not in ("white", "red"):
        return jsonify(error="Background must be white or red"), 400
    image = _image_arg(data)
    if not image:
        return jsonify(error="Missing image"), 400
    result = gateway.generate_passport_edit(image, background)
    return jsonify(image=f"data:image/png;base64,{result}")


@app.post("/career/document")
@needs_user
def career_document(username):
    data = request.get_json(force=True)
    kind = (data.get("kind") or "CV").upper()
    if kind not in ("CV", "RESUME"):
        return jsonify(error="Kind must be CV or RESUME"), 400
    state = _state(username, "career")
    for key in CV_FIELDS:
        if key in data:
            state["cv"][key] = data.get(key) or ""
    if not state["cv"]["fullName"].strip():
        return jsonify(error="Name required"), 400

    if kind == "CV":
        state["docOutput"] = gateway.generate_optimized_cv(state["cv"])
    else:
        state["docOutput"] = gateway.generate_resume(state["cv"])
    _persist(username, "career", state)
    return jsonify(output=state["docOutput"])


@app.post("/career/review")
@needs_user
def career_review(username):
    data = _body()
    image = _image_arg(data)
    text = None if image else (data.get("text") or "").strip()
    if not image and not text:
        return jsonify(error="Provide text or an image"), 400
    state = _state(username, "career")
    state["reviewOutput"] = gateway.review_career_document(text=text, image=image)
    _persist(username, "career", state)
    return jsonify(output=state["reviewOutput"])

# ─── 12) FILE STUDIO ───────────────────────────────────────────────────
def _file_view(entry):
    view = entry.to_dict()
    view["originalSizeLabel"] = format_size(entry.original_size)
    view["compressedSizeLabel"] = format_size(entry.compressed_size)
    return view


@app.post("/compress")
@needs_user
def compress(username):
    uploaded = request.files.getlist("files")
    if not uploaded:
        return jsonify(error="Missing files"), 400
    try:
        quality = float(request.form.get("quality", 0.6))
        target_kb = float(request.form.get("target_kb") or 0)
    except ValueError:
        return jsonify(error="Invalid quality or target size"), 400
    target = int(target_kb * 1024) if target_kb > 0 else None

    entries = []
    for f in uploaded:
        name = pathlib.Path(f.filename).name
        mime_type = f.mimetype
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        entries.append(compressor.process_file(name, mime_type, f.read(),
                                               quality=quality, target_bytes=target))

    with _compressed_lock:
        kept = entries[::-1] + _compressed.get(username, [])
        _compressed[username] = kept[:config.COMPRESS_KEEP_FILES]

    failed = all(e.status == compressor.Status.ERROR for e in entries)
    return jsonify(files=[_file_view(e) for e in entries]), (422 if failed else 200)


@app.get("/compress")
@needs_user
def list_compressed(username):
    with _compressed_lock:
        entries = list(_compressed.get(username, []))
    return jsonify(files=[_file_view(e) for e in entries])


@app.get("/compress/<file_id>/download")
@needs_user
def download_compressed(username, file_id):
    with _compressed_lock:
        entry = next((e for e in _compressed.get(username, []) if e.id == file_id), None)
    if entry is None or entry.status != compressor.Status.DONE:
        return jsonify(error="File not found"), 404
    mimetype = entry.type if entry.is_image else "application/gzip"
    return send_file(io.BytesIO(entry.blob), mimetype=mimetype,
                     as_attachment=True, download_name=entry.download_name)

# ─── 13) COMMUNITY / INBOX / NOTIFICATIONS ─────────────────────────────
@app.get("/community/scholars")
def scholars():
    exclude = [i for i in request.args.get("exclude", "").split(",") if i]
    return jsonify(results=social.search_scholars(request.args.get("q", ""), exclude))


@app.get("/community/groups")
def groups():
    return jsonify(groups=social.GROUPS)


@app.get("/community/lounge")
def lounge():
    return jsonify(messages=social.lounge_messages())


@app.post("/community/lounge")
@needs_user
def post_lounge(username):
    text = (request.get_json(force=True).get("text") or "").strip()
    if not text:
        return jsonify(error="Missing text"), 400
    return jsonify(message=social.broadcast(username, text))


@app.get("/inbox")
@needs_user
def inbox(username):
    return jsonify(messages=social.INBOX)


@app.get("/notifications")
@needs_user
def notifications(username):
    return jsonify(notifications=social.NOTIFICATIONS)

# ─── 14) SETTINGS / PROFILE ────────────────────────────────────────────
@app.get("/settings")
@needs_user
def settings(username):
    return jsonify(_state(username, "settings"))


@app.post("/settings")
@needs_user
def save_settings(username):
    data = request.get_json(force=True)
    state = _state(username, "settings")
    for key in CONTACT_FIELDS:
        if key in data:
            state["contact"][key] = (data.get(key) or "").strip()
    _persist(username, "settings", state)
    return jsonify(state)


@app.post("/settings/password")
@needs_user
def change_password(username):
    data = request.get_json(force=True)
    current = data.get("currentPass", "")
    new = data.get("newPass", "")
    if not current or not new:
        return jsonify(error="Missing current or new password"), 400
    if new != data.get("confirmPass"):
        return jsonify(error="Passwords do not match"), 400

    users = _load_users()
    if username not in users:
        return jsonify(error="Password login is not enabled for this account"), 400
    if users[username]["password"] != _hash_password(current):
        return jsonify(error="Current password is incorrect"), 401
    problem = password_problem(new)
    if problem:
        return jsonify(error=problem), 400

    users[username]["password"] = _hash_password(new)
    _save_users(users)
    logger.info("Password changed for %s", username)
    return jsonify(message="Password updated")


@app.get("/profile")
@needs_user
def profile(username):
    state = _state(username, "profile")
    user = storage.load_state(username, "user", {})
    if user and not state["firstName"]:
        first, _, last = user.get("name", "").partition(" ")
        state.update(firstName=first, lastName=last, email=user.get("email", ""),
                     institution=user.get("institution", ""))
    return jsonify(state)


@app.post("/profile")
@needs_user
def save_profile(username):
    data = request.get_json(force=True)
    state = _state(username, "profile")
    for key in PROFILE_FIELDS:
        if key in data:
            state[key] = (data.get(key) or "").strip()
    _persist(username, "profile", state)

    user = storage.load_state(username, "user", {})
    if user:
        name = " ".join(p for p in (state["firstName"], state["lastName"]) if p)
        user.update(name=name or user.get("name"),
                    email=state["email"] or user.get("email"),
                    institution=state["institution"] or user.get("institution"))
        storage.save_state(username, "user", user)
    return jsonify(state)

# ─── 15) EXPORT ────────────────────────────────────────────────────────
@app.post("/export")
def export():
    data = request.get_json(force=True)
    content = data.get("content")
    filename = (data.get("filename") or "").strip()
    mime_type = (data.get("mimeType") or "text/plain").strip()
    if content is None or not filename:
        return jsonify(error="Missing content or filename"), 400
    payload = build_download(content, filename, mime_type)
    return send_file(io.BytesIO(payload), mimetype=mime_type,
                     as_attachment=True, download_name=filename)

# ─── Run ───────────────────────────────────────────────────────────────
def main():
    app.run(port=5001, debug=True)


if __name__ == "__main__":
    main()
