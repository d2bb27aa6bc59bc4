"""
AI gateway.

One function per feature. Each builds a fixed prompt from the caller's fields
and asks the OpenAI chat API for either free text or JSON matching a declared
schema. Search-grounded prompts go to the search model, prompts with a
thinking budget go to the reasoning model, everything else to the pro or fast
model. Nothing is retried here; callers turn failures into a generic error.
"""
import io
import re
import json
import base64
import datetime

from openai import OpenAI

from jackometer import config
from jackometer.config import setup_logger

logger = setup_logger(__name__)

PERSONA = "You are Jackometer, an elite academic research assistant."

_client = None


class GatewayError(Exception):
    pass


def get_client():
    global _client
    if _client is None:
        _client = OpenAI(api_key=config.OPENAI_API_KEY)
    return _client


def _reasoning_effort(budget):
    if budget <= 1024:
        return "low"
    if budget <= 4096:
        return "medium"
    return "high"


def _user_content(prompt, image=None):
    if not image:
        return prompt
    return [
        {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image}"}},
        {"type": "text", "text": prompt},
    ]


def _complete(prompt, schema=None, name="result", search=False, thinking=None,
              pro=False, image=None, system=PERSONA):
    """Send one prompt and return the raw reply text ("" if empty)."""
    kwargs = {}
    if search:
        model = config.SEARCH_MODEL
        kwargs["web_search_options"] = {}
    elif thinking:
        model = config.REASONING_MODEL
        kwargs["reasoning_effort"] = _reasoning_effort(thinking)
    else:
        model = config.MODEL if (pro or image) else config.FAST_MODEL

    if schema is not None:
        # Top-level arrays are wrapped; structured output wants an object root
        root = schema if schema.get("type") == "object" else {
            "type": "object", "properties": {"items": schema}, "required": ["items"]}
        kwargs["response_format"] = {
            "type": "json_schema",
            "json_schema": {"name": name, "schema": root},
        }

    response = get_client().chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": _user_content(prompt, image)},
        ],
        **kwargs,
    )
    text = (response.choices[0].message.content or "").strip()
    logger.debug("%s reply from %s: %d chars", name, model, len(text))
    return text


def parse_json(raw, default, array=False):
    """
    Parse a JSON reply. Empty replies give ``default``; a reply wrapped in
    prose or code fences is cut down to its outermost bracket pair. Anything
    still unparsable raises ``json.JSONDecodeError``.
    """
    if not raw:
        return default
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        pattern = r"(\[.*\])" if array else r"(\{.*\})"
        match = re.search(pattern, raw, re.S)
        if not match:
            raise
        data = json.loads(match.group(1))
    if array and isinstance(data, dict) and "items" in data:
        data = data["items"]
    return data


def _ask_json(prompt, schema, default, name, **kwargs):
    raw = _complete(prompt, schema=schema, name=name, **kwargs)
    array = schema.get("type") == "array"
    data = parse_json(raw, default, array=array)
    expected = list if array else dict
    if not isinstance(data, expected):
        raise GatewayError(f"{name} reply is {type(data).__name__}, expected {expected.__name__}")
    return data


def _string_array():
    return {"type": "array", "items": {"type": "string"}}


def _object(properties, required=None):
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


STRING = {"type": "string"}

# ─── Research engine ───────────────────────────────────────────────────

def generate_research_titles(topic):
    prompt = (
        f'The user wants research project titles for the topic: "{topic}".\n'
        "Provide 3-5 distinct, high-level, unique project titles suitable for an MSc or PhD level.\n"
        "For each title, explain what is needed (requirements) to execute it.\n"
        "Output JSON."
    )
    schema = {"type": "array", "items": _object(
        {"title": STRING, "description": STRING, "requirements": _string_array()},
        ["title", "description", "requirements"])}
    return _ask_json(prompt, schema, [], "project_titles")


CITATION_RULES = (
    "CITATION RULES:\n"
    "1. Use web search to find real sources.\n"
    "2. Follow every factual claim with an inline link in the form [Short Source Title](URL).\n"
    "3. No footnotes or numbered references; only [Title](URL) links.\n"
    '4. Finish with a section called "URL Context References" listing every URL used '
    "with a one-sentence preview of what it contains."
)


def generate_deep_research(title, chapter, context):
    prompt = (
        f"Title: {title}\nChapter: {chapter}\nContext/Outline: {context}\n\n"
        "Write the content for this chapter.\n"
        'Style: academic, "Old Money" authority, 20+ years of experience.\n'
        "Strictly academic format (APA 7th Edition).\n\n"
        f"{CITATION_RULES}\n\n"
        "Use high-level vocabulary. Do not use markdown header symbols such as ** or ##; "
        "write plain, well-formed prose but keep the links."
    )
    return _complete(prompt, search=True, name="deep_research")


def search_youtube_videos(topic):
    prompt = (
        f'Find 3 high-quality educational YouTube videos related to: "{topic}".\n'
        "Return the title, a valid watch URL and a short description for each.\n"
        "Output JSON."
    )
    schema = {"type": "array", "items": _object(
        {"title": STRING, "url": STRING, "description": STRING})}
    return _ask_json(prompt, schema, [], "youtube_videos", search=True)

# ─── Field trip & lab ──────────────────────────────────────────────────

def generate_field_trip_guide(topic, requirements):
    prompt = (
        "You are an expert academic field researcher preparing a field trip.\n"
        f'Topic: "{topic}"\nLecturer/Module requirements: "{requirements}"\n\n'
        "1. Identify the data tables needed to collect data for this topic. "
        "Be specific with headers (units in brackets).\n"
        "2. Create a checklist of mandatory observations or tasks.\n\n"
        'Output JSON: {"tables": [{"name": "...", "headers": ["..."]}], "checklist": ["..."]}'
    )
    schema = _object({
        "tables": {"type": "array", "items": _object({"name": STRING, "headers": _string_array()})},
        "checklist": _string_array(),
    })
    return _ask_json(prompt, schema, {"tables": [], "checklist": []}, "field_trip_guide")


def generate_field_trip_document(topic, tables, notes):
    prompt = (
        "Generate a comprehensive Field Trip Report document.\n"
        f"Topic: {topic}\nData tables provided: {tables}\nField notes: {notes}\n\n"
        "Structure:\n1. Introduction\n2. Methodology (include location data if provided)\n"
        "3. Results (incorporate the table data textually)\n4. Discussion\n5. Conclusion\n"
        "6. References & URL Context\n\nTone: academic, formal.\n\n"
        "Use web search to back up ecological or geological facts, cite sources inline as "
        '[Source Name](URL) and add a "URL Context References" section describing each link.'
    )
    return _complete(prompt, search=True, name="field_trip_document")


def generate_rapid_presentation(topic, raw_data):
    prompt = (
        f"User topic: {topic}\nRaw data/notes: {raw_data}\n\n"
        'Create a "Rapid Defense" slide deck structure. It should be defense-ready.\n'
        "Output JSON."
    )
    slide = _object({
        "header": STRING,
        "content": _string_array(),
        "visualCue": {"type": "string",
                      "description": "Description of a visual graph or image to generate"},
    })
    schema = _object({"title": STRING, "slides": {"type": "array", "items": slide}})
    deck = _ask_json(prompt, schema, {}, "slide_deck")
    deck.setdefault("slides", [])
    return deck


def estimate_weather_conditions(lat, lng, today=None):
    today = today or datetime.date.today()
    prompt = (
        f"Based on the coordinates {lat}, {lng} and the date {today:%a %b %d %Y}, "
        "give a realistic estimate of the weather conditions for a field report.\n"
        "Output JSON with 'temp' (e.g. '32°C'), 'humidity' (e.g. '45%') and "
        "'conditions' (e.g. 'Partly Cloudy, Dry')."
    )
    schema = _object({"temp": STRING, "humidity": STRING, "conditions": STRING})
    return _ask_json(prompt, schema, {"temp": "--", "humidity": "--", "conditions": "--"},
                     "weather")

# ─── Document writer ───────────────────────────────────────────────────

def generate_academic_document(level, course, topic, details, appendix=""):
    prompt = (
        "Write a full academic document.\n"
        f"Level: {level}\nCourse of study: {course}\nTopic: {topic}\n"
        f"Specific details: {details}\nAppendix items (images & captions): {appendix}\n\n"
        "Requirements:\n- Thoroughly researched content using web search.\n"
        "- Genuine, real citations with URLs.\n"
        "- Strict citation format: inline markdown links for every fact, [Source Title](URL).\n"
        '- No "As an AI" disclaimers.\n- Tone: "Old Money" academic expert.\n'
        '- Include a "URL Context References" section at the end listing every URL used '
        "with a one-sentence preview of the site."
    )
    return _complete(prompt, search=True, name="academic_document")

# ─── Citations ─────────────────────────────────────────────────────────

def enrich_citation_from_url(url):
    prompt = (
        f"Analyze this URL: {url}\n\n"
        "Extract:\n1. Title of the page/article/paper.\n2. Author (or organization).\n"
        '3. Year of publication (or "n.d." if unknown).\n'
        "4. Context: a one-sentence summary of what the source is about, for a "
        "bibliography annotation.\n\nOutput JSON."
    )
    schema = _object({"title": STRING, "author": STRING, "year": STRING, "context": STRING})
    data = _ask_json(prompt, schema, {}, "citation")
    data["url"] = url
    return data


def verify_citations(citations):
    prompt = (
        "Act as a strict academic librarian.\n"
        "Check whether each of the following citations looks like a real, existing "
        "academic paper or source.\n\n"
        f"Input: {json.dumps(citations)}\n\n"
        "Output a JSON array of objects with: id (from input), status ('VALID' or "
        "'SUSPICIOUS') and note (a brief reason)."
    )
    schema = {"type": "array", "items": _object({
        "id": STRING,
        "status": {"type": "string", "enum": ["VALID", "SUSPICIOUS"]},
        "note": STRING,
    })}
    return _ask_json(prompt, schema, [], "citation_checks")


def get_contextual_quotes(citation, user_context):
    prompt = (
        f"Source: {citation.get('title')} by {citation.get('author')} ({citation.get('url')})\n"
        f'The user\'s current writing context: "{user_context[:300]}..."\n\n'
        "Suggest 3 short, relevant, high-impact quotes or paraphrased points this source "
        "likely contains that would strengthen the user's argument. You cannot read the "
        "full text, so infer its most likely key findings.\n\nOutput a JSON string array."
    )
    return _ask_json(prompt, _string_array(), [], "quotes")


def generate_bibliography(citations, style):
    prompt = (
        f"Format the following citations into an annotated bibliography using {style} style.\n"
        f"Input: {json.dumps(citations)}\n\n"
        f"1. Follow {style} formatting strictly for each citation (italics, punctuation).\n"
        '2. After each citation add its "Context" on a new, indented line.\n'
        "3. Include each URL as a markdown [Link](url).\n4. Output plain text."
    )
    return _complete(prompt, name="bibliography")

# ─── Reports ───────────────────────────────────────────────────────────

def generate_technical_report(topic, details, tables="", appendix=""):
    prompt = (
        "Generate a full Student Industrial Work Experience Scheme (SIWES) or technical "
        f"report on: {topic}.\nDetails: {details}.\nData tables: {tables}.\nAppendix: {appendix}.\n\n"
        "Structure: Introduction, Experience Gained, Technical Procedures, Challenges, "
        "Conclusion, References.\nTone: professional, experienced, academic.\n\n"
        "Use web search and hyperlink every external fact as [Source](URL). "
        'Add a "URL Context" section at the end describing the links.'
    )
    return _complete(prompt, search=True, name="technical_report")


def generate_lab_report(experiment, observations, tables="", appendix=""):
    prompt = (
        f"Generate a comprehensive lab report for the experiment: {experiment}.\n"
        f"Observations: {observations}.\nData tables: {tables}.\n"
        f"Appendix (images/captions): {appendix}.\n\n"
        "Structure: Title, Aim, Apparatus, Procedure, Results (tabulated), Calculation, "
        "Discussion (biological & chemical analysis), Conclusion, References.\n"
        "Focus on biological and chemical observations inferred from the data.\n\n"
        "Use web search to back up scientific claims and hyperlink sources inline as "
        '[Source](URL). Add a "URL Context" section at the end describing the links.'
    )
    return _complete(prompt, search=True, name="lab_report")


def analyze_microscope_image(image_b64):
    prompt = (
        "You are an expert biologist and chemist. Analyze this microscope (or lab sample) image.\n\n"
        "1. IDENTIFICATION: the specimen, organism or chemical substance.\n"
        "2. BIOLOGICAL ANALYSIS: morphology (shape, stain, arrangement, organelles, cell wall, "
        "nuclei) and phase (mitosis etc.) where applicable.\n"
        "3. CHEMICAL ANALYSIS: colour changes, precipitation, viscosity, crystalline structures "
        "or signs of reaction.\n"
        "4. CLASSIFICATION: scientific classification or compound identity.\n\n"
        "Be precise and academic."
    )
    text = _complete(prompt, image=image_b64, name="microscope")
    return text or "Analysis complete but no text returned."


def generate_image_caption(image_b64):
    prompt = (
        "Write a concise, academic caption for this image for use in an appendix. "
        'Identify what is shown (e.g. "Figure 1: Microscopic view of Spirogyra...").'
    )
    return _complete(prompt, image=image_b64, name="caption") or "Figure: Image content."

# ─── Data cruncher ─────────────────────────────────────────────────────

def analyze_data(data_input, table_data=""):
    prompt = (
        "Perform a rigorous statistical and bio-systematic analysis of the following data.\n"
        f"Input text: {data_input}\nInput tables: {table_data}\n\n"
        "1. Accuracy: make no calculation errors.\n"
        "2. Complexity: handle bio-systematics and statistical variance.\n"
        "3. Output: a simple JSON structure.\n\nOutput JSON."
    )
    schema = _object({"summary": STRING, "keyTrends": _string_array(), "recommendation": STRING})
    result = _ask_json(prompt, schema, {}, "analysis", thinking=2048)
    result.setdefault("keyTrends", [])
    return result

# ─── Assignment suite ──────────────────────────────────────────────────

def grade_essay(essay, instruction=""):
    prompt = (
        'Act as "Reviewer 2": a strict external examiner with 25 years of tenure who is '
        "not easily impressed.\n\n"
        f"Ruthlessly critique the following student essay.\nAdditional instructions: {instruction}\n\n"
        f"Essay:\n{essay}\n\n"
        "Output structure:\n1. Letter grade (e.g. A-, C, F). Be realistic.\n"
        "2. The Professor's Verdict: a witty, direct, slightly cynical summary.\n"
        "3. Weak Arguments: logical fallacies or unsupported claims.\n"
        "4. Reference Check: missing or weak citations.\n"
        "5. Bias Decoder: tone adjustments for a specific lecturer archetype.\n"
        "6. Corrected Snippet: rewrite the weakest paragraph.\n\n"
        "Hyperlink any resources you suggest as [Resource Name](URL)."
    )
    return _complete(prompt, search=True, name="grade")


def synthesize_critique(source_material):
    prompt = (
        "Act as an academic critic and write a critical review essay of the source below.\n"
        f"Source: {source_material}\n\n"
        "Requirements:\n- Fully original wording.\n"
        "- Analyze the arguments, methodology and conclusions, and critique their validity.\n"
        "- Tone: high-level academic discourse.\n"
        "- Cross-reference facts with web search and cite each inline as [Source](URL).\n"
        '- End with a "URL Context" section describing the sources.'
    )
    return _complete(prompt, search=True, name="critique")


def analyze_supervisor_style(text):
    prompt = (
        "Analyze the following academic text (past papers, abstracts) to decode the "
        "supervisor's preferences.\n"
        f"Text: {text[:10000]}\n\n"
        "Identify:\n1. Preferred tone (quantitative vs qualitative, direct vs passive).\n"
        "2. Favoured authors and theories.\n3. Pet peeves (what they seem to avoid).\n\n"
        "Output a concise profile a student can write to."
    )
    return _complete(prompt, name="supervisor_style") or "Could not analyze style."


def solve_assignment(question, bias_profile="", custom_format=""):
    layout = custom_format or (
        "Standard academic essay/assignment structure (Introduction, Body Paragraphs, Conclusion)")
    prompt = (
        f"Solve this assignment question.\nQuestion: {question}\n\n"
        "STYLE & FORMAT:\n"
        "1. This is a general assignment, not a thesis; do not write chapters.\n"
        f"2. Format: {layout}.\n"
        "3. Plain text only, no markdown emphasis or headers.\n\n"
        f"Supervisor preferences: {bias_profile or 'Standard academic standard'}.\n"
        "Adjust tone, vocabulary and citations to match them, drawing on any authors "
        "they favour.\n\n"
        "Write natural, sophisticated prose. Use web search for facts, cite them inline as "
        '[Source Title](URL) and end with a "References" section listing the URLs.'
    )
    return _complete(prompt, search=True, name="assignment")

# ─── Career studio ─────────────────────────────────────────────────────

def generate_passport_edit(image_b64, background="white"):
    """Replace the photo background; returns base64 PNG data."""
    prompt = (
        f"Change the background of this person to a solid {background} background "
        "suitable for an official passport photo. Crop to a headshot if needed."
    )
    photo = io.BytesIO(base64.b64decode(image_b64))
    photo.name = "photo.jpg"
    response = get_client().images.edit(model=config.IMAGE_MODEL, image=photo, prompt=prompt)
    for item in response.data or []:
        if item.b64_json:
            return item.b64_json
    raise GatewayError("No image generated")


def generate_optimized_cv(cv):
    prompt = (
        'Create a high-impact, "Old Money" academic curriculum vitae based on:\n'
        f"{json.dumps(cv)}\nFormat: plain text, sophisticated layout, academic focus."
    )
    return _complete(prompt, name="cv")


def generate_resume(cv):
    prompt = (
        f"Create a professional one-page industry resume based on:\n{json.dumps(cv)}\n"
        "Format: plain text, bullet points, action verbs."
    )
    return _complete(prompt, name="resume")


REVIEW_PROMPT = (
    "Act as a hiring manager with 15+ years of experience. Proofread, edit and polish "
    "this CV/resume to get the candidate hired.\n\n"
    "STYLE:\n1. Avoid machine-sounding buzzwords such as tapestry, delving, orchestrated, "
    "unwavering commitment, spearheaded, cutting-edge.\n"
    "2. Write like a human expert: professional, direct, impact-oriented.\n"
    "3. Focus on tangible results and clear metrics with simple, strong verbs.\n"
    "4. Keep it concise.\n\n"
    "Instructions:\n1. Fix grammar, spelling and awkward phrasing.\n"
    "2. Sharpen bullet points around achievements rather than duties.\n"
    "3. Remove redundant words.\n"
    "4. Finish with a \"Hiring Manager's Notes\" section of 3 specific critiques or "
    "improvements, addressed to the applicant.\n\n"
    "Output the full improved document followed by the notes."
)


def review_career_document(text=None, image=None):
    if image:
        return _complete(REVIEW_PROMPT, image=image, name="career_review")
    if text:
        return _complete(f"{REVIEW_PROMPT}\n\nORIGINAL CONTENT:\n{text}", pro=True,
                         name="career_review")
    return ""
