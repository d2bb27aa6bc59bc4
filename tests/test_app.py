"""
Route tests for the Flask backend.

Tests cover:
- Auth, shell state and the Username header
- Research flow (forge, select, chapter generation, citations)
- Draft history routes and storage quota behaviour
- Field trip tables, document writer, reports, data, assignment and career panels
- File Studio uploads and downloads, exports, community and settings
"""
import io
import json
import base64

from PIL import Image

from jackometer import config, storage

USER = {"Username": "ada@uni.edu"}
PASSWORD = "Valid#Pass12"


def png_bytes(width=300, height=200):
    img = Image.linear_gradient("L").resize((width, height)).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class TestAuth:

    def test_register_and_login(self, client):
        r = client.post("/register", json={"username": "ada@uni.edu", "password": PASSWORD,
                                           "fullName": "Ada Lovelace"})
        assert r.status_code == 200

        r = client.post("/login", json={"username": "ada@uni.edu", "password": PASSWORD})
        assert r.status_code == 200
        assert r.get_json()["user"]["name"] == "Ada Lovelace"

        r = client.get("/me", headers=USER)
        assert r.get_json()["user"]["email"] == "ada@uni.edu"

    def test_register_rejects_weak_password(self, client):
        r = client.post("/register", json={"username": "ada@uni.edu", "password": "weak"})
        assert r.status_code == 400
        assert "8-16" in r.get_json()["error"]

    def test_duplicate_register(self, client):
        client.post("/register", json={"username": "ada@uni.edu", "password": PASSWORD})
        r = client.post("/register", json={"username": "ada@uni.edu", "password": PASSWORD})
        assert r.status_code == 400

    def test_bad_login(self, client):
        client.post("/register", json={"username": "ada@uni.edu", "password": PASSWORD})
        r = client.post("/login", json={"username": "ada@uni.edu", "password": "Wrong#Pass12"})
        assert r.status_code == 401

    def test_google_login_and_logout(self, client):
        r = client.post("/login/google")
        profile = r.get_json()["user"]
        assert profile["email"] == "scholar@gmail.com"

        google = {"Username": "scholar@gmail.com"}
        assert client.get("/me", headers=google).status_code == 200
        client.post("/logout", headers=google)
        assert client.get("/me", headers=google).status_code == 404

    def test_missing_username_header(self, client):
        r = client.get("/shell")
        assert r.status_code == 401


class TestShell:

    def test_view_and_theme(self, client):
        r = client.post("/shell/view", json={"view": "research"}, headers=USER)
        assert r.get_json()["view"] == "RESEARCH"
        r = client.post("/shell/theme", headers=USER)
        assert r.get_json()["theme"] == "dark"

        state = client.get("/shell", headers=USER).get_json()
        assert state["view"] == "RESEARCH"
        assert state["theme"] == "dark"
        assert state["user"] is None

    def test_unknown_view(self, client):
        r = client.post("/shell/view", json={"view": "ARCADE"}, headers=USER)
        assert r.status_code == 400


class TestResearch:

    def forge(self, client, fake_ai):
        fake_ai.reply({"items": [{"title": "Microbial Soil Carbon", "description": "Study of X",
                                  "requirements": ["Lab access"]}]})
        client.post("/research/forge", json={"topic": "soil"}, headers=USER)
        return client.post("/research/select", json={"index": 0}, headers=USER).get_json()

    def test_forge_and_select(self, client, fake_ai):
        view = self.forge(client, fake_ai)
        assert view["mode"] == "WRITER"
        assert view["selectedTitle"]["title"] == "Microbial Soil Carbon"
        assert len(view["chapters"]) == 5

    def test_select_out_of_range(self, client, fake_ai):
        self.forge(client, fake_ai)
        r = client.post("/research/select", json={"index": 9}, headers=USER)
        assert r.status_code == 404

    def test_generate_requires_selection(self, client):
        r = client.post("/research/generate", json={"chapter": "Chapter One: Introduction"},
                        headers=USER)
        assert r.status_code == 400

    def test_generate_chapter_appends_and_undoes(self, client, fake_ai):
        self.forge(client, fake_ai)
        fake_ai.reply("Soils hold carbon [FAO](https://fao.org).")
        r = client.post("/research/generate", json={"chapter": "Chapter One: Introduction"},
                        headers=USER)
        draft = r.get_json()["draft"]
        assert draft["text"] == "\n\nCHAPTER ONE: INTRODUCTION\n\nSoils hold carbon [FAO](https://fao.org)."
        assert {"type": "link", "text": "FAO", "url": "https://fao.org"} in draft["segments"]
        assert draft["canUndo"]

        prompt = fake_ai.calls[-1]["messages"][1]["content"]
        assert "Title: Microbial Soil Carbon" in prompt

        r = client.post("/drafts/research/undo", headers=USER)
        assert r.get_json()["draft"]["text"] == ""

    def test_chapters_add_remove(self, client):
        chapter = client.post("/research/chapters", json={"title": "Chapter Six: Appendix"},
                              headers=USER).get_json()["chapter"]
        assert chapter["type"] == "chapter"
        r = client.delete(f"/research/chapters/{chapter['id']}", headers=USER)
        assert chapter["id"] not in [c["id"] for c in r.get_json()["chapters"]]
        r = client.delete(f"/research/chapters/{chapter['id']}", headers=USER)
        assert r.status_code == 404

    def test_malformed_ai_reply_is_502(self, client, fake_ai):
        fake_ai.reply("I cannot help with that")
        r = client.post("/research/forge", json={"topic": "soil"}, headers=USER)
        assert r.status_code == 502
        assert r.get_json()["error"] == "Generation failed. Try again."


class TestCitations:

    def test_add_verify_bibliography(self, client, fake_ai):
        fake_ai.reply({"title": "Paper", "author": "Doe", "year": "2020", "context": "c"})
        citation = client.post("/research/citations", json={"url": "https://doi.org/x"},
                               headers=USER).get_json()["citation"]
        assert citation["url"] == "https://doi.org/x"

        fake_ai.reply({"items": [{"id": citation["id"], "status": "SUSPICIOUS", "note": "no DOI"}]})
        cited = client.post("/research/citations/verify", headers=USER).get_json()["citations"]
        assert cited[0]["status"] == "SUSPICIOUS"
        assert cited[0]["note"] == "no DOI"

        fake_ai.reply({"items": ["quote one", "quote two"]})
        r = client.post(f"/research/citations/{citation['id']}/quotes",
                        json={"context": "carbon"}, headers=USER)
        assert r.get_json()["quotes"] == ["quote one", "quote two"]

        fake_ai.reply("Doe (2020). Paper. [Link](https://doi.org/x)")
        r = client.post("/research/bibliography", json={"style": "MLA"}, headers=USER)
        assert "MLA" in fake_ai.calls[-1]["messages"][1]["content"]
        assert r.get_json()["segments"][-1]["type"] == "link"

    def test_wrong_shape_reply_is_502(self, client, fake_ai):
        fake_ai.reply([])
        r = client.post("/research/citations", json={"url": "https://doi.org/x"}, headers=USER)
        assert r.status_code == 502
        assert r.get_json()["error"] == "Generation failed. Try again."

    def test_verify_with_no_citations(self, client):
        r = client.post("/research/citations/verify", headers=USER)
        assert r.status_code == 400


class TestDrafts:

    def test_edit_undo_redo(self, client):
        client.post("/drafts/document/edit", json={"text": "one"}, headers=USER)
        client.post("/drafts/document/edit", json={"text": "two"}, headers=USER)
        assert client.post("/drafts/document/undo", headers=USER).get_json()["draft"]["text"] == "one"
        assert client.post("/drafts/document/redo", headers=USER).get_json()["draft"]["text"] == "two"

    def test_sections(self, client):
        draft = client.post("/drafts/lab_report/sections", json={"title": "Appendix"},
                            headers=USER).get_json()["draft"]
        section = draft["sections"][-1]
        assert section["title"] == "Appendix"

        r = client.patch(f"/drafts/lab_report/sections/{section['id']}",
                         json={"content": "Figure 1"}, headers=USER)
        assert r.get_json()["draft"]["sections"][-1]["content"] == "Figure 1"

        r = client.delete(f"/drafts/lab_report/sections/{section['id']}", headers=USER)
        assert r.get_json()["draft"]["sections"][-1]["title"] == "References"

    def test_removed_sections_stay_removed(self, client):
        sections = client.get("/drafts/document", headers=USER).get_json()["draft"]["sections"]
        for section in sections:
            client.delete(f"/drafts/document/sections/{section['id']}", headers=USER)
        draft = client.get("/drafts/document", headers=USER).get_json()["draft"]
        assert draft["sections"] == []

    def test_unknown_kind(self, client):
        assert client.get("/drafts/poem", headers=USER).status_code == 404

    def test_quota_overflow_keeps_request_alive(self, client, monkeypatch):
        monkeypatch.setattr(storage, "QUOTA_BYTES", 2000)
        r = client.post("/drafts/document/edit", json={"text": "x" * 5000}, headers=USER)
        assert r.status_code == 200
        assert client.get("/drafts/document", headers=USER).get_json()["draft"]["text"] == ""


class TestDocumentWriter:

    def test_generate_with_videos(self, client, fake_ai):
        video = {"title": "Osmosis", "url": "https://youtube.com/watch?v=1", "description": "d"}
        fake_ai.completions.responder = lambda kw: (
            {"items": [video]} if "response_format" in kw else "Document body")

        r = client.post("/document/generate", json={"level": "PhD", "course": "Biology",
                                                     "topic": "Osmosis", "details": ""},
                        headers=USER)
        body = r.get_json()
        assert body["draft"]["text"] == "Document body"
        assert body["videos"] == [video]

    def test_missing_topic(self, client):
        r = client.post("/document/generate", json={"course": "Biology"}, headers=USER)
        assert r.status_code == 400

    def test_appendix_caption_generated(self, client, fake_ai):
        fake_ai.reply("Figure 1: Leaf cross-section.")
        r = client.post("/document/appendix", headers=USER,
                        data={"image": (io.BytesIO(png_bytes()), "leaf.png")},
                        content_type="multipart/form-data")
        item = r.get_json()["item"]
        assert item == {"id": item["id"], "name": "leaf.png",
                        "caption": "Figure 1: Leaf cross-section."}
        assert client.get("/document", headers=USER).get_json()["appendix"] == [item]


class TestReports:

    def test_lab_report_includes_tables(self, client, fake_ai):
        fake_ai.reply("Lab report text")
        tables = [{"name": "Titration", "headers": ["Trial", "Volume (ml)"], "rows": [["1", "24.1"]]}]
        r = client.post("/reports/lab/generate", json={"topic": "Titration", "details": "pink",
                                                        "tables": tables}, headers=USER)
        assert r.get_json()["draft"]["text"] == "Lab report text"
        assert "Table: Titration" in fake_ai.calls[0]["messages"][1]["content"]

    def test_unknown_report(self, client):
        r = client.post("/reports/poetry/generate", json={"topic": "x"}, headers=USER)
        assert r.status_code == 404

    def test_microscope(self, client, fake_ai):
        fake_ai.reply("Spirogyra")
        r = client.post("/reports/lab/microscope", headers=USER,
                        data={"image": (io.BytesIO(png_bytes()), "slide.png")},
                        content_type="multipart/form-data")
        assert r.get_json()["analysis"] == "Spirogyra"
        assert client.get("/reports/lab", headers=USER).get_json()["analysis"] == "Spirogyra"


class TestFieldTrip:

    def test_tables_crud(self, client):
        table = client.post("/fieldtrip/tables", json={}, headers=USER).get_json()["table"]
        assert table["name"] == "Table 1"
        tid = table["id"]

        client.post(f"/fieldtrip/tables/{tid}/rows", headers=USER)
        r = client.post(f"/fieldtrip/tables/{tid}/cell", json={"row": 1, "col": 0, "value": "pH"},
                        headers=USER)
        assert r.get_json()["table"]["rows"][1][0] == "pH"

        r = client.post(f"/fieldtrip/tables/{tid}/cell", json={"row": 7, "col": 0, "value": "x"},
                        headers=USER)
        assert r.status_code == 400

        assert client.post(f"/fieldtrip/tables/{tid}/toggle", headers=USER).get_json()["table"]["collapsed"]
        client.patch(f"/fieldtrip/tables/{tid}", json={"name": "Water"}, headers=USER)
        assert client.get("/fieldtrip", headers=USER).get_json()["tables"][0]["name"] == "Water"

        r = client.delete(f"/fieldtrip/tables/{tid}", headers=USER)
        assert r.get_json()["tables"] == []

    def test_guide_seeds_tables(self, client, fake_ai):
        client.post("/fieldtrip/info", json={"topic": "Wetlands", "requirements": "3 sites"},
                    headers=USER)
        fake_ai.reply({"tables": [{"name": "Soil", "headers": ["Depth (m)", "pH"]}],
                       "checklist": ["Photograph each site"]})
        body = client.post("/fieldtrip/guide", headers=USER).get_json()
        assert body["tables"][0]["headers"] == ["Depth (m)", "pH"]
        assert body["tables"][0]["rows"] == [["", ""]]
        assert body["checklist"] == ["Photograph each site"]

    def test_telemetry_and_document(self, client, fake_ai):
        fake_ai.reply({"temp": "31°C", "humidity": "70%", "conditions": "Humid"})
        r = client.post("/fieldtrip/telemetry", json={"lat": 6.5, "lng": 3.4, "altitude": 12},
                        headers=USER)
        assert r.get_json()["weather"]["temp"] == "31°C"

        fake_ai.reply("Field report")
        r = client.post("/fieldtrip/document", headers=USER)
        assert r.get_json()["document"] == "Field report"
        prompt = fake_ai.calls[-1]["messages"][1]["content"]
        assert "Location: 6.500000, 3.400000, altitude 12 m" in prompt
        assert "Humid" in prompt

    def test_negative_cell_index(self, client):
        tid = client.post("/fieldtrip/tables", json={}, headers=USER).get_json()["table"]["id"]
        r = client.post(f"/fieldtrip/tables/{tid}/cell", json={"row": -1, "col": -1, "value": "x"},
                        headers=USER)
        assert r.status_code == 400
        table = client.get("/fieldtrip", headers=USER).get_json()["tables"][0]
        assert table["rows"] == [["", "", ""]]

    def test_bad_telemetry(self, client):
        r = client.post("/fieldtrip/telemetry", json={"lat": "north"}, headers=USER)
        assert r.status_code == 400

    def test_deck(self, client, fake_ai):
        fake_ai.reply({"title": "Defense", "slides": [{"header": "Aim", "content": ["a"]}]})
        deck = client.post("/fieldtrip/deck", headers=USER).get_json()["deck"]
        assert deck["slides"][0]["header"] == "Aim"


class TestDataCruncher:

    def test_analyze_and_export(self, client, fake_ai):
        assert client.get("/data/export", headers=USER).status_code == 404

        fake_ai.reply({"summary": "Rising", "keyTrends": ["up"], "recommendation": "more"})
        r = client.post("/data/analyze", json={"input": "1, 2, 3"}, headers=USER)
        assert r.get_json()["result"]["summary"] == "Rising"

        r = client.get("/data/export", headers=USER)
        assert r.mimetype == "application/json"
        assert "data_analysis.json" in r.headers["Content-Disposition"]
        assert json.loads(r.data)["keyTrends"] == ["up"]


class TestAssignment:

    def test_grade_uploaded_essay(self, client, fake_ai):
        fake_ai.reply("Grade: C")
        r = client.post("/assignment/grade", headers=USER, content_type="multipart/form-data",
                        data={"file": (io.BytesIO(b"My essay text"), "essay.txt"),
                              "instruction": "be harsh"})
        assert r.get_json()["output"] == "Grade: C"
        prompt = fake_ai.calls[0]["messages"][1]["content"]
        assert "My essay text" in prompt
        assert "be harsh" in prompt

    def test_solve_uses_supervisor_profile(self, client, fake_ai):
        fake_ai.reply("Prefers quantitative work", "Solution")
        client.post("/assignment/supervisor", json={"text": "Past paper"}, headers=USER)
        r = client.post("/assignment/solve", json={"question": "Explain osmosis"}, headers=USER)
        assert r.get_json()["solution"] == "Solution"
        assert "Prefers quantitative work" in fake_ai.calls[-1]["messages"][1]["content"]

    def test_grade_requires_essay(self, client):
        assert client.post("/assignment/grade", json={}, headers=USER).status_code == 400


class TestCareer:

    def test_passport(self, client, fake_ai):
        image = "data:image/jpeg;base64," + base64.b64encode(b"jpeg").decode()
        r = client.post("/career/passport", json={"image": image, "background": "red"}, headers=USER)
        assert r.get_json()["image"] == "data:image/png;base64," + fake_ai.images.result

    def test_passport_without_result_is_502(self, client, fake_ai):
        fake_ai.images.result = None
        image = base64.b64encode(b"jpeg").decode()
        r = client.post("/career/passport", json={"image": image}, headers=USER)
        assert r.status_code == 502

    def test_cv_needs_name(self, client):
        r = client.post("/career/document", json={"kind": "CV", "email": "a@b.c"}, headers=USER)
        assert r.status_code == 400

    def test_resume(self, client, fake_ai):
        fake_ai.reply("Resume text")
        r = client.post("/career/document", json={"kind": "resume", "fullName": "Ada Lovelace"},
                        headers=USER)
        assert r.get_json()["output"] == "Resume text"
        assert "one-page industry resume" in fake_ai.calls[0]["messages"][1]["content"]

    def test_review_text(self, client, fake_ai):
        fake_ai.reply("Polished CV")
        r = client.post("/career/review", json={"text": "My CV"}, headers=USER)
        assert r.get_json()["output"] == "Polished CV"


class TestFileStudio:

    def test_upload_list_download(self, client):
        r = client.post("/compress", headers=USER, content_type="multipart/form-data",
                        data={"files": [(io.BytesIO(png_bytes()), "photo.png"),
                                        (io.BytesIO(b"hello " * 200), "notes.txt")],
                              "target_kb": "50"})
        assert r.status_code == 200
        photo, notes = r.get_json()["files"]
        assert photo["type"] == "image/jpeg"
        assert photo["downloadName"] == "min_photo.jpg"
        assert photo["compressedSize"] <= 50 * 1024
        assert notes["downloadName"] == "notes.txt.gz"

        listed = client.get("/compress", headers=USER).get_json()["files"]
        assert [f["originalName"] for f in listed] == ["notes.txt", "photo.png"]

        r = client.get(f"/compress/{photo['id']}/download", headers=USER)
        assert r.mimetype == "image/jpeg"
        assert "min_photo.jpg" in r.headers["Content-Disposition"]
        assert Image.open(io.BytesIO(r.data)).format == "JPEG"

    def test_corrupt_image_is_422(self, client):
        r = client.post("/compress", headers=USER, content_type="multipart/form-data",
                        data={"files": [(io.BytesIO(b"garbage"), "bad.png")]})
        assert r.status_code == 422
        file_id = r.get_json()["files"][0]["id"]
        assert client.get(f"/compress/{file_id}/download", headers=USER).status_code == 404

    def test_history_is_capped(self, client, monkeypatch):
        monkeypatch.setattr(config, "COMPRESS_KEEP_FILES", 2)
        for name in ("a.txt", "b.txt", "c.txt"):
            client.post("/compress", headers=USER, content_type="multipart/form-data",
                        data={"files": [(io.BytesIO(b"data " * 50), name)]})
        listed = client.get("/compress", headers=USER).get_json()["files"]
        assert [f["originalName"] for f in listed] == ["c.txt", "b.txt"]

    def test_no_files(self, client):
        r = client.post("/compress", headers=USER, data={}, content_type="multipart/form-data")
        assert r.status_code == 400


class TestExport:

    def test_word_export(self, client):
        r = client.post("/export", json={"content": "Intro\n\nBody", "filename": "thesis.doc",
                                         "mimeType": "application/msword"})
        assert r.data.startswith(b"<html")
        assert "thesis.doc" in r.headers["Content-Disposition"]

    def test_missing_filename(self, client):
        assert client.post("/export", json={"content": "x"}).status_code == 400


class TestCommunityAndSettings:

    def test_scholar_search(self, client):
        r = client.get("/community/scholars?q=curie")
        assert [s["id"] for s in r.get_json()["results"]] == ["u7"]
        r = client.get("/community/scholars?q=cambridge&exclude=u4")
        assert r.get_json()["results"] == []

    def test_lounge(self, client):
        client.post("/community/lounge", json={"text": "Hello scholars"}, headers=USER)
        messages = client.get("/community/lounge").get_json()["messages"]
        assert messages[-1]["text"] == "Hello scholars"

    def test_inbox_and_notifications(self, client):
        assert client.get("/inbox", headers=USER).get_json()["messages"]
        assert client.get("/notifications", headers=USER).get_json()["notifications"]

    def test_change_password(self, client):
        client.post("/register", json={"username": "ada@uni.edu", "password": PASSWORD})

        r = client.post("/settings/password", headers=USER, json={
            "currentPass": "Wrong#Pass12", "newPass": "New#Pass345", "confirmPass": "New#Pass345"})
        assert r.status_code == 401

        r = client.post("/settings/password", headers=USER, json={
            "currentPass": PASSWORD, "newPass": "New#Pass345", "confirmPass": "Other#Pass345"})
        assert r.status_code == 400

        r = client.post("/settings/password", headers=USER, json={
            "currentPass": PASSWORD, "newPass": "New#Pass345", "confirmPass": "New#Pass345"})
        assert r.status_code == 200
        r = client.post("/login", json={"username": "ada@uni.edu", "password": "New#Pass345"})
        assert r.status_code == 200

    def test_contact_settings(self, client):
        client.post("/settings", json={"phone": "+234 800"}, headers=USER)
        assert client.get("/settings", headers=USER).get_json()["contact"]["phone"] == "+234 800"

    def test_profile_updates_user(self, client):
        client.post("/login/google")
        google = {"Username": "scholar@gmail.com"}
        assert client.get("/profile", headers=google).get_json()["firstName"] == "Google"

        client.post("/profile", json={"firstName": "Grace", "lastName": "Hopper"}, headers=google)
        assert client.get("/me", headers=google).get_json()["user"]["name"] == "Grace Hopper"


def test_unreadable_image_is_400(client):
    r = client.post("/reports/lab/microscope", headers=USER,
                    data={"image": (io.BytesIO(b"not an image"), "slide.png")},
                    content_type="multipart/form-data")
    assert r.status_code == 400
