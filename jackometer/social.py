"""
Community, inbox and notifications.

There is no social backend: the scholar directory and sample threads are
static, and lounge broadcasts live in process memory only.
"""
import datetime
import threading

SCHOLARS = [
    {"id": "u1", "name": "Dr. Sarah Connor", "username": "sconnor_ai", "email": "sarah.c@mit.edu", "university": "MIT"},
    {"id": "u2", "name": "Emily Chen", "username": "emily_c", "email": "echen@stanford.edu", "university": "Stanford"},
    {"id": "u3", "name": "James T. Kirk", "username": "starship_capt", "email": "j.kirk@fleet.academy", "university": "Starfleet Academy"},
    {"id": "u4", "name": "Jane Goodall", "username": "primate_jane", "email": "jane@cambridge.uk", "university": "Cambridge"},
    {"id": "u5", "name": "Neo Anderson", "username": "the_one", "email": "neo@matrix.sys", "university": "Unknown"},
    {"id": "u6", "name": "Alan Turing", "username": "enigma_breaker", "email": "alan@bletchley.park", "university": "Cambridge"},
    {"id": "u7", "name": "Marie Curie", "username": "rad_marie", "email": "marie@sorbonne.fr", "university": "Sorbonne"},
    {"id": "u8", "name": "Student 01", "username": "stud_01", "email": "student@uni.edu", "university": "Local University"},
]

GROUPS = [
    {"id": "g1", "name": "The Scholar's Lounge", "members": 1284},
    {"id": "g2", "name": "Thesis Defense Prep", "members": 342},
    {"id": "g3", "name": "Field Ecology Network", "members": 97},
]

INBOX = [
    {"id": "m1", "from": "Dr. Sarah Connor", "subject": "Co-authoring the review chapter",
     "preview": "I went through your literature review draft and...", "time": "09:12", "unread": True},
    {"id": "m2", "from": "Emily Chen", "subject": "Lab data for Table 3",
     "preview": "Attached are the absorbance readings from Tuesday.", "time": "Yesterday", "unread": True},
    {"id": "m3", "from": "Jackometer Support", "subject": "Welcome aboard",
     "preview": "Here is how to get the most out of the Research Engine.", "time": "Mon", "unread": False},
]

NOTIFICATIONS = [
    {"icon": "school", "title": "Research Complete",
     "desc": 'Your topic on "Quantum Physics" has been processed.', "time": "10 mins ago"},
    {"icon": "update", "title": "System Update", "desc": "Jackometer patch applied.", "time": "1 hour ago"},
    {"icon": "forum", "title": "New Comment", "desc": "User_Elite replied to your thread.", "time": "2 hours ago"},
]

LOUNGE_LIMIT = 200

_broadcasts = []
_lock = threading.Lock()


def search_scholars(query, exclude_ids=()):
    """Case-insensitive match on name, username or email; needs 2+ characters."""
    query = (query or "").strip().lower()
    if len(query) <= 1:
        return []
    exclude = set(exclude_ids or ())
    return [
        s for s in SCHOLARS
        if s["id"] not in exclude and (
            query in s["name"].lower()
            or query in s["username"].lower()
            or query in s["email"].lower())
    ]


def broadcast(author, text):
    message = {
        "author": author,
        "text": text,
        "time": datetime.datetime.now().isoformat(timespec="seconds"),
    }
    with _lock:
        _broadcasts.append(message)
        del _broadcasts[:-LOUNGE_LIMIT]
    return message


def lounge_messages(limit=50):
    with _lock:
        return list(_broadcasts[-limit:])
