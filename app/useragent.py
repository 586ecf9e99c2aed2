import re

UNKNOWN = "unknown"

MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone|iPad|iPod|BlackBerry|Windows Phone", re.IGNORECASE)
TABLET_PATTERN = re.compile(r"Tablet|iPad", re.IGNORECASE)

# Order matters: UA strings overlap (most Chromium UAs also say "Safari",
# Edge says "Chrome" too), so the first match wins.
BROWSER_RULES = [
    ("Chrome", re.compile(r"Chrome", re.IGNORECASE), re.compile(r"Edg", re.IGNORECASE)),
    ("Firefox", re.compile(r"Firefox", re.IGNORECASE), None),
    ("Safari", re.compile(r"Safari", re.IGNORECASE), re.compile(r"Chrome", re.IGNORECASE)),
    ("Edge", re.compile(r"Edg", re.IGNORECASE), None),
    ("Opera", re.compile(r"Opera|OPR", re.IGNORECASE), None),
]

OS_RULES = [
    ("Windows", re.compile(r"Windows NT", re.IGNORECASE)),
    ("macOS", re.compile(r"Mac OS X", re.IGNORECASE)),
    ("Linux", re.compile(r"Linux", re.IGNORECASE)),
    ("Android", re.compile(r"Android", re.IGNORECASE)),
    ("iOS", re.compile(r"iPhone|iPad|iPod", re.IGNORECASE)),
]


def detect_device(user_agent: str) -> str:
    if MOBILE_PATTERN.search(user_agent):
        return "Mobile"
    if TABLET_PATTERN.search(user_agent):
        return "Tablet"
    return "Desktop"


def detect_browser(user_agent: str) -> str:
    for name, include, exclude in BROWSER_RULES:
        if include.search(user_agent) and not (exclude and exclude.search(user_agent)):
            return name
    return "Other"


def detect_os(user_agent: str) -> str:
    for name, pattern in OS_RULES:
        if pattern.search(user_agent):
            return name
    return "Unknown"


def parse_user_agent(user_agent: str | None) -> dict:
    if not user_agent:
        return {"device": UNKNOWN, "browser": UNKNOWN, "os": UNKNOWN}
    return {
        "device": detect_device(user_agent),
        "browser": detect_browser(user_agent),
        "os": detect_os(user_agent),
    }
