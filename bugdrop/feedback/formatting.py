"""Issue body and label assembly for feedback submissions.

The body layout is fixed so issues from different sites read the same:

    ## Submitted by        (only when a name or email was given)
    ## Description
    ## Screenshot          (only when the upload succeeded)
    <details> Technical Details table </details>
    ---
    attribution footer
"""

import re
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from bugdrop.feedback.schemas import Metadata, PlatformInfo, Submission

CATEGORY_LABELS = {
    "bug": "bug",
    "feature": "enhancement",
    "question": "question",
}
DEFAULT_LABEL = "bug"
BUGDROP_LABEL = "bugdrop"

FOOTER = "*Submitted via [BugDrop](https://github.com/neonwatty/bugdrop)*"

# Order matters: Edge and Opera UAs also contain "Chrome", Chrome's contains "Safari".
_BROWSER_PATTERNS = [
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/(\d+)")),
    ("Opera", re.compile(r"OPR/(\d+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/(\d+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/(\d+)")),
    ("Safari", re.compile(r"Version/(\d+(?:\.\d+)?).*Safari/")),
]

# iOS UAs claim "like Mac OS X" and Android UAs claim "Linux".
_OS_PATTERNS = [
    ("iOS", re.compile(r"(?:iPhone|iPad|iPod).*? OS (\d+)[_.](\d+)")),
    ("Android", re.compile(r"Android (\d+)(?:\.(\d+))?")),
    ("Windows", re.compile(r"Windows NT (\d+)\.(\d+)")),
    ("macOS", re.compile(r"Mac OS X (\d+)[_.](\d+)")),
    ("ChromeOS", re.compile(r"CrOS")),
    ("Linux", re.compile(r"Linux")),
]


def labels_for_category(category: Optional[str]) -> list[str]:
    return [CATEGORY_LABELS.get(category or "", DEFAULT_LABEL), BUGDROP_LABEL]


def strip_url(url: str) -> str:
    """Drop the query string and fragment; they often carry tokens."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def parse_browser(user_agent: str) -> Optional[PlatformInfo]:
    for name, pattern in _BROWSER_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            return PlatformInfo(name=name, version=match.group(1))
    return None


def parse_os(user_agent: str) -> Optional[PlatformInfo]:
    for name, pattern in _OS_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            version = ".".join(g for g in match.groups() if g) or None
            return PlatformInfo(name=name, version=version)
    return None


def _cell(value: object) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


def _format_viewport(metadata: Metadata) -> str:
    viewport = f"{metadata.viewport.width} x {metadata.viewport.height}"
    if metadata.device_pixel_ratio:
        viewport += f" @ {metadata.device_pixel_ratio:g}x"
    return viewport


def _technical_details(metadata: Metadata) -> list[str]:
    browser = metadata.browser or parse_browser(metadata.user_agent)
    os_info = metadata.os or parse_os(metadata.user_agent)

    rows = [
        ("URL", _cell(strip_url(metadata.url))),
        ("Viewport", _cell(_format_viewport(metadata))),
    ]
    if browser:
        rows.append(("Browser", _cell(browser)))
    if os_info:
        rows.append(("OS", _cell(os_info)))
    if metadata.language:
        rows.append(("Language", _cell(metadata.language)))
    rows.append(("Timestamp", _cell(metadata.timestamp)))
    if metadata.element_selector:
        rows.append(("Element", f"`{_cell(metadata.element_selector)}`"))

    lines = [
        "<details>",
        "<summary>Technical Details</summary>",
        "",
        "| Property | Value |",
        "|----------|-------|",
    ]
    lines.extend(f"| **{name}** | {value} |" for name, value in rows)
    lines.extend(["", "</details>"])
    return lines


def format_issue_body(submission: Submission, screenshot_url: Optional[str] = None) -> str:
    sections: list[str] = []

    submitter = submission.submitter
    if submitter and (submitter.name or submitter.email):
        sections.append("## Submitted by")
        parts = []
        if submitter.name:
            parts.append(f"**{submitter.name}**")
        if submitter.email:
            parts.append(f"({submitter.email})")
        sections.append(" ".join(parts))
        sections.append("")

    sections.append("## Description")
    sections.append(submission.description)
    sections.append("")

    if screenshot_url:
        sections.append("## Screenshot")
        sections.append(f"![Screenshot]({screenshot_url})")
        sections.append("")

    sections.extend(_technical_details(submission.metadata))
    sections.append("")
    sections.append("---")
    sections.append(FOOTER)

    return "\n".join(sections)
