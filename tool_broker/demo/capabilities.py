"""
Fixed capability sets advertised by the demo providers, one per profile.

Payloads are canned and deterministic; they only exist so the broker has
something real to talk to.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List

Handler = Callable[[Dict[str, Any]], Any]


class ToolInputError(ValueError):
    pass


def _require(args: Dict[str, Any], *names: str) -> None:
    missing = [n for n in names if args.get(n) in (None, "", [])]
    if missing:
        raise ToolInputError(f"Missing required argument(s): {', '.join(missing)}")


def _string(description: str, **extra: Any) -> Dict[str, Any]:
    return {"type": "string", "description": description, **extra}


def _strings(description: str) -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


# search

def web_search(args: Dict[str, Any]) -> Any:
    _require(args, "query")
    query = str(args["query"])
    return {
        "query": query,
        "results": [
            {
                "title": f'Search results for "{query}"',
                "snippet": f'Top result for "{query}".',
                "url": "https://example.com/search-result-1",
                "domain": "example.com",
            },
            {
                "title": f'Another result for "{query}"',
                "snippet": f'More about "{query}".',
                "url": "https://example.com/search-result-2",
                "domain": "example.com",
            },
        ],
        "totalResults": 2,
    }


def deep_research(args: Dict[str, Any]) -> Any:
    _require(args, "question")
    question = str(args["question"])
    return {
        "question": question,
        "context": str(args.get("context") or ""),
        "summary": f'Research findings on "{question}".',
        "keyFindings": [f"Finding {i} about {question}" for i in (1, 2, 3)],
        "sources": [
            {"name": "Source 1", "url": "https://example.com/source1", "reliability": "high"},
            {"name": "Source 2", "url": "https://example.com/source2", "reliability": "medium"},
        ],
        "sourcesConsulted": 2,
    }


# github

def create_issue(args: Dict[str, Any]) -> Any:
    _require(args, "title")
    return {
        "number": 125,
        "title": args["title"],
        "body": args.get("body") or "",
        "state": "open",
        "labels": list(args.get("labels") or []),
        "assignees": list(args.get("assignees") or []),
        "url": "https://github.com/example/repo/issues/125",
    }


def get_issues(args: Dict[str, Any]) -> Any:
    state = str(args.get("state") or "open")
    if state not in ("open", "closed", "all"):
        raise ToolInputError(f"Invalid state: {state}")
    issues = [
        {"number": 123, "title": "Sample Issue 1", "state": "open", "labels": ["bug", "high-priority"]},
        {"number": 124, "title": "Sample Issue 2", "state": "closed", "labels": ["enhancement"]},
    ]
    if state != "all":
        issues = [i for i in issues if i["state"] == state]
    labels = set(args.get("labels") or [])
    if labels:
        issues = [i for i in issues if labels & set(i["labels"])]
    return {"issues": issues, "totalCount": len(issues), "filters": args}


def calendar_get_events(args: Dict[str, Any]) -> Any:
    _require(args, "startDate", "endDate")
    return {
        "events": [
            {"id": "event1", "summary": "Team Meeting", "start": args["startDate"]},
            {"id": "event2", "summary": "Project Review", "start": args["startDate"]},
        ],
        "timeRange": {"start": args["startDate"], "end": args["endDate"]},
        "calendarId": args.get("calendarId") or "primary",
    }


# home

def alexa_turn_on_lights(args: Dict[str, Any]) -> Any:
    _require(args, "room")
    brightness = int(args.get("brightness") or 100)
    if not 1 <= brightness <= 100:
        raise ToolInputError("brightness must be between 1 and 100")
    return {
        "action": "turn_on_lights",
        "room": args["room"],
        "brightness": brightness,
        "message": f"Lights turned on in {args['room']} at {brightness}% brightness",
    }


def alexa_turn_off_lights(args: Dict[str, Any]) -> Any:
    _require(args, "room")
    return {"action": "turn_off_lights", "room": args["room"], "message": f"Lights turned off in {args['room']}"}


def alexa_set_scene(args: Dict[str, Any]) -> Any:
    _require(args, "sceneName")
    return {"action": "set_scene", "sceneName": args["sceneName"], "message": f'Scene "{args["sceneName"]}" activated'}


def email_send_draft(args: Dict[str, Any]) -> Any:
    _require(args, "to", "subject", "body")
    to = list(args["to"])
    return {
        "to": to,
        "subject": args["subject"],
        "cc": list(args.get("cc") or []),
        "bcc": list(args.get("bcc") or []),
        "message": f"Email sent successfully to {', '.join(to)}",
    }


PROFILES: Dict[str, List[Dict[str, Any]]] = {
    "search": [
        {
            "name": "web_search",
            "description": "Search the web for current information",
            "inputSchema": {
                "type": "object",
                "properties": {"query": _string("Search query")},
                "required": ["query"],
                "additionalProperties": False,
            },
            "handler": web_search,
        },
        {
            "name": "deep_research",
            "description": "Conduct comprehensive research on a topic",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "question": _string("Research question or topic"),
                    "context": _string("Additional context for the research", default=""),
                },
                "required": ["question"],
                "additionalProperties": False,
            },
            "handler": deep_research,
        },
    ],
    "github": [
        {
            "name": "create_issue",
            "description": "Create a new GitHub issue",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "title": _string("Issue title"),
                    "body": _string("Issue description"),
                    "labels": _strings("Issue labels"),
                    "assignees": _strings("Issue assignees"),
                },
                "required": ["title"],
                "additionalProperties": False,
            },
            "handler": create_issue,
        },
        {
            "name": "get_issues",
            "description": "Get GitHub issues with filters",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "state": _string("Issue state filter", enum=["open", "closed", "all"], default="open"),
                    "labels": _strings("Label filters"),
                    "assignee": _string("Assignee filter"),
                },
                "additionalProperties": False,
            },
            "handler": get_issues,
        },
        {
            "name": "calendar_get_events",
            "description": "Get calendar events for a date range",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "startDate": _string("Start date (ISO format)"),
                    "endDate": _string("End date (ISO format)"),
                    "calendarId": _string("Calendar ID (optional)", default="primary"),
                },
                "required": ["startDate", "endDate"],
                "additionalProperties": False,
            },
            "handler": calendar_get_events,
        },
    ],
    "home": [
        {
            "name": "alexa_turn_on_lights",
            "description": "Turn on smart lights via Alexa",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "room": _string('Room name (e.g., "living room", "bedroom")'),
                    "brightness": {
                        "type": "number",
                        "minimum": 1,
                        "maximum": 100,
                        "description": "Light brightness percentage",
                        "default": 100,
                    },
                },
                "required": ["room"],
                "additionalProperties": False,
            },
            "handler": alexa_turn_on_lights,
        },
        {
            "name": "alexa_turn_off_lights",
            "description": "Turn off smart lights via Alexa",
            "inputSchema": {
                "type": "object",
                "properties": {"room": _string('Room name (e.g., "living room", "bedroom")')},
                "required": ["room"],
                "additionalProperties": False,
            },
            "handler": alexa_turn_off_lights,
        },
        {
            "name": "alexa_set_scene",
            "description": "Activate an Alexa scene",
            "inputSchema": {
                "type": "object",
                "properties": {"sceneName": _string("Name of the scene to activate")},
                "required": ["sceneName"],
                "additionalProperties": False,
            },
            "handler": alexa_set_scene,
        },
        {
            "name": "email_send_draft",
            "description": "Send an email draft",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "to": _strings("Recipient email addresses"),
                    "subject": _string("Email subject"),
                    "body": _string("Email body content"),
                    "cc": _strings("CC email addresses"),
                    "bcc": _strings("BCC email addresses"),
                },
                "required": ["to", "subject", "body"],
                "additionalProperties": False,
            },
            "handler": email_send_draft,
        },
    ],
}


def tool_listing(profile: str) -> List[Dict[str, Any]]:
    return [{k: v for k, v in t.items() if k != "handler"} for t in PROFILES[profile]]


def find_handler(profile: str, name: str) -> Handler | None:
    for t in PROFILES[profile]:
        if t["name"] == name:
            return t["handler"]
    return None
