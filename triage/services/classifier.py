"""
Support Triage Orchestrator
Built-in ticket classifier.

Deterministic keyword heuristics used by phase 0 when the ticket data does
not already carry a value:

    classify_ticket        request type → product area → body keywords
    extract_connector_name first known connector mentioned in the text
    suggest_priority       P1 (outage words) … P4 (feature requests)
    infer_product_area     connector / keyword → product area label
"""

KNOWN_CONNECTORS = [
    "okta", "azure", "azure-ad", "salesforce", "google-workspace", "aws",
    "jira", "github", "slack", "servicenow", "zendesk", "crowdstrike",
    "duo", "jumpcloud", "bamboohr", "workday", "pagerduty", "datadog",
    "onelogin", "pingidentity", "cyberark", "google workspace",
]

UI_PLATFORM_KEYWORDS = [
    "dashboard", "workflow", "permissions", "policy", "blank", "display",
    "page", "screen", "ui", "interface", "review", "portal",
]

FEATURE_REQUEST_KEYWORDS = [
    "can we", "is it possible", "would like", "would love",
    "trying to setup", "trying to set up", "feature request",
    "ability to", "request a feature", "like to have", "like there to be",
]

PRODUCT_BUG_AREAS = [
    "platform", "ui", "access profile", "access request", "access review",
    "api", "terraform", "automation", "notification", "polic", "rbac", "thomas",
]

SKIP_REQUEST_TYPES = ["meeting scheduling", "account management", "product incident"]

P1_KEYWORDS = ["urgent", "critical", "down", "outage", "blocking"]
P2_KEYWORDS = ["regression", "broken", "error", "failing", "crash"]

# (keywords, area) checked in order; first hit wins.
_AREA_RULES = [
    (("policy", "review policy"), "Policies"),
    (("access request", "request flow"), "Access Requests"),
    (("access review",), "Access Reviews"),
    (("access profile",), "Access Profiles"),
    (("automation", "workflow"), "Automations"),
    (("notification",), "Notifications"),
    (("api", "terraform", "sdk"), "API / Terraform"),
    (("rbac", "role"), "RBAC"),
    (("thomas", "ai agent"), "Thomas - AI Agent"),
]


def classify_ticket(request_type, product_area, body_text):
    """Return one of the classification categories for a ticket."""
    rt = (request_type or "").lower()
    pa = (product_area or "").lower()
    body = (body_text or "").lower()

    if "product request" in rt:
        return "feature_request"
    if "documentation" in rt:
        return "documentation"
    if "general question" in rt:
        return "general_question"
    if any(s in rt for s in SKIP_REQUEST_TYPES):
        return "skip"

    if "defect" in rt or "troubleshooting" in rt:
        if "connector" in pa:
            return "connector_bug"
        if any(area in pa for area in PRODUCT_BUG_AREAS):
            return "product_bug"

    # Free-text fallback
    if any(kw in body for kw in FEATURE_REQUEST_KEYWORDS):
        return "feature_request"
    if any(c in body for c in KNOWN_CONNECTORS):
        return "connector_bug"
    return "product_bug"


def extract_connector_name(text):
    if not text:
        return None
    lower = text.lower()
    for connector in KNOWN_CONNECTORS:
        if connector in lower:
            return connector.replace("google workspace", "google-workspace")
    return None


def suggest_priority(classification, body_text, tags=None):
    text = " ".join([body_text or ""] + list(tags or [])).lower()
    if any(kw in text for kw in P1_KEYWORDS):
        return "P1"
    if any(kw in text for kw in P2_KEYWORDS):
        return "P2"
    if classification == "feature_request":
        return "P4"
    return "P3"


def infer_product_area(classification, body_text, connector_name=None):
    if connector_name:
        return "Connectors"
    body = (body_text or "").lower()
    for keywords, area in _AREA_RULES:
        if any(kw in body for kw in keywords):
            return area
    if classification == "product_bug":
        return "Platform / UI"
    return "Other"


def classify(ticket):
    """Fill classification fields of a ticket dict, keeping values it already has.

    Returns a dict with customer_name, classification, connector_name,
    product_area, priority and suggested_priority.
    """
    body = ticket.get("body") or ticket.get("description") or ""
    full_text = f"{ticket.get('title') or ''} {body}"

    classification = ticket.get("classification") or classify_ticket(
        ticket.get("request_type"), ticket.get("product_area"), full_text
    )
    connector_name = ticket.get("connector_name") or extract_connector_name(full_text)
    product_area = ticket.get("product_area") or infer_product_area(
        classification, full_text, connector_name
    )
    priority = ticket.get("priority") or suggest_priority(
        classification, full_text, ticket.get("tags")
    )
    return {
        "customer_name": ticket.get("customer_name") or "Unknown",
        "classification": classification,
        "connector_name": connector_name,
        "product_area": product_area,
        "priority": priority,
        "suggested_priority": ticket.get("suggested_priority") or priority,
    }
