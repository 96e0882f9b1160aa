"""
Ticket source adapter.

Read-only access to the external ticketing system. The default
implementation asks the agent CLI to call its ticketing tools and return
one raw JSON object; it never writes to the ticketing system.

Interface (duck-typed; tests install a fake on ``app.extensions``):

    fetch_ticket(ticket_id) -> dict
        {"ticket_id", "title", "body", "customer_name", "tags", "link", ...}
"""

import logging
from datetime import datetime, timezone

from triage.integrations.agent_cli import AgentCLIClient, extract_json_object

logger = logging.getLogger(__name__)


class TicketSourceError(Exception):
    """The ticket could not be fetched or the reply was not a ticket."""


_FETCH_PROMPT = """You are a data extraction tool. Using the ticketing tools available to you:
1. Fetch the support issue with id "{ticket_id}"
2. Fetch the customer account referenced by the issue

Return ONLY a raw JSON object (no markdown, no code blocks):
{{"ticket_id":{ticket_id},"title":"<title>","customer_name":"<account name>","account_id":"<acct id>","link":"<link>","source":"<source>","state":"<state>","created_at":"<created>","request_type":"<request type>","product_area":"<product area or empty>","body":"<full thread text>","tags":[],"fetched_at":"{fetched_at}"}}"""


class AgentTicketSource:
    """Fetches tickets through the agent CLI's ticketing tools."""

    def __init__(self, agent: AgentCLIClient) -> None:
        self.agent = agent

    def fetch_ticket(self, ticket_id: int, cwd: str | None = None) -> dict:
        """Return the ticket as a dict.

        Raises:
            TicketSourceError: the agent reply held no JSON object.
            AgentError: propagated from the agent call.
        """
        prompt = _FETCH_PROMPT.format(
            ticket_id=int(ticket_id),
            fetched_at=datetime.now(timezone.utc).isoformat(),
        )
        output = self.agent.run(prompt, cwd=cwd)
        data = extract_json_object(output)
        if data is None:
            raise TicketSourceError(f"Agent returned no ticket data for #{ticket_id}")
        data.setdefault("ticket_id", int(ticket_id))
        logger.info("Fetched ticket #%s: %s", ticket_id, data.get("title"))
        return data
