"""triage.integrations — External collaborator adapters.

Phases never spawn processes or talk to the ticketing system directly;
they go through the adapters registered on ``app.extensions``:

  agent_cli.AgentCLIClient         external LLM agent CLI (text in, text out)
  ticket_source.AgentTicketSource  ticket fetch through the agent's tools
  thread_parser.parse_thread       raw ticket thread → ordered messages

Tests replace the first two with fakes in ``app.extensions``.
"""

from flask import current_app


def get_agent_client():
    return current_app.extensions["agent_client"]


def get_ticket_source():
    return current_app.extensions["ticket_source"]
