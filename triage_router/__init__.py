"""its-broken-triage: channel-gated Slack router for an LLM bug-triage worker."""
