"""Allow `python -m signing_agent` to launch the agent."""

from signing_agent.main import cli

cli()
