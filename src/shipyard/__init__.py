"""Shipyard - Release pipeline tracking service.

This package tracks software releases as they move through a pipeline of
deployment environments. Each release carries one stage per environment,
each stage carries a checklist of tasks and a list of blockers, and the
release's overall status and progress are derived from its stages.
"""

__version__ = "0.1.0"
