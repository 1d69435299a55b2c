"""
CommHub Workflows
=================

Workflow execution engine and TAT/SLA deadline monitor for the logistics
communication hub.

Bounded contexts:
- workflow: definitions, instances, node executors and the execution engine
- tat: deadline calculation, deadline monitoring and escalation dispatch
"""

__version__ = "1.0.0"
