"""
Workflow Module
===============

Workflow execution bounded context: definitions, instances, the node
executor registry and the engine that drives instances through their graph.

Layers:
- domain: entities, node catalog, value objects, context access
- application: engine, executors, ports, notification fan-out
- infrastructure: repositories, channel adapters, publishers, scheduling
"""
