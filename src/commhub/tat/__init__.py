"""
TAT Monitoring Module
=====================

Bounded context for turn-around-time (TAT) monitoring and escalation.

Responsibilities:
- Calculate TAT deadlines from the workflow SLA config and instance priority
- Find active instances approaching or past their deadline
- Update TAT status, create in-app notifications and fan out reminders
- Start the escalation workflow of a breached definition
- Extend deadlines on request, keeping an audit trail
- Hot-reload message policy via watchdog
"""
