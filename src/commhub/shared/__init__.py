"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (Workflow Execution and TAT Monitoring).

DO NOT add business logic from workflow or TAT modules to shared kernel.
"""
