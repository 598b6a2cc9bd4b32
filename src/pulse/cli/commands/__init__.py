"""CLI command implementations for Pulse.

This module contains the command group implementations:
- config: Create and inspect configuration
- experiments: Manage feature rollout experiments
- events: Inspect and acknowledge stored events
- worker: Run the bus listener, notifiers and rollout scheduler
"""
