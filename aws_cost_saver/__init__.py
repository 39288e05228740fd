"""
AWS Cost Saver - pause non-production AWS environments and bring them back.

Conserve mutates billable resources (stop, scale to zero, suspend,
snapshot-and-delete) and records their original configuration in a state
document; restore replays that document to undo the changes.
"""

__version__ = "1.0.0"

from aws_cost_saver.core.exceptions import AWSCostSaverError

__all__ = ["AWSCostSaverError"]
