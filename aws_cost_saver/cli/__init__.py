"""Command line interface for AWS Cost Saver."""
