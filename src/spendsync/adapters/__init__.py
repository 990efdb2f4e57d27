"""Adapters for the aggregator and the datastore."""
