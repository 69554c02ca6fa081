"""Broker connection, work-request codec and queue consumer."""
