"""Room code creation endpoint."""
