"""HTTP clients for the project configuration service and hosting platforms."""
