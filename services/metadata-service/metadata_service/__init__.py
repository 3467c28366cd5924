"""IDP metadata service: provisioning metadata storage on PostgreSQL or DynamoDB."""

__version__ = "1.0.0"
