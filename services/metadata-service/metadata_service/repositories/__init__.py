"""Repository contracts and their PostgreSQL and DynamoDB implementations."""
