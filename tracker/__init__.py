"""
tracker — client for the Linear GraphQL API.

  • queries.py  — GraphQL documents
  • schemas.py  — tagged outbound payloads and inbound read models
  • client.py   — retrying, classifying transport (LinearClient)
"""
