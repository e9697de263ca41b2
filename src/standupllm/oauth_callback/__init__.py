"""Jira OAuth connect/callback server for StandupLLM.

Sends the user to Atlassian's consent screen and stores the resulting
credential in the shared TokenStorage database.
"""
