"""
Connectors Module

HTTP clients for the configuration service and the two activity sources.
"""

from activity_sync.connectors.config_service import ConfigurationServiceClient, SyncCredentials
from activity_sync.connectors.github import GithubClient, GithubCommit
from activity_sync.connectors.jira import JiraClient, JiraIssue

__all__ = [
    "ConfigurationServiceClient",
    "GithubClient",
    "GithubCommit",
    "JiraClient",
    "JiraIssue",
    "SyncCredentials",
]
