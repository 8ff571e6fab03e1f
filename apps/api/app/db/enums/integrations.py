"""Integration enums."""

from enum import Enum


class ProviderType(str, Enum):
    """External system behind an integration."""

    JIRA = "jira"
    AZURE_DEVOPS = "azure_devops"
    LINEAR = "linear"
    GITHUB = "github"
    GITLAB = "gitlab"
    CONFLUENCE = "confluence"
    NOTION = "notion"
    CUSTOM = "custom"
    INTERNAL = "internal"


class IntegrationType(str, Enum):
    """What an integration is used for."""

    TRACKER = "tracker"
    KNOWLEDGE_BASE = "knowledge_base"
    CODE_SOURCE = "code_source"


class JiraType(str, Enum):
    """Jira deployment flavor (selects the REST API version)."""

    CLOUD = "cloud"
    ON_PREMISE = "on_premise"
