"""
Built-in provider catalog.

Registration order here is the order providers appear in composed tool
catalogs. Credentialed providers come first, system capabilities last.
"""

from integration_hub.integrations.registry import (
    ProviderRegistration,
    ProviderRegistry,
    ToolDeclaration,
    ToolParameter,
)


def _p(name: str, description: str, required: bool = False, type: str = "string") -> ToolParameter:
    return ToolParameter(name=name, type=type, description=description, required=required)


JIRA = ProviderRegistration(
    type="jira",
    name="Jira",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "jira_search",
            "Search for Jira issues using JQL. Returns startAt, maxResults, total and an issues array.",
            (
                _p("jql", "JQL query string", required=True),
                _p("maxResults", "Maximum number of issues to return", type="integer"),
            ),
        ),
        ToolDeclaration(
            "jira_get_issue",
            "Get detailed information about a specific Jira issue, including comments and attachments.",
            (_p("issueKey", "Issue key, e.g. PROJ-123", required=True),),
        ),
        ToolDeclaration(
            "jira_get_board",
            "Get board details including type (scrum/kanban), name and project.",
            (_p("boardId", "Board id", required=True, type="integer"),),
        ),
        ToolDeclaration(
            "jira_add_comment",
            "Add a comment to a Jira issue.",
            (
                _p("issueKey", "Issue key, e.g. PROJ-123", required=True),
                _p("comment", "Comment text", required=True),
            ),
        ),
        ToolDeclaration(
            "jira_transition_issue",
            "Change the status of a Jira issue by executing a workflow transition.",
            (
                _p("issueKey", "Issue key, e.g. PROJ-123", required=True),
                _p("transitionId", "Transition id from jira_get_available_transitions", required=True),
            ),
        ),
        ToolDeclaration(
            "jira_delete_issue",
            "Delete a Jira issue permanently.",
            (_p("issueKey", "Issue key, e.g. PROJ-123", required=True),),
        ),
    ),
)

CONFLUENCE = ProviderRegistration(
    type="confluence",
    name="Confluence",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "confluence_search",
            "Search Confluence content using CQL.",
            (
                _p("cql", "CQL query string", required=True),
                _p("limit", "Maximum number of results", type="integer"),
            ),
        ),
        ToolDeclaration(
            "confluence_get_page",
            "Get a Confluence page with its body in storage format.",
            (_p("pageId", "Page id", required=True),),
        ),
        ToolDeclaration(
            "confluence_get_comments",
            "Get comments of a Confluence page.",
            (_p("pageId", "Page id", required=True),),
        ),
        ToolDeclaration(
            "confluence_create_page",
            "Create a new Confluence page in a space.",
            (
                _p("spaceKey", "Space key", required=True),
                _p("title", "Page title", required=True),
                _p("content", "Page body in storage format", required=True),
                _p("parentId", "Optional parent page id"),
            ),
        ),
        ToolDeclaration(
            "confluence_update_page",
            "Update the title or body of an existing Confluence page.",
            (
                _p("pageId", "Page id", required=True),
                _p("title", "New page title"),
                _p("content", "New page body in storage format"),
            ),
        ),
    ),
)

GITLAB = ProviderRegistration(
    type="gitlab",
    name="GitLab",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "gitlab_get_project",
            "Get details of a GitLab project.",
            (_p("project", "Project id or URL-encoded path", required=True),),
        ),
        ToolDeclaration(
            "gitlab_list_projects",
            "List projects the token can access.",
            (_p("search", "Optional search string"),),
        ),
        ToolDeclaration(
            "gitlab_get_file_content",
            "Read a file from a repository at a given ref.",
            (
                _p("project", "Project id or URL-encoded path", required=True),
                _p("file_path", "Path of the file in the repository", required=True),
                _p("ref", "Branch, tag or commit; defaults to the default branch"),
            ),
        ),
        ToolDeclaration(
            "gitlab_search_merge_requests",
            "Search merge requests of a project.",
            (
                _p("project", "Project id or URL-encoded path", required=True),
                _p("state", "opened, closed, merged or all"),
            ),
        ),
        ToolDeclaration(
            "gitlab_get_merge_request",
            "Get a single merge request.",
            (
                _p("project", "Project id or URL-encoded path", required=True),
                _p("merge_request_iid", "Merge request IID", required=True, type="integer"),
            ),
        ),
        ToolDeclaration(
            "gitlab_search_issues",
            "Search issues of a project.",
            (
                _p("project", "Project id or URL-encoded path", required=True),
                _p("search", "Search string"),
            ),
        ),
    ),
)

HUBSPOT = ProviderRegistration(
    type="hubspot",
    name="HubSpot",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "hubspot_search_contacts",
            "Search for contacts in HubSpot CRM by name, email or any searchable property.",
            (_p("query", "Search text", required=True),),
        ),
        ToolDeclaration(
            "hubspot_get_contact",
            "Get all properties of a HubSpot contact by id.",
            (_p("contactId", "Contact id", required=True),),
        ),
        ToolDeclaration(
            "hubspot_search_companies",
            "Search for companies in HubSpot CRM.",
            (_p("query", "Search text", required=True),),
        ),
        ToolDeclaration(
            "hubspot_search_deals",
            "Search for deals in HubSpot CRM.",
            (_p("query", "Search text", required=True),),
        ),
        ToolDeclaration(
            "hubspot_update_deal",
            "Update an existing HubSpot deal, e.g. to move it through pipeline stages.",
            (
                _p("dealId", "Deal id", required=True),
                _p("properties", "Properties to update", required=True, type="object"),
            ),
        ),
    ),
)

SHAREPOINT = ProviderRegistration(
    type="sharepoint",
    name="SharePoint",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "sharepoint_search",
            "Search all SharePoint content using KQL. Results are grouped by type.",
            (
                _p("query", "KQL query", required=True),
                _p("size", "Maximum number of results", type="integer"),
            ),
        ),
        ToolDeclaration(
            "sharepoint_read_document",
            "Extract and read text from a SharePoint document.",
            (
                _p("siteId", "Site id", required=True),
                _p("itemId", "Drive item id", required=True),
            ),
        ),
        ToolDeclaration(
            "sharepoint_list_files",
            "List files in a SharePoint directory.",
            (
                _p("siteId", "Site id", required=True),
                _p("path", "Folder path; defaults to the drive root"),
            ),
        ),
        ToolDeclaration(
            "sharepoint_get_list_items",
            "Get items from a SharePoint list.",
            (
                _p("siteId", "Site id", required=True),
                _p("listId", "List id", required=True),
            ),
        ),
    ),
)

SAP_C4C = ProviderRegistration(
    type="sap_c4c",
    name="SAP Cloud for Customer",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "c4c_search_leads",
            "Search leads using OData filter syntax.",
            (
                _p("filter", "OData $filter expression", required=True),
                _p("top", "Page size", type="integer"),
            ),
        ),
        ToolDeclaration(
            "c4c_get_lead",
            "Retrieve a lead by its ObjectID.",
            (_p("object_id", "Lead ObjectID", required=True),),
        ),
        ToolDeclaration(
            "c4c_search_opportunities",
            "Search opportunities using OData filter syntax.",
            (
                _p("filter", "OData $filter expression", required=True),
                _p("expand", "Related collections to expand"),
            ),
        ),
        ToolDeclaration(
            "c4c_get_account",
            "Retrieve a corporate account by its ObjectID.",
            (_p("object_id", "Account ObjectID", required=True),),
        ),
    ),
)

TRELLO = ProviderRegistration(
    type="trello",
    name="Trello",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "trello_search",
            "Search across Trello boards, cards and lists.",
            (_p("query", "Search text", required=True),),
        ),
        ToolDeclaration(
            "trello_get_boards",
            "Get all boards accessible to the authenticated user.",
        ),
        ToolDeclaration(
            "trello_get_card",
            "Get a card with members, labels, attachments and checklists.",
            (_p("cardId", "Card id", required=True),),
        ),
        ToolDeclaration(
            "trello_add_comment",
            "Add a comment to a card.",
            (
                _p("cardId", "Card id", required=True),
                _p("text", "Comment text", required=True),
            ),
        ),
    ),
)

WRIKE = ProviderRegistration(
    type="wrike",
    name="Wrike",
    requires_credentials=True,
    declared_tools=(
        ToolDeclaration(
            "wrike_search_tasks",
            "Search for tasks by title, status or folder.",
            (
                _p("title", "Title substring"),
                _p("status", "Task status"),
                _p("folderId", "Restrict to a folder or project"),
            ),
        ),
        ToolDeclaration(
            "wrike_get_task",
            "Get full details of a task by id.",
            (_p("taskId", "Task id", required=True),),
        ),
        ToolDeclaration(
            "wrike_add_comment",
            "Add a comment to a task.",
            (
                _p("taskId", "Task id", required=True),
                _p("text", "Comment text, plain or HTML", required=True),
            ),
        ),
        ToolDeclaration(
            "wrike_log_time",
            "Log time spent on a task.",
            (
                _p("taskId", "Task id", required=True),
                _p("hours", "Hours spent", required=True, type="number"),
                _p("comment", "Optional comment"),
            ),
        ),
    ),
)

WEB_SEARCH = ProviderRegistration(
    type="system.web_search",
    name="Web Search",
    requires_credentials=False,
    declared_tools=(
        ToolDeclaration(
            "web_search",
            "Search the web and return the top results with title, URL and snippet.",
            (_p("search_string", "The search query", required=True),),
        ),
    ),
)

READ_PAGE = ProviderRegistration(
    type="system.read_page",
    name="Web Page Reader",
    requires_credentials=False,
    declared_tools=(
        ToolDeclaration(
            "read_page",
            "Fetch a web page and return its readable text content.",
            (_p("url", "Absolute URL of the page", required=True),),
        ),
    ),
)

SHARE_FILE = ProviderRegistration(
    type="system.share_file",
    name="Share File",
    requires_credentials=False,
    declared_tools=(
        ToolDeclaration(
            "share_file",
            "Create a download link for a file produced during the conversation.",
            (
                _p("file_id", "Id of the stored file", required=True),
                _p("expires_in_hours", "Link lifetime in hours", type="integer"),
            ),
        ),
    ),
)

GENERATE_PDF = ProviderRegistration(
    type="system.generate_pdf",
    name="PDF Generator",
    requires_credentials=False,
    declared_tools=(
        ToolDeclaration(
            "generate_and_upload_pdf",
            "Render HTML content to a PDF and store it for sharing.",
            (
                _p("html", "HTML body of the document", required=True),
                _p("filename", "File name without extension", required=True),
            ),
        ),
    ),
)

DEFAULT_PROVIDERS = (
    JIRA,
    CONFLUENCE,
    GITLAB,
    HUBSPOT,
    SHAREPOINT,
    SAP_C4C,
    TRELLO,
    WRIKE,
    WEB_SEARCH,
    READ_PAGE,
    SHARE_FILE,
    GENERATE_PDF,
)


_default_registry = None


def build_default_registry() -> ProviderRegistry:
    return ProviderRegistry(DEFAULT_PROVIDERS)


def get_default_registry() -> ProviderRegistry:
    """Return the process-wide registry of built-in providers."""
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry
