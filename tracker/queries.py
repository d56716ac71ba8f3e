"""
GraphQL documents for the Linear API.
"""

ISSUE_FIELDS = """
    id
    identifier
    title
    description
    priority
    url
    dueDate
    updatedAt
    state { id name type }
    assignee { id name email }
    team { id key name }
    project { id }
"""

PROJECT_FIELDS = """
    id
    name
    description
    state
    url
    slugId
    startDate
    targetDate
    progress
    updatedAt
    teams { nodes { id key name } }
"""

TEAM_FIELDS = """
    id
    key
    name
    description
"""

# ── Issues ───────────────────────────────────────────────────────────────

GET_ISSUE = f"""
query GetIssue($id: String!) {{
  issue(id: $id) {{ {ISSUE_FIELDS} }}
}}
"""

CREATE_ISSUE = f"""
mutation CreateIssue($input: IssueCreateInput!) {{
  issueCreate(input: $input) {{
    success
    issue {{ {ISSUE_FIELDS} }}
  }}
}}
"""

UPDATE_ISSUE = f"""
mutation UpdateIssue($id: String!, $input: IssueUpdateInput!) {{
  issueUpdate(id: $id, input: $input) {{
    success
    issue {{ {ISSUE_FIELDS} }}
  }}
}}
"""

GET_PROJECT_ISSUES = f"""
query GetProjectIssues($projectId: String!, $after: String) {{
  project(id: $projectId) {{
    issues(first: 100, after: $after) {{
      nodes {{ {ISSUE_FIELDS} }}
      pageInfo {{ hasNextPage endCursor }}
    }}
  }}
}}
"""

# ── Projects ─────────────────────────────────────────────────────────────

GET_PROJECT = f"""
query GetProject($id: String!) {{
  project(id: $id) {{ {PROJECT_FIELDS} }}
}}
"""

CREATE_PROJECT = f"""
mutation CreateProject($input: ProjectCreateInput!) {{
  projectCreate(input: $input) {{
    success
    project {{ {PROJECT_FIELDS} }}
  }}
}}
"""

UPDATE_PROJECT = f"""
mutation UpdateProject($id: String!, $input: ProjectUpdateInput!) {{
  projectUpdate(id: $id, input: $input) {{
    success
    project {{ {PROJECT_FIELDS} }}
  }}
}}
"""

# ── Teams ────────────────────────────────────────────────────────────────

GET_TEAM = f"""
query GetTeam($id: String!) {{
  team(id: $id) {{ {TEAM_FIELDS} }}
}}
"""

GET_TEAMS = f"""
query GetTeams {{
  teams {{ nodes {{ {TEAM_FIELDS} }} }}
}}
"""

CREATE_TEAM = f"""
mutation CreateTeam($input: TeamCreateInput!) {{
  teamCreate(input: $input) {{
    success
    team {{ {TEAM_FIELDS} }}
  }}
}}
"""

UPDATE_TEAM = f"""
mutation UpdateTeam($id: String!, $input: TeamUpdateInput!) {{
  teamUpdate(id: $id, input: $input) {{
    success
    team {{ {TEAM_FIELDS} }}
  }}
}}
"""
