"""HTML rendering of commit notification emails."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from wins_column.entities.commits import Commit

template_dir = Path(__file__).parent / "templates"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html", "jinja2"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def change_label(change_type: Optional[str]) -> str:
    return "Bugfix" if change_type == "bugfix" else "Feature"


def format_date(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "Unknown date"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%b %d, %Y")


jinja_env.filters["change_label"] = change_label
jinja_env.filters["format_date"] = format_date


def _subject(template_type: str, commits: Sequence[Commit], project_name: str) -> str:
    if template_type == "single_commit":
        if commits[0].change_type == "bugfix":
            return f"There's a Bugfix in {project_name}"
        return f"There's a New Feature in {project_name}"
    if template_type == "digest":
        return f"{project_name}: {len(commits)} new commits"
    return f"{project_name}: Weekly Summary ({len(commits)} commits)"


def render_email(
    template_type: str,
    commits: Sequence[Commit],
    project_name: str,
    template_data: Optional[Dict[str, Any]] = None,
) -> Tuple[str, str]:
    """Return ``(subject, html)`` for a notification about ``commits``."""
    if not commits:
        raise ValueError("At least one commit is required to render an email")
    if template_type not in ("single_commit", "digest", "weekly_summary"):
        raise ValueError(f"Unknown email template: {template_type}")

    groups: Dict[str, List[Commit]] = {}
    for commit in commits:
        groups.setdefault(commit.change_type or "feature", []).append(commit)

    template = jinja_env.get_template(f"{template_type}.html.jinja2")
    context = dict(template_data or {})
    context.update(project_name=project_name, commit=commits[0], commits=list(commits), groups=groups)
    html = template.render(**context)
    return _subject(template_type, commits, project_name), html
