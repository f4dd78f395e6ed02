# deploy_engine/database/templates.py
"""
Template metadata codec.

A template database carries its source identity in a comment:

    sourceFile:<name>|createdDate:<iso8601>|version:1.0

The comment is the only lookup key, so matching is an exact comparison
of the ``sourceFile`` field.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple
from uuid import uuid4

from deploy_engine.core.models import DatabaseTemplate

METADATA_VERSION = "1.0"
TEMPLATE_PREFIX = "template_"


def new_template_name() -> str:
    return f"{TEMPLATE_PREFIX}{uuid4().hex}"


def format_template_metadata(source_identity: str, created_date: Optional[datetime] = None) -> str:
    created = created_date or datetime.now(timezone.utc)
    return f"sourceFile:{source_identity}|createdDate:{created.isoformat()}|version:{METADATA_VERSION}"


def parse_template_metadata(name: str, comment: Optional[str]) -> Optional[DatabaseTemplate]:
    """Return None for comments that are not template metadata."""
    if not comment:
        return None

    fields: Dict[str, str] = {}
    for part in comment.split("|"):
        key, sep, value = part.partition(":")
        if sep:
            fields[key.strip()] = value

    if "sourceFile" not in fields:
        return None

    try:
        created = datetime.fromisoformat(fields.get("createdDate", ""))
    except ValueError:
        created = datetime.now(timezone.utc)

    return DatabaseTemplate(
        name=name,
        source_identity=fields["sourceFile"],
        created_date=created,
        version=fields.get("version", METADATA_VERSION),
    )


def matches_source(comment: Optional[str], source_identity: str) -> bool:
    template = parse_template_metadata("", comment)
    return template is not None and template.source_identity == source_identity


def find_template_name(comments: Iterable[Tuple[str, Optional[str]]], source_identity: str) -> Optional[str]:
    """First database whose comment names ``source_identity``."""
    for name, comment in comments:
        if matches_source(comment, source_identity):
            return name
    return None
