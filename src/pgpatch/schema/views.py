"""
View script synthesis for pgpatch.

Orders CREATE OR REPLACE VIEW statements using an external file of
``DROP VIEW IF EXISTS`` lines, and separates tenant views (thin per-tenant
filters over a base table) from ordinary views.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..database.introspection import ViewMeta


logger = logging.getLogger(__name__)


DROP_VIEW_PATTERN = re.compile(
    r"DROP\s+VIEW\s+IF\s+EXISTS\s+(\S+?)(?:\s+(?:CASCADE|RESTRICT))?\s*;",
    re.IGNORECASE,
)


class ViewNamingPolicy(BaseModel):
    """Naming and filtering conventions for tenant views."""

    tenant_suffix: str = Field("_tv", description="Suffix marking tenant views")
    tenant_column: str = Field("tenant_id", description="Column filtered by tenant views")
    tenant_setting: str = Field("app.tenant_id", description="Session setting holding the tenant")
    tenant_setting_type: str = Field("integer", description="Type the setting is cast to")
    separator: str = Field(
        "\n\n" + "-" * 80 + "\n\n", description="Text placed between view statements"
    )

    def is_tenant_view(self, view_name: str) -> bool:
        return view_name.endswith(self.tenant_suffix)

    def base_table(self, view_name: str) -> str:
        return view_name[: -len(self.tenant_suffix)] if self.is_tenant_view(view_name) else view_name

    def tenant_view_body(self, view_name: str) -> str:
        return (
            f"SELECT * FROM {self.base_table(view_name)} "
            f"WHERE {self.tenant_column} = "
            f"CAST(current_setting('{self.tenant_setting}') AS {self.tenant_setting_type});"
        )


@dataclass
class ViewScripts:
    """Rendered view scripts, one per bucket. Empty text means nothing to do."""

    tenant_views: str = ""
    views: str = ""
    unordered_views: str = ""
    tenant_view_names: List[str] = field(default_factory=list)
    view_names: List[str] = field(default_factory=list)
    unordered_view_names: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.tenant_views or self.views or self.unordered_views)

    @property
    def total_views(self) -> int:
        return len(self.tenant_view_names) + len(self.view_names) + len(self.unordered_view_names)


def extract_view_name(line: str) -> Optional[str]:
    """Return the view named by a DROP VIEW IF EXISTS line, or None."""
    match = DROP_VIEW_PATTERN.search(line.strip())
    return match.group(1) if match else None


def parse_view_ordering(ordering_text: Optional[str]) -> List[str]:
    """View names in the order they appear in the drop-ordering file."""
    if not ordering_text:
        return []

    names = []
    for line in ordering_text.splitlines():
        name = extract_view_name(line)
        if name is not None:
            names.append(name)
    return names


class ViewSynthesizer:
    """Builds ordered CREATE OR REPLACE VIEW scripts."""

    def __init__(self, policy: Optional[ViewNamingPolicy] = None):
        self.policy = policy or ViewNamingPolicy()

    def _creation_positions(self, names: List[str]) -> Dict[str, int]:
        # Views are dropped dependents-first, so creation runs the list backwards.
        positions: Dict[str, int] = {}
        for position, name in enumerate(reversed(names)):
            positions.setdefault(name, position)
        return positions

    def render_view(self, view: ViewMeta) -> str:
        return f"CREATE OR REPLACE VIEW {view.name} \n AS{view.definition}"

    def render_tenant_view(self, view: ViewMeta) -> str:
        return f"CREATE OR REPLACE VIEW {view.name} \n AS {self.policy.tenant_view_body(view.name)}"

    def generate(
        self,
        views: Iterable[ViewMeta],
        views_diff: Iterable[str],
        ordering_text: Optional[str] = None,
    ) -> ViewScripts:
        """
        Render scripts for the views that exist only on the source.

        Args:
            views: Source views with their definitions
            views_diff: Names of the views to create
            ordering_text: Contents of the drop-ordering file

        Returns:
            ViewScripts with the tenant, ordered and unordered buckets
        """
        definitions = {view.name: view for view in views}

        ordered = parse_view_ordering(ordering_text)
        tenant_positions = self._creation_positions(
            [name for name in ordered if self.policy.is_tenant_view(name)]
        )
        view_positions = self._creation_positions(
            [name for name in ordered if not self.policy.is_tenant_view(name)]
        )

        tenant_views: Dict[int, ViewMeta] = {}
        plain_views: Dict[int, ViewMeta] = {}
        unordered: List[ViewMeta] = []
        skipped: List[str] = []

        for name in views_diff:
            view = definitions.get(name)
            if view is None or view.definition is None:
                logger.warning(f"No source definition for view {name}, skipping")
                skipped.append(name)
                continue

            if self.policy.is_tenant_view(name):
                positions, bucket = tenant_positions, tenant_views
            else:
                positions, bucket = view_positions, plain_views

            if name in positions:
                bucket[positions[name]] = view
            else:
                unordered.append(view)

        tenant_list = [tenant_views[position] for position in sorted(tenant_views)]
        view_list = [plain_views[position] for position in sorted(plain_views)]

        separator = self.policy.separator
        scripts = ViewScripts(
            tenant_views=separator.join(self.render_tenant_view(view) for view in tenant_list),
            views=separator.join(self.render_view(view) for view in view_list),
            unordered_views=separator.join(self.render_view(view) for view in unordered),
            tenant_view_names=[view.name for view in tenant_list],
            view_names=[view.name for view in view_list],
            unordered_view_names=[view.name for view in unordered],
            skipped=skipped,
        )

        logger.info(
            f"Rendered {len(tenant_list)} tenant views, {len(view_list)} ordered views "
            f"and {len(unordered)} unordered views"
        )
        return scripts
