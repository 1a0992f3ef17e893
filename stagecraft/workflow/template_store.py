"""File-backed template store with linear version history."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..constants import STATE_DIR, TEMPLATE_VERSIONS_DIR, TEMPLATES_DIR
from ..exceptions import TemplateConflictError, TemplateNotFoundError
from .models import utcnow
from .templates import (
    BUILTIN_TEMPLATE_NAMES,
    TemplateVersion,
    WorkflowTemplate,
    get_builtin_template,
    parse_template,
)

logger = logging.getLogger(__name__)

_VERSION_FILE = re.compile(r"^v(\d+)\.ya?ml$")


class TemplateStore:
    """Load built-in and project-local templates and manage their versions.

    Project-local templates live in ``.stagecraft/workflow-templates`` as YAML.
    Every create/update/duplicate/restore writes the template file and an
    immutable snapshot under ``.stagecraft/workflow-template-versions/{name}``.
    A local file named like a built-in template overrides it.
    """

    def __init__(self, project_root: str | Path) -> None:
        self.project_root = Path(project_root)
        self.templates_dir = self.project_root / STATE_DIR / TEMPLATES_DIR
        self.versions_dir = self.project_root / STATE_DIR / TEMPLATE_VERSIONS_DIR

    # ------------------------------------------------------------------
    # Read API
    async def list_names(self) -> List[str]:
        local = await asyncio.to_thread(self._local_names)
        return sorted(set(BUILTIN_TEMPLATE_NAMES) | set(local))

    async def list(self) -> List[WorkflowTemplate]:
        return [await self.get(name) for name in await self.list_names()]

    async def get(self, name: str) -> WorkflowTemplate:
        path = self._find_template_file(name)
        if path is not None:
            return await asyncio.to_thread(self._read_template, path)
        builtin = get_builtin_template(name)
        if builtin is None:
            raise TemplateNotFoundError(name)
        return builtin

    async def list_versions(self, name: str) -> List[TemplateVersion]:
        return await asyncio.to_thread(self._read_versions, name)

    async def get_version(self, name: str, version: int) -> TemplateVersion:
        path = self._version_path(name, version)
        if not path.exists():
            raise TemplateNotFoundError(name, version)
        return await asyncio.to_thread(self._read_version, path)

    # ------------------------------------------------------------------
    # Mutating API
    async def create(
        self,
        template: WorkflowTemplate | Dict[str, Any],
        changed_by: str = "system",
        change_description: Optional[str] = None,
    ) -> WorkflowTemplate:
        data = _as_data(template)
        name = data.get("name")
        if name in await self.list_names():
            raise TemplateConflictError(f"Template {name} already exists")
        now = utcnow()
        created = parse_template(
            {**data, "version": 1, "created_at": now, "updated_at": now}
        )
        await self._publish(created, changed_by, change_description)
        logger.info(f"Created template {created.name}")
        return created

    async def update(
        self,
        name: str,
        changes: Dict[str, Any],
        changed_by: str = "system",
        change_description: Optional[str] = None,
    ) -> WorkflowTemplate:
        if changes.get("name") and changes["name"] != name:
            raise TemplateConflictError("Template name cannot be changed")
        current = await self.get(name)
        if current.builtin and self._find_template_file(name) is None:
            raise TemplateConflictError(f"Built-in template {name} cannot be updated")

        data = {
            **current.model_dump(mode="json", by_alias=True),
            **changes,
            "name": name,
            "version": current.version + 1,
            "created_at": current.created_at,
            "updated_at": utcnow(),
        }
        updated = parse_template(data, builtin=current.builtin)
        await self._publish(updated, changed_by, change_description)
        logger.info(f"Updated template {name} to version {updated.version}")
        return updated

    async def delete(self, name: str) -> None:
        path = self._find_template_file(name)
        if path is None and name in BUILTIN_TEMPLATE_NAMES:
            raise TemplateConflictError(f"Built-in template {name} cannot be deleted")
        if path is None:
            raise TemplateNotFoundError(name)
        await asyncio.to_thread(path.unlink)
        logger.info(f"Deleted template {name}")

    async def duplicate(
        self,
        source_name: str,
        new_name: str,
        changed_by: str = "system",
        change_description: Optional[str] = None,
    ) -> WorkflowTemplate:
        source = await self.get(source_name)
        return await self.create(
            {**source.model_dump(mode="json", by_alias=True), "name": new_name},
            changed_by=changed_by,
            change_description=change_description,
        )

    async def restore_version(
        self,
        name: str,
        version: int,
        changed_by: str = "system",
        change_description: Optional[str] = None,
    ) -> WorkflowTemplate:
        """Republish an old snapshot as the next version."""
        target = await self.get_version(name, version)
        versions = await self.list_versions(name)
        if versions:
            latest = max(v.version for v in versions)
        else:
            latest = (await self.get(name)).version

        data = {
            **target.snapshot.model_dump(mode="json", by_alias=True),
            "name": name,
            "version": latest + 1,
            "updated_at": utcnow(),
        }
        restored = parse_template(data, builtin=target.snapshot.builtin)
        await self._publish(restored, changed_by, change_description)
        logger.info(f"Restored template {name} v{version} as v{restored.version}")
        return restored

    async def duplicate_version(
        self,
        source_name: str,
        source_version: int,
        new_name: str,
        changed_by: str = "system",
        change_description: Optional[str] = None,
    ) -> WorkflowTemplate:
        snapshot = await self.get_version(source_name, source_version)
        return await self.create(
            {**snapshot.snapshot.model_dump(mode="json", by_alias=True), "name": new_name},
            changed_by=changed_by,
            change_description=change_description,
        )

    # ------------------------------------------------------------------
    # File helpers
    async def _publish(
        self,
        template: WorkflowTemplate,
        changed_by: str,
        change_description: Optional[str],
    ) -> None:
        version = TemplateVersion(
            template_name=template.name,
            version=template.version,
            snapshot=template,
            changed_by=changed_by,
            change_description=change_description,
        )
        await asyncio.to_thread(self._write_template, template)
        await asyncio.to_thread(self._write_version, version)

    def _local_names(self) -> List[str]:
        if not self.templates_dir.is_dir():
            return []
        return [
            path.stem
            for path in self.templates_dir.iterdir()
            if path.suffix in (".yaml", ".yml")
        ]

    def _find_template_file(self, name: str) -> Optional[Path]:
        for suffix in (".yaml", ".yml"):
            candidate = self.templates_dir / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def _version_path(self, name: str, version: int) -> Path:
        return self.versions_dir / name / f"v{version}.yaml"

    def _read_template(self, path: Path) -> WorkflowTemplate:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if isinstance(data, dict):
            data.pop("builtin", None)
        return parse_template(data, builtin=path.stem in BUILTIN_TEMPLATE_NAMES)

    def _write_template(self, template: WorkflowTemplate) -> None:
        self.templates_dir.mkdir(parents=True, exist_ok=True)
        data = template.model_dump(mode="json", exclude_none=True, by_alias=True)
        data.pop("builtin", None)
        path = self.templates_dir / f"{template.name}.yaml"
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def _write_version(self, version: TemplateVersion) -> None:
        path = self._version_path(version.template_name, version.version)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = version.model_dump(mode="json", exclude_none=True, by_alias=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def _read_version(self, path: Path) -> TemplateVersion:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return TemplateVersion.model_validate(data)

    def _read_versions(self, name: str) -> List[TemplateVersion]:
        directory = self.versions_dir / name
        if not directory.is_dir():
            return []
        versions = [
            self._read_version(path)
            for path in directory.iterdir()
            if _VERSION_FILE.match(path.name)
        ]
        return sorted(versions, key=lambda v: v.version)


def _as_data(template: WorkflowTemplate | Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(template, WorkflowTemplate):
        return template.model_dump(mode="json", by_alias=True)
    return dict(template)
