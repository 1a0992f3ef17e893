import pytest
import yaml

from stagecraft.exceptions import TemplateConflictError, TemplateNotFoundError
from stagecraft.workflow import TemplateStore


def _definition(name="lean"):
    return {
        "name": name,
        "description": "Two step flow",
        "stages": [
            {"name": "request", "type": "request", "gate": {"type": "auto"}},
            {
                "name": "build",
                "type": "implementation",
                "gate": {"type": "verification_pass", "commands": ["make test"]},
            },
        ],
    }


@pytest.mark.asyncio
async def test_list_includes_builtin_and_local(tmp_path):
    store = TemplateStore(tmp_path)
    assert await store.list_names() == ["documentation", "hotfix", "standard"]

    await store.create(_definition())
    assert await store.list_names() == ["documentation", "hotfix", "lean", "standard"]
    assert (tmp_path / ".stagecraft" / "workflow-templates" / "lean.yaml").is_file()
    assert (
        tmp_path / ".stagecraft" / "workflow-template-versions" / "lean" / "v1.yaml"
    ).is_file()


@pytest.mark.asyncio
async def test_create_update_and_versions(tmp_path):
    store = TemplateStore(tmp_path)
    created = await store.create(_definition(), changed_by="alice")
    assert created.version == 1
    assert not created.builtin

    updated = await store.update(
        "lean", {"description": "Leaner"}, changed_by="bob", change_description="tweak"
    )
    assert updated.version == 2
    assert updated.created_at == created.created_at

    loaded = await store.get("lean")
    assert loaded.description == "Leaner"
    assert loaded.version == 2

    versions = await store.list_versions("lean")
    assert [v.version for v in versions] == [1, 2]
    assert versions[0].changed_by == "alice"
    assert versions[1].change_description == "tweak"
    assert versions[0].snapshot.description == "Two step flow"


@pytest.mark.asyncio
async def test_restore_version_publishes_next_version(tmp_path):
    store = TemplateStore(tmp_path)
    await store.create(_definition())
    await store.update("lean", {"description": "Leaner"})

    restored = await store.restore_version("lean", 1, changed_by="carol")
    assert restored.version == 3
    assert restored.description == "Two step flow"
    assert [v.version for v in await store.list_versions("lean")] == [1, 2, 3]
    assert (await store.get("lean")).version == 3


@pytest.mark.asyncio
async def test_duplicate_and_duplicate_version(tmp_path):
    store = TemplateStore(tmp_path)
    copy = await store.duplicate("standard", "standard-copy")
    assert copy.version == 1
    assert not copy.builtin
    assert len(copy.stages) == 5

    await store.create(_definition())
    await store.update("lean", {"description": "Leaner"})
    old = await store.duplicate_version("lean", 1, "lean-v1")
    assert old.description == "Two step flow"
    assert old.version == 1


@pytest.mark.asyncio
async def test_conflicts(tmp_path):
    store = TemplateStore(tmp_path)
    await store.create(_definition())

    with pytest.raises(TemplateConflictError, match="Template lean already exists"):
        await store.create(_definition())
    with pytest.raises(TemplateConflictError, match="Template standard already exists"):
        await store.create(_definition("standard"))
    with pytest.raises(TemplateConflictError, match="Template name cannot be changed"):
        await store.update("lean", {"name": "renamed"})
    with pytest.raises(
        TemplateConflictError, match="Built-in template standard cannot be updated"
    ):
        await store.update("standard", {"description": "x"})
    with pytest.raises(
        TemplateConflictError, match="Built-in template hotfix cannot be deleted"
    ):
        await store.delete("hotfix")


@pytest.mark.asyncio
async def test_not_found(tmp_path):
    store = TemplateStore(tmp_path)
    with pytest.raises(TemplateNotFoundError, match="Template missing not found"):
        await store.get("missing")
    with pytest.raises(TemplateNotFoundError, match="Template missing not found"):
        await store.delete("missing")

    await store.create(_definition())
    with pytest.raises(TemplateNotFoundError, match="Version 9 for template lean not found"):
        await store.get_version("lean", 9)


@pytest.mark.asyncio
async def test_delete_local_template(tmp_path):
    store = TemplateStore(tmp_path)
    await store.create(_definition())
    await store.delete("lean")
    assert "lean" not in await store.list_names()


@pytest.mark.asyncio
async def test_local_file_overrides_builtin(tmp_path):
    directory = tmp_path / ".stagecraft" / "workflow-templates"
    directory.mkdir(parents=True)
    data = _definition("standard")
    (directory / "standard.yaml").write_text(yaml.safe_dump(data))

    store = TemplateStore(tmp_path)
    template = await store.get("standard")
    assert template.builtin
    assert len(template.stages) == 2

    updated = await store.update("standard", {"description": "Project standard"})
    assert updated.version == 2
    assert updated.builtin
