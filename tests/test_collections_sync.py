import pytest

from storesync.collections_sync import (
    CollectionIndex,
    delete_all_collections,
    delete_collections_by_id,
    order_for_deletion,
    plan_collection_order,
    refresh_collection,
    sync_collections,
)
from storesync.errors import MissingColumnsError, NotFoundError
from storesync.models import CollectionSpec, RemoteCollection


def row(slug, name=None, parent="", related="", **extra):
    r = {"Slug": slug, "Name": name or slug.title(), "Description": f"{slug} gear", "Metadata: Parent": parent,
         "Metadata: Related Collections": related}
    r.update(extra)
    return r


def spec(slug, parent=None):
    return CollectionSpec(name=slug, slug=slug, parent_slug=parent)


def test_plan_layers_parents_before_children():
    layers, unresolved = plan_collection_order(
        [spec("child", "parent"), spec("grandchild", "child"), spec("parent")], CollectionIndex()
    )
    assert [[s.slug for s in layer] for layer in layers] == [["parent"], ["child"], ["grandchild"]]
    assert unresolved == []


def test_plan_accepts_remote_parents_and_reports_unresolved():
    remote = CollectionIndex([RemoteCollection(id="col_1", name="Bikes", slug="bikes")])
    layers, unresolved = plan_collection_order(
        [spec("road", "bikes"), spec("a", "b"), spec("b", "a"), spec("orphan", "ghost")], remote
    )
    assert [s.slug for s in layers[0]] == ["road"]
    assert sorted(s.slug for s in unresolved) == ["a", "b", "orphan"]


def test_order_for_deletion_puts_children_first():
    a = RemoteCollection(id="1", slug="a")
    b = RemoteCollection(id="2", slug="b", metadata={"parent_collection": "1"})
    c = RemoteCollection(id="3", slug="c", metadata={"parent_collection_id": "1"})
    assert [x.slug for x in order_for_deletion([a, b, c])] == ["b", "c", "a"]


@pytest.mark.asyncio
async def test_child_listed_first_is_created_after_parent(fake_surecart):
    rows = [row("road", parent="bikes"), row("bikes")]
    async with fake_surecart.client() as client:
        report = await sync_collections(client, rows, skip_updates=True)

    assert fake_surecart.created_collections == ["bikes", "road"]
    by_slug = {c["slug"]: c for c in fake_surecart.collections.values()}
    assert by_slug["road"]["metadata"]["parent_collection"] == by_slug["bikes"]["id"]
    assert report.summary.created_collections == 2
    assert report.summary.total_collections == 2


@pytest.mark.asyncio
async def test_second_run_creates_nothing(fake_surecart):
    rows = [row("bikes"), row("road", parent="bikes")]
    async with fake_surecart.client() as client:
        await sync_collections(client, rows)
        second = await sync_collections(client, rows)

    assert len(fake_surecart.collections) == 2
    assert second.summary.created_collections == 0
    assert second.summary.existing_collections == 2
    assert {c["slug"] for c in second.collections()} == {"bikes", "road"}


@pytest.mark.asyncio
async def test_existing_collection_matched_by_name(fake_surecart):
    fake_surecart.add_collection("Road Bikes", "road-bikes-2024")
    async with fake_surecart.client() as client:
        report = await sync_collections(client, [row("road-bikes", name="road bikes")], skip_updates=True)
    assert report.summary.existing_collections == 1
    assert fake_surecart.created_collections == []


@pytest.mark.asyncio
async def test_missing_parent_is_skipped(fake_surecart):
    rows = [row("bikes"), row("road", parent="ghost")]
    async with fake_surecart.client() as client:
        report = await sync_collections(client, rows, skip_updates=True)

    assert fake_surecart.created_collections == ["bikes"]
    assert report.summary.skipped_collections == 1
    assert report.summary.total_collections == 1


@pytest.mark.asyncio
async def test_failed_create_is_counted_and_run_continues(fake_surecart):
    fake_surecart.reject_collection_slugs.add("bikes")
    rows = [row("bikes"), row("road", parent="bikes"), row("helmets")]
    async with fake_surecart.client() as client:
        report = await sync_collections(client, rows, skip_updates=True)

    assert fake_surecart.created_collections == ["helmets"]
    assert report.summary.failed_collections == 1
    assert report.summary.skipped_collections == 1


@pytest.mark.asyncio
async def test_update_pass_resolves_related_collections(fake_surecart):
    rows = [row("bikes", related="helmets, ghost", **{"Metadata: Color": "red"}), row("helmets")]
    async with fake_surecart.client() as client:
        report = await sync_collections(client, rows)

    by_slug = {c["slug"]: c for c in fake_surecart.collections.values()}
    meta = by_slug["bikes"]["metadata"]
    assert meta["related_collections"] == "helmets,ghost"
    assert meta["related_collection_ids"] == by_slug["helmets"]["id"]
    assert meta["missed_related_collections"] == "ghost"
    assert meta["color"] == "red"
    assert report.summary.updated_collections == 2
    assert report.summary.update_errors == 0


@pytest.mark.asyncio
async def test_delete_existing_runs_before_sync(fake_surecart):
    old = fake_surecart.add_collection("Old", "old")
    async with fake_surecart.client() as client:
        report = await sync_collections(client, [row("bikes")], delete_existing=True, skip_updates=True)

    assert old not in fake_surecart.collections
    assert report.summary.deleted_collections == 1
    assert fake_surecart.created_collections == ["bikes"]


@pytest.mark.asyncio
async def test_delete_all_removes_children_first(fake_surecart):
    a = fake_surecart.add_collection("A", "a")
    b = fake_surecart.add_collection("B", "b", metadata={"parent_collection": a})
    async with fake_surecart.client() as client:
        summary = await delete_all_collections(client)

    assert fake_surecart.deleted_collections == [b, a]
    assert summary.deleted == 2
    assert summary.failed == 0


@pytest.mark.asyncio
async def test_delete_by_id_counts_failures(fake_surecart):
    a = fake_surecart.add_collection("A", "a")
    b = fake_surecart.add_collection("B", "b")
    fake_surecart.fail_deletes.add(b)
    async with fake_surecart.client() as client:
        summary = await delete_collections_by_id(client, [a, b, "col_missing"])

    assert summary.total == 3
    assert summary.deleted == 1
    assert summary.failed == 2


@pytest.mark.asyncio
async def test_refresh_collection(fake_surecart):
    bikes = fake_surecart.add_collection("Bikes", "bikes")
    road = fake_surecart.add_collection("Road", "road", metadata={"legacy": "yes"})
    rows = [row("bikes"), row("road", name="Road Bikes", parent="bikes")]
    async with fake_surecart.client() as client:
        updated = await refresh_collection(client, rows, road)

    assert updated["slug"] == "road"
    stored = fake_surecart.collections[road]
    assert stored["name"] == "Road Bikes"
    assert stored["metadata"]["parent_collection"] == bikes
    assert stored["metadata"]["legacy"] == "yes"


@pytest.mark.asyncio
async def test_refresh_unknown_collection(fake_surecart):
    fake_surecart.add_collection("Gone", "gone")
    async with fake_surecart.client() as client:
        with pytest.raises(NotFoundError):
            await refresh_collection(client, [row("bikes")], "col_404")
        gone = next(iter(fake_surecart.collections))
        with pytest.raises(NotFoundError):
            await refresh_collection(client, [row("bikes")], gone)


@pytest.mark.asyncio
async def test_missing_slug_column_is_fatal_before_delete(fake_surecart):
    old = fake_surecart.add_collection("Old", "old")
    rows = [{"Name": "Bikes", "Description": "All bikes"}]
    async with fake_surecart.client() as client:
        with pytest.raises(MissingColumnsError) as exc:
            await sync_collections(client, rows, delete_existing=True)
        with pytest.raises(MissingColumnsError):
            await refresh_collection(client, rows, old)

    assert "Slug" in str(exc.value)
    assert old in fake_surecart.collections
    assert fake_surecart.deleted_collections == []
    assert fake_surecart.created_collections == []
