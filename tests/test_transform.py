import pytest
from pydantic import BaseModel

from storesync.errors import MissingColumnsError
from storesync.models import MediaRecord, MediaResolution, ProductGroup, SimpleProduct, VariantProduct
from storesync.transform import (
    build_collection_specs,
    build_product_groups,
    collection_payload,
    format_slug,
    group_rows,
    metadata_key,
    parse_int,
    parse_price_cents,
    parse_weight,
    price_payload,
    product_payload,
    representative_price,
    to_product_write,
    validate_group,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$1,234.50", 123450),
        ("100", 10000),
        ("10.005", 1001),
        ("", 0),
        ("free", 0),
        ("-5", 0),
        (None, 0),
        ("12abc34", 1200),
        ("\u20ac 9.50", 950),
        ("1e30", 100),
    ],
)
def test_parse_price_cents(text, expected):
    assert parse_price_cents(text) == expected


def test_parse_int():
    assert parse_int("1,200") == 1200
    assert parse_int("3.7") == 3
    assert parse_int("inf") is None
    assert parse_int("many") is None
    assert parse_int("") is None


def test_parse_weight():
    assert parse_weight("2.5 lb") == 2.5
    assert parse_weight("heavy") == 0.0


def test_metadata_key():
    assert metadata_key("Metadata: Frame Size") == "frame_size"
    assert metadata_key("Metafield:Wheel") == "wheel"
    assert metadata_key("Title") is None


def test_format_slug():
    assert format_slug("Bike A", "Road Bikes") == "bike-a-road-bikes"
    assert format_slug("Bike A", "") == "bike-a"


def test_grouping_is_total():
    rows = [
        {"Handle": "a", "Title": "A"},
        {"Handle": "", "Title": "orphan"},
        {"Handle": "b", "Title": "B"},
        {"Handle": "a", "Title": "A2"},
        {"Title": "no key column"},
    ]
    groups = group_rows(rows, "Handle")
    assert list(groups) == ["a", "b"]
    grouped = [r for g in groups.values() for r in g]
    assert len(grouped) == 3
    assert all(r["Handle"] for r in grouped)
    assert grouped.count(rows[0]) == 1


def test_group_with_option_row_is_variant_product():
    rows = [
        {"Slug": "bike-a", "Name": "Bike A", "Price": "$100.00", "Option1 Name": "", "Option1 Value": ""},
        {"Slug": "bike-a", "Name": "Bike A", "Price": "$120.00", "Option1 Name": "Color", "Option1 Value": "Red"},
    ]
    groups = build_product_groups(rows)
    assert len(groups) == 1
    group = groups[0]
    assert group.key == "bike-a"
    assert group.display_name == "Bike A"
    assert len(group.variants) == 2
    assert not group.is_simple
    assert representative_price(group.variants) == 10000
    assert isinstance(to_product_write(group), VariantProduct)


def test_missing_key_column_is_fatal():
    with pytest.raises(MissingColumnsError):
        build_product_groups([{"Title": "A"}], key_column="Handle")


def _rows():
    return [
        {
            "Handle": "trail-bike",
            "Title": "Trail Bike",
            "Category - Name": "Mountain Bikes",
            "Category - Slug": "mtb",
            "Option1 Name": "Color",
            "Option1 Value": "Red",
            "Variant Price": "$1,200.00",
            "ID": "TB-RED",
            "Order": "2",
            "Stock": "4",
            "Images": "https://img.test/tb-red.jpg, https://img.test/tb-red-side.jpg",
            "Metadata: Frame Size": "M",
            "Weight": "30",
        },
        {
            "Handle": "trail-bike",
            "Title": "Trail Bike",
            "Option1 Name": "Color",
            "Option1 Value": "Blue",
            "Variant Price": "$1,100.00",
            "ID": "TB-BLUE",
            "Order": "1",
            "Images": "https://img.test/tb-blue.jpg",
        },
    ]


def test_build_group_fields():
    group = build_product_groups(_rows())[0]
    assert group.slug == "trail-bike"
    assert group.category_slug == "mtb"
    assert group.metadata == {"frame_size": "M"}
    assert group.weight == 30.0
    assert [o.name for o in group.variant_options] == ["Color"]
    red, blue = group.variants
    assert (red.sku, red.position, red.price_cents, red.stock_quantity) == ("TB-RED", 2, 120000, 4)
    assert red.metadata["additional_images"] == "https://img.test/tb-red-side.jpg"
    assert blue.position == 1
    assert group.additional_images == ["https://img.test/tb-red-side.jpg"]


def test_composite_slug_mode():
    group = build_product_groups(_rows(), slug_mode="composite")[0]
    assert group.slug == "trail-bike-mountain-bikes"


def test_variant_payload_carries_media_and_collection():
    group = build_product_groups(_rows())[0]
    media = MediaResolution(records={"https://img.test/tb-red.jpg": MediaRecord(id=11, source_url="https://wp.test/tb-red.jpg")})
    payload = product_payload(to_product_write(group), media, collection_id="col_1")

    assert payload["status"] == "published"
    assert payload["content"] == "Mountain Bikes - Trail Bike"
    assert payload["product_collections"] == ["col_1"]
    assert payload["weight_unit"] == "lb"
    assert payload["metadata"]["gallery_ids"] == "[11]"
    assert payload["variant_options"] == [{"name": "Color", "position": 1}]
    red, blue = payload["variants"]
    assert red["amount"] == 120000
    assert red["option_1"] == "Red"
    assert red["stock_adjustment"] == 4
    assert red["metadata"]["wp_media"] == "11"
    assert "metadata" not in blue


def test_simple_payload():
    rows = [{"Handle": "bell", "Title": "Bell", "Variant Price": "12.99", "ID": "BELL-1", "Stock": "10",
             "Images": "https://img.test/bell.jpg"}]
    group = build_product_groups(rows)[0]
    write = to_product_write(group)
    assert isinstance(write, SimpleProduct)
    assert write.price_cents == 1299
    payload = product_payload(write, MediaResolution(records={"https://img.test/bell.jpg": MediaRecord(id=5, source_url="u")}))
    assert payload["sku"] == "BELL-1"
    assert payload["stock_enabled"] is True
    assert payload["stock_adjustment"] == 10
    assert payload["metadata"]["wp_media"] == "5"
    assert "variants" not in payload
    assert "product_collections" not in payload


def test_unknown_write_shape_is_rejected():
    class Bundle(BaseModel):
        group: ProductGroup

    with pytest.raises(TypeError):
        product_payload(Bundle(group=ProductGroup(key="k", slug="k", display_name="K")))


def test_price_payload():
    assert price_payload("prod_1", 500) == {"ad_hoc": False, "amount": 500, "name": "Fallback Pricing", "product": "prod_1"}


def test_validate_group_reports_missing_price():
    group = build_product_groups([{"Handle": "x", "Title": "X", "Variant Price": ""}])[0]
    assert any("no variant has a positive price" in i for i in validate_group(group))


def test_collection_specs_skip_incomplete_and_duplicate_rows():
    rows = [
        {"Slug": "road", "Name": "Road", "Metadata: Color": "red", "Metadata: Parent": "bikes",
         "Metadata: Related Collections": "gravel, tt"},
        {"Slug": "", "Name": "Nameless"},
        {"Slug": "ROAD", "Name": "Road again"},
    ]
    specs = build_collection_specs(rows)
    assert [s.slug for s in specs] == ["road"]
    spec = specs[0]
    assert spec.parent_slug == "bikes"
    assert spec.related_slugs == ["gravel", "tt"]
    assert spec.metadata == {"color": "red"}

    payload = collection_payload(spec, parent_id="col_9")
    assert payload["metadata"]["parent_collection"] == "col_9"
    assert payload["metadata"]["parent_collection_slug"] == "bikes"
