"""Unit tests for slugs, search, tag filtering, detail sections and image checks."""
from uuid import uuid4

import pytest

from src.pawie import catalog, config
from src.pawie.errors import ServiceError


class TestSlugs:
    @pytest.mark.parametrize(
        "name, slug",
        [
            ("Grain Free", "grain-free"),
            ("  Grain   Free!  ", "grain-free"),
            ("Kitten & Puppy", "kitten-puppy"),
            ("high_protein", "high-protein"),
            ("--Senior--", "senior"),
        ],
    )
    def test_generate_slug(self, name, slug):
        assert catalog.generate_slug(name) == slug


class TestSearchRelevance:
    """Tests for how a single product scores against a query."""

    def test_whole_word_in_name_scores_highest(self):
        assert catalog.search_relevance({"name": "Salmon Kibble"}, "salmon") == 3.0

    def test_name_prefix(self):
        assert catalog.search_relevance({"name": "Salmon Kibble"}, "salm") == 2.0

    def test_description_substring(self):
        product = {"name": "Chicken Bites", "description": "Made with grain-free oats"}

        assert catalog.search_relevance(product, "grain") == 1.5

    def test_category_word(self):
        product = {"name": "Chew Stick", "category": "Treats"}

        assert catalog.search_relevance(product, "treats") == pytest.approx(0.6)

    def test_query_words_in_any_order(self):
        assert catalog.search_relevance({"name": "Salmon Kibble"}, "kibble salmon") == 3.0

    def test_typo_tolerance(self):
        assert catalog.search_relevance({"name": "Salmon"}, "salmn") == pytest.approx(4 / 9)

    def test_no_match(self):
        assert catalog.search_relevance({"name": "Salmon Kibble"}, "dog") is None

    def test_blank_query(self):
        assert catalog.search_relevance({"name": "Salmon Kibble"}, "   ") is None

    def test_similarity_bounds(self):
        assert catalog.similarity("salmon", "salmon") == 1.0
        assert catalog.similarity("salmon", "") == 0.0


class TestSearchProducts:
    def test_orders_by_relevance_then_recency(self, store):
        kibble = store.add_product(name="Salmon Kibble")
        bites = store.add_product(name="Chicken Bites", description="with salmon oil")
        treats = store.add_product(name="Salmon Treats")
        store.add_product(name="Salmon Hidden", published=False)
        store.add_product(name="Beef Stew")

        results = catalog.search_products(store, "salmon")

        assert [p["id"] for p in results] == [treats["id"], kibble["id"], bites["id"]]
        assert [p["relevance"] for p in results] == [3.0, 3.0, 1.5]

    def test_pagination(self, store):
        for i in range(5):
            store.add_product(name=f"Salmon {i}")

        page = catalog.search_products(store, "salmon", limit=2, offset=2)

        assert [p["name"] for p in page] == ["Salmon 2", "Salmon 1"]


class TestTagFilter:
    def test_requires_every_tag(self, store):
        grain_free, senior = uuid4(), uuid4()
        both = store.add_product(name="Both", tag_ids=[grain_free, senior])
        store.add_product(name="One", tag_ids=[grain_free])

        results = catalog.filter_products_by_tags(store, [grain_free, senior, grain_free])

        assert [p["id"] for p in results] == [both["id"]]

    def test_no_tags_lists_published(self, store):
        store.add_product(name="Visible")
        store.add_product(name="Hidden", published=False)

        assert [p["name"] for p in catalog.filter_products_by_tags(store, [])] == ["Visible"]


class TestDetailSections:
    """Tests for merging template sections with product sections."""

    @pytest.fixture
    def product(self, store):
        template_id = uuid4()
        ingredients = store.add_template_section(template_id, "Ingredients", 1)
        feeding = store.add_template_section(template_id, "Feeding Guide", 2)
        product = store.add_product(detail_template_id=template_id)
        store.add_product_section(product["id"], "Feeding (kittens)", 2, template_section_id=feeding["id"])
        store.add_product_section(product["id"], "Why we love it", 0)
        return product, ingredients

    def test_merge(self, store, product):
        product, ingredients = product

        sections = catalog.get_product_detail_sections(store, product["id"])

        assert [(s["title"], s["source"]) for s in sections] == [
            ("Why we love it", "custom"),
            ("Ingredients", "template"),
            ("Feeding (kittens)", "override"),
        ]
        assert sections[1]["id"] == ingredients["id"]

    def test_unpublished_product_hides_sections_publicly(self, store):
        product = store.add_product(published=False)
        store.add_product_section(product["id"], "Draft", 0)

        assert catalog.get_product_detail_sections(store, product["id"]) == []
        assert len(catalog.get_product_detail_sections(store, product["id"], public=False)) == 1

    def test_product_without_template(self, store):
        product = store.add_product()
        store.add_product_section(product["id"], "Notes", 1)

        assert [s["source"] for s in catalog.get_product_detail_sections(store, product["id"])] == ["custom"]

    def test_unknown_product(self, store):
        with pytest.raises(ServiceError) as exc:
            catalog.get_product_detail_sections(store, uuid4())

        assert exc.value.code == "PRODUCT_NOT_FOUND"


def _failing_transaction():
    raise RuntimeError("database unavailable")


class TestImages:
    def test_accepts_known_types(self):
        assert catalog.validate_image("image/webp", 1024) == "webp"

    def test_rejects_other_types(self):
        with pytest.raises(ServiceError) as exc:
            catalog.validate_image("application/pdf", 1024)

        assert exc.value.code == "INVALID_FILE_TYPE"
        assert exc.value.status_code == 400

    def test_rejects_large_files(self):
        with pytest.raises(ServiceError) as exc:
            catalog.validate_image("image/png", config.MAX_IMAGE_BYTES + 1)

        assert exc.value.code == "FILE_TOO_LARGE"

    def test_storage_path_uses_content_type_extension(self):
        product_id = uuid4()

        path = catalog.image_storage_path(product_id, catalog.validate_image("image/png", 10))

        assert path.startswith(f"{product_id}/")
        assert path.endswith(".png")
        assert path.count("/") == 1

    @pytest.mark.parametrize("filename", ["evil.html", "a./x", "../../etc.png", None])
    def test_upload_filename_never_shapes_path(self, monkeypatch, filename):
        product_id = uuid4()
        written = []
        monkeypatch.setattr(catalog.db, "fetch_one", lambda query, params: {"id": product_id})
        monkeypatch.setattr(catalog, "_write_file", lambda path, data: written.append(path))
        monkeypatch.setattr(catalog.db, "transaction", _failing_transaction)
        monkeypatch.setattr(catalog, "_remove_file", lambda path: None)

        with pytest.raises(RuntimeError):
            catalog.upload_image(product_id, filename, "image/png", b"\x89PNG")

        [path] = written
        assert path.startswith(f"{product_id}/")
        assert path.endswith(".png")
        assert path.count("/") == 1

    def test_image_url(self):
        assert catalog.image_url(None) is None
        assert catalog.image_url("a/b.png") == f"{config.MEDIA_BASE_URL.rstrip('/')}/a/b.png"
