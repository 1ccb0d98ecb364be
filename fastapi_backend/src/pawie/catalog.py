"""Catalog helpers: tag slugs, product search, tag filtering, detail sections and product images."""
import logging
import os
import re
import uuid
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID

from src.pawie import config, db
from src.pawie.errors import ServiceError
from src.pawie.store import Row, Store

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

# Field weights for whole-word matches, highest first.
_WORD_WEIGHTS = (("name", 1.0), ("description", 0.4), ("category", 0.2))

_WORD_RE = re.compile(r"[^\W_]+")


# PUBLIC_INTERFACE
def generate_slug(name: str) -> str:
    """URL slug for a tag name: `"Grain Free!"` -> `"grain-free"`."""
    slug = name.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def _words(text: Optional[str]) -> List[str]:
    return _WORD_RE.findall((text or "").lower())


def trigrams(text: str) -> Set[str]:
    """Trigram set of `text`, each word padded with two leading spaces and one trailing."""
    grams: Set[str] = set()
    for word in _words(text):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i : i + 3])
    return grams


# PUBLIC_INTERFACE
def similarity(a: str, b: str) -> float:
    """Trigram similarity in [0, 1]: shared trigrams over all distinct trigrams."""
    ga, gb = trigrams(a), trigrams(b)
    if not ga or not gb:
        return 0.0
    return len(ga & gb) / len(ga | gb)


def similarity_threshold(query: str) -> float:
    """Shorter queries need a closer match to count as a typo."""
    if len(query) <= 2:
        return 0.4
    if len(query) <= 5:
        return 0.3
    return 0.25


def _word_match_score(product: Row, query_words: List[str]) -> float:
    if not query_words:
        return 0.0
    fields = {name: set(_words(product.get(name))) for name, _ in _WORD_WEIGHTS}
    total = 0.0
    for word in query_words:
        weight = next((w for name, w in _WORD_WEIGHTS if word in fields[name]), None)
        if weight is None:
            return 0.0
        total += weight
    return 3.0 * total / len(query_words)


# PUBLIC_INTERFACE
def search_relevance(product: Row, query: str) -> Optional[float]:
    """
    Relevance of one product for a search query, or None when it does not match.

    Matches on whole words (name, description, category), name prefix,
    description substring, category prefix, or a trigram similarity on the
    name above a length-dependent threshold. The score is the best of the
    matching signals.
    """
    q = query.strip().lower()
    if not q:
        return None
    name = (product.get("name") or "").lower()
    description = (product.get("description") or "").lower()
    category = (product.get("category") or "").lower()

    word_score = _word_match_score(product, _words(q))
    name_sim = similarity(product.get("name") or "", query)
    typo_match = name_sim > similarity_threshold(q)

    matched = (
        word_score > 0
        or name.startswith(q)
        or q in description
        or category.startswith(q)
        or typo_match
    )
    if not matched:
        return None
    return max(
        word_score,
        2.0 if name.startswith(q) else 0.0,
        1.5 if q in description else 0.0,
        name_sim if typo_match else 0.0,
    )


# PUBLIC_INTERFACE
def search_products(store: Store, query: str, limit: int = 20, offset: int = 0) -> List[Row]:
    """Published products matching `query`, best match first then most recently updated."""
    scored = []
    for product in store.list_published_products():
        relevance = search_relevance(product, query)
        if relevance is not None:
            scored.append(dict(product, relevance=relevance))
    # Two stable sorts: secondary key first.
    scored.sort(key=lambda p: p["updated_at"], reverse=True)
    scored.sort(key=lambda p: p["relevance"], reverse=True)
    return scored[offset : offset + limit]


# PUBLIC_INTERFACE
def filter_products_by_tags(store: Store, tag_ids: Sequence[UUID], limit: int = 50, offset: int = 0) -> List[Row]:
    """Published products carrying every tag in `tag_ids`; all published products when empty."""
    return store.filter_products_by_tags(list(dict.fromkeys(tag_ids)), limit, offset)


# PUBLIC_INTERFACE
def merge_detail_sections(template_sections: Sequence[Row], product_sections: Sequence[Row]) -> List[Dict[str, Any]]:
    """
    Combine a template's sections with a product's own sections.

    A product section pointing at a template section replaces it; product
    sections without a template section are custom additions. The result is
    ordered by `sort_order`.
    """
    overrides: Dict[Any, Row] = {}
    merged: List[Dict[str, Any]] = []
    for section in product_sections:
        if section.get("template_section_id"):
            overrides[section["template_section_id"]] = section
        else:
            merged.append(_section(section, "custom"))
    for section in template_sections:
        override = overrides.get(section["id"])
        if override:
            merged.append(_section(override, "override"))
        else:
            merged.append(_section(section, "template"))
    merged.sort(key=lambda s: s["sort_order"])
    return merged


def _section(row: Row, source: str) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "title": row["title"],
        "content": row.get("content"),
        "sort_order": int(row.get("sort_order") or 0),
        "source": source,
    }


# PUBLIC_INTERFACE
def get_product_detail_sections(store: Store, product_id: UUID, public: bool = True) -> List[Dict[str, Any]]:
    """Merged detail sections of a product. Unpublished products have none publicly."""
    product = store.get_product(product_id)
    if not product:
        raise ServiceError("PRODUCT_NOT_FOUND", product_id=product_id)
    if public and not product.get("published"):
        return []
    template_sections: List[Row] = []
    if product.get("detail_template_id"):
        template_sections = store.list_template_sections(product["detail_template_id"])
    return merge_detail_sections(template_sections, store.list_product_sections(product_id))


# ---- images ----


# PUBLIC_INTERFACE
def validate_image(content_type: Optional[str], size: int) -> str:
    """Check an upload and return the file extension for its content type."""
    if content_type not in IMAGE_CONTENT_TYPES:
        raise ServiceError(
            "INVALID_FILE_TYPE",
            "Invalid file type. Only JPEG, PNG, WebP, and GIF are allowed.",
            content_type=content_type,
        )
    if size > config.MAX_IMAGE_BYTES:
        raise ServiceError("FILE_TOO_LARGE", "File size exceeds 5MB limit.", size=size, max_size=config.MAX_IMAGE_BYTES)
    return IMAGE_CONTENT_TYPES[content_type]


# PUBLIC_INTERFACE
def image_storage_path(product_id: UUID, extension: str) -> str:
    """Relative storage path `{product_id}/{uuid}.{ext}`. The client filename never reaches the path."""
    return f"{product_id}/{uuid.uuid4()}.{extension}"


# PUBLIC_INTERFACE
def image_url(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    return f"{config.MEDIA_BASE_URL.rstrip('/')}/{path}"


def _write_file(path: str, data: bytes) -> None:
    full = os.path.join(config.MEDIA_ROOT, path)
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "wb") as fh:
        fh.write(data)


def _remove_file(path: str) -> None:
    full = os.path.join(config.MEDIA_ROOT, path)
    try:
        os.remove(full)
    except FileNotFoundError:
        logger.warning("Image file already missing: %s", full)


# PUBLIC_INTERFACE
def upload_image(product_id: UUID, filename: Optional[str], content_type: Optional[str], data: bytes) -> Dict[str, Any]:
    """Store an uploaded image and register it. The first image of a product becomes primary."""
    extension = validate_image(content_type, len(data))
    if not db.fetch_one("SELECT id FROM products WHERE id=%s", [product_id]):
        raise ServiceError("PRODUCT_NOT_FOUND", product_id=product_id)

    path = image_storage_path(product_id, extension)
    _write_file(path, data)
    try:
        with db.transaction() as cur:
            cur.execute(
                "SELECT sort_order FROM product_images WHERE product_id=%s ORDER BY sort_order DESC LIMIT 1",
                [product_id],
            )
            last = cur.fetchone()
            is_first = last is None
            cur.execute(
                """
                INSERT INTO product_images (product_id, path, sort_order, is_primary)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                [product_id, path, 0 if is_first else int(last["sort_order"]) + 1, is_first],
            )
            image = dict(cur.fetchone())
            if is_first:
                cur.execute(
                    "UPDATE products SET primary_image_path=%s, updated_at=NOW() WHERE id=%s",
                    [path, product_id],
                )
    except Exception:
        _remove_file(path)
        raise
    logger.info("Image %s uploaded for product %s as %s", filename, product_id, path)
    return image


# PUBLIC_INTERFACE
def set_primary_image(product_id: UUID, image_id: UUID) -> Dict[str, Any]:
    with db.transaction() as cur:
        cur.execute("SELECT * FROM product_images WHERE id=%s AND product_id=%s", [image_id, product_id])
        image = cur.fetchone()
        if not image:
            raise ServiceError("IMAGE_NOT_FOUND", image_id=image_id)
        cur.execute("UPDATE product_images SET is_primary=FALSE WHERE product_id=%s", [product_id])
        cur.execute("UPDATE product_images SET is_primary=TRUE WHERE id=%s RETURNING *", [image_id])
        updated = dict(cur.fetchone())
        cur.execute(
            "UPDATE products SET primary_image_path=%s, updated_at=NOW() WHERE id=%s",
            [image["path"], product_id],
        )
    return updated


# PUBLIC_INTERFACE
def reorder_images(product_id: UUID, orders: Sequence[Dict[str, Any]]) -> None:
    with db.transaction() as cur:
        for entry in orders:
            cur.execute(
                "UPDATE product_images SET sort_order=%s WHERE id=%s AND product_id=%s",
                [entry["sort_order"], entry["id"], product_id],
            )


# PUBLIC_INTERFACE
def delete_image(product_id: UUID, image_id: UUID) -> None:
    """Remove an image; when it was primary the next image in order takes over."""
    with db.transaction() as cur:
        cur.execute(
            "DELETE FROM product_images WHERE id=%s AND product_id=%s RETURNING path, is_primary",
            [image_id, product_id],
        )
        image = cur.fetchone()
        if not image:
            raise ServiceError("IMAGE_NOT_FOUND", image_id=image_id)
        if image["is_primary"]:
            cur.execute(
                "SELECT id, path FROM product_images WHERE product_id=%s ORDER BY sort_order ASC LIMIT 1",
                [product_id],
            )
            nxt = cur.fetchone()
            if nxt:
                cur.execute("UPDATE product_images SET is_primary=TRUE WHERE id=%s", [nxt["id"]])
            cur.execute(
                "UPDATE products SET primary_image_path=%s, updated_at=NOW() WHERE id=%s",
                [nxt["path"] if nxt else None, product_id],
            )
    _remove_file(image["path"])
