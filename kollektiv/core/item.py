"""
Catalog Item Data Structures

This module defines the records stored in the catalog manifests:

- CatalogItem: a prompt or a media artifact group with its physical path references
- ReferenceCard / ReferenceSection: entries of the flat reference-card sheets
- RawContent: bytes not yet written to storage, with helpers for data URLs

Items are serialized with camelCase keys. Documents written by earlier versions
of the application (``urls``/``type`` keys on gallery items) are accepted.
"""

import re
import time
import uuid
import base64
import binascii
import logging
from dataclasses import dataclass
from urllib.parse import unquote_to_bytes
from typing import Dict, List, Any, Optional

logger = logging.getLogger(__name__)

ITEM_KINDS = ("image", "video", "prompt")

DEFAULT_MIME_TYPES = {
    "image": "image/png",
    "video": "video/mp4",
    "prompt": "text/plain",
}

_EXTENSION_OVERRIDES = {
    "plain": "txt",
    "octet-stream": "bin",
}

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(;[^;,]*)*?),(?P<data>.*)$", re.DOTALL)
_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_UNSAFE_EXTENSION_CHARS = re.compile(r"[^a-z0-9]")

# Keys handled explicitly by CatalogItem; everything else is passthrough.
_ITEM_KEYS = {
    "id", "createdAt", "created_at", "categoryId", "category_id", "paths", "urls",
    "kind", "type", "title", "notes", "tags", "isNsfw", "is_nsfw",
}


class CatalogError(Exception):
    """Base exception for catalog item operations"""
    pass


class ItemValidationError(CatalogError):
    """Raised when item data or raw content is invalid"""
    pass


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """
    Generate an opaque identifier such as ``item_1700000000000_a1b2c3``.

    The millisecond timestamp keeps ids roughly sortable; the random suffix
    keeps ids created within the same millisecond distinct.
    """
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:6]}"


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def is_external_reference(value: str) -> bool:
    """True for references that do not live in the storage collaborator."""
    return is_data_url(value) or bool(_SCHEME_PATTERN.match(value))


def extension_for_mime(mime_type: str, fallback: str = "bin") -> str:
    """
    File extension derived from a mime type's subtype.

    ``image/svg+xml`` -> ``svg``, ``text/plain`` -> ``txt``.
    """
    if not mime_type or "/" not in mime_type:
        return fallback
    subtype = mime_type.split("/", 1)[1].split("+")[0].split(";")[0].strip().lower()
    if subtype in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[subtype]
    # Used verbatim in stored file names.
    extension = _UNSAFE_EXTENSION_CHARS.sub("", subtype)
    return extension or fallback


@dataclass
class RawContent:
    """Content that has not been written to storage yet."""
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def extension(self) -> str:
        return extension_for_mime(self.mime_type)


def decode_data_url(url: str) -> RawContent:
    """
    Decode a ``data:`` URL into raw content.

    Args:
        url: URL such as ``data:image/png;base64,iVBORw0...``

    Returns:
        RawContent with the decoded bytes and declared mime type

    Raises:
        ItemValidationError: If the URL is malformed or its payload cannot be decoded
    """
    match = _DATA_URL_PATTERN.match(url or "")
    if not match:
        raise ItemValidationError("Malformed data URL")

    mime_type = match.group("mime") or "text/plain"
    params = match.group("params") or ""
    payload = match.group("data")

    if ";base64" in params:
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ItemValidationError(f"Invalid base64 payload in data URL: {e}")
    else:
        data = unquote_to_bytes(payload)

    return RawContent(data=data, mime_type=mime_type)


def encode_data_url(content: RawContent) -> str:
    encoded = base64.b64encode(content.data).decode("ascii")
    return f"data:{content.mime_type};base64,{encoded}"


def as_raw_content(value: Any, default_mime: str = "application/octet-stream") -> Optional[RawContent]:
    """
    Interpret a content argument as raw content.

    Args:
        value: bytes, RawContent, data URL, or an existing storage path
        default_mime: Mime type assumed for bare bytes

    Returns:
        RawContent for unsaved content, or None if ``value`` is a path reference

    Raises:
        ItemValidationError: If value is neither content nor a path
    """
    if isinstance(value, RawContent):
        return value
    if isinstance(value, (bytes, bytearray)):
        return RawContent(data=bytes(value), mime_type=default_mime)
    if is_data_url(value):
        return decode_data_url(value)
    if isinstance(value, str) and value.strip():
        return None
    raise ItemValidationError(f"Unsupported content value: {type(value).__name__}")


_WIRE_FIELDS = {
    "createdAt": "created_at",
    "categoryId": "category_id",
    "isNsfw": "is_nsfw",
    "urls": "paths",
    "type": "kind",
}


def fields_from_wire(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map camelCase (and legacy) manifest keys to CatalogItem attribute names."""
    return {_WIRE_FIELDS.get(key, key): value for key, value in data.items()}


def _clean_tags(tags: Any) -> List[str]:
    if not isinstance(tags, (list, tuple)):
        return []
    cleaned = []
    for tag in tags:
        if isinstance(tag, str) and tag.strip():
            cleaned.append(tag.strip())
    return cleaned


class CatalogItem:
    """
    A prompt or a media artifact group.

    Example manifest entry:
    {
        "id": "item_1700000000000_a1b2c3",
        "createdAt": 1700000000000,
        "categoryId": "cat_1700000000000_d4e5f6",
        "paths": ["gallery/Landscapes/item_1700000000000_a1b2c3_0.png"],
        "kind": "image",
        "title": "Sunset",
        "notes": "",
        "tags": ["warm"],
        "isNsfw": false
    }
    """

    def __init__(self,
                 id: str,
                 created_at: int = 0,
                 category_id: Optional[str] = None,
                 paths: Optional[List[str]] = None,
                 kind: str = "image",
                 title: str = "",
                 notes: str = "",
                 tags: Optional[List[str]] = None,
                 is_nsfw: bool = False,
                 **extra):
        """
        Initialize a CatalogItem.

        Args:
            id: Opaque unique identifier (required, immutable)
            created_at: Creation timestamp in milliseconds
            category_id: Owning category id, None for uncategorized
            paths: Ordered storage path references
            kind: One of "image", "video", "prompt"
            title: Display title
            notes: Free-text notes
            tags: Tag list
            is_nsfw: Exclusivity flag
            **extra: Domain-specific passthrough fields (sources, prompt, text, ...)

        Raises:
            ItemValidationError: If id is missing or paths are malformed
        """
        if not id or not isinstance(id, str) or not id.strip():
            raise ItemValidationError("Item id must be a non-empty string")
        self.id = id.strip()

        try:
            self.created_at = int(created_at or 0)
        except (TypeError, ValueError):
            raise ItemValidationError(f"Item '{self.id}' has invalid createdAt: {created_at!r}")

        self.category_id = category_id if isinstance(category_id, str) and category_id else None

        if paths is None:
            paths = []
        if not isinstance(paths, (list, tuple)) or not all(isinstance(p, str) for p in paths):
            raise ItemValidationError(f"Item '{self.id}' paths must be a list of strings")
        self.paths = list(paths)

        if kind not in ITEM_KINDS:
            logger.warning(f"Item '{self.id}' has unknown kind {kind!r}, treating as image")
            kind = "image"
        self.kind = kind

        self.title = title if isinstance(title, str) else str(title or "")
        self.notes = notes if isinstance(notes, str) else ""
        self.tags = _clean_tags(tags)
        self.is_nsfw = bool(is_nsfw)
        self.extra = extra

    @property
    def text(self) -> Optional[str]:
        """Prompt body cached in the manifest, if any."""
        return self.extra.get("text")

    @text.setter
    def text(self, value: Optional[str]) -> None:
        if value is None:
            self.extra.pop("text", None)
        else:
            self.extra["text"] = value

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "createdAt": self.created_at,
            "kind": self.kind,
            "paths": list(self.paths),
            "title": self.title,
            "notes": self.notes,
            "tags": list(self.tags),
            "isNsfw": self.is_nsfw,
        }
        if self.category_id:
            result["categoryId"] = self.category_id
        for key, value in self.extra.items():
            if key not in result:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_kind: str = "image") -> 'CatalogItem':
        """
        Create a CatalogItem from manifest data.

        Legacy keys are mapped: ``urls`` -> paths, ``type`` -> kind.

        Args:
            data: Manifest entry
            default_kind: Kind assumed when the entry carries none

        Returns:
            CatalogItem instance

        Raises:
            ItemValidationError: If the entry is not a dictionary or is missing its id
        """
        if not isinstance(data, dict):
            raise ItemValidationError("Item data must be a dictionary")

        paths = data.get("paths")
        if paths is None:
            paths = data.get("urls")

        kind = data.get("kind") or data.get("type") or default_kind
        created_at = data.get("createdAt", data.get("created_at", 0))
        category_id = data.get("categoryId", data.get("category_id"))
        is_nsfw = data.get("isNsfw", data.get("is_nsfw", False))

        extra = {key: value for key, value in data.items() if key not in _ITEM_KEYS}

        return cls(
            id=data.get("id"),
            created_at=created_at,
            category_id=category_id,
            paths=paths,
            kind=kind,
            title=data.get("title") or "",
            notes=data.get("notes") or "",
            tags=data.get("tags"),
            is_nsfw=is_nsfw,
            **extra,
        )

    def copy(self) -> 'CatalogItem':
        return CatalogItem.from_dict(self.to_dict())

    def apply_updates(self, updates: Dict[str, Any]) -> None:
        """
        Merge a partial update. ``id`` and ``created_at`` are immutable and ignored.

        Args:
            updates: Attribute names mapped to new values; unknown names are
                stored as passthrough fields
        """
        for key, value in updates.items():
            if key in ("id", "created_at"):
                continue
            if key in ("title", "notes"):
                setattr(self, key, value if isinstance(value, str) else "")
            elif key == "tags":
                self.tags = _clean_tags(value)
            elif key == "is_nsfw":
                self.is_nsfw = bool(value)
            elif key == "kind":
                if value in ITEM_KINDS:
                    self.kind = value
                else:
                    logger.warning(f"Ignoring unknown kind {value!r} for item '{self.id}'")
            elif key == "category_id":
                self.category_id = value or None
            elif key == "paths":
                if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
                    raise ItemValidationError(f"Item '{self.id}' paths must be a list of strings")
                self.paths = list(value)
            else:
                self.extra[key] = value

    def matches(self, query: str) -> bool:
        """Case-insensitive match over title, notes, tags and prompt text."""
        needle = (query or "").strip().lower()
        if not needle:
            return True
        haystacks = [self.title, self.notes] + self.tags
        for key in ("text", "prompt"):
            value = self.extra.get(key)
            if isinstance(value, str):
                haystacks.append(value)
        return any(needle in value.lower() for value in haystacks if value)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CatalogItem):
            return False
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"CatalogItem(id='{self.id}', kind='{self.kind}', category_id={self.category_id!r}, paths={self.paths!r})"


@dataclass
class ReferenceCard:
    """An entry in a reference sheet (cheatsheet, art styles, artists)."""
    id: str
    name: str
    description: str = ""
    example: str = ""
    keywords: Optional[List[str]] = None
    image_paths: Optional[List[str]] = None

    def __post_init__(self):
        if self.keywords is None:
            self.keywords = []
        if self.image_paths is None:
            self.image_paths = []

    def to_dict(self) -> Dict[str, Any]:
        result = {"id": self.id, "name": self.name, "imageUrls": list(self.image_paths)}
        if self.description:
            result["description"] = self.description
        if self.example:
            result["example"] = self.example
        if self.keywords:
            result["keywords"] = list(self.keywords)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReferenceCard':
        if not isinstance(data, dict) or not isinstance(data.get("id"), str) or not isinstance(data.get("name"), str):
            raise ItemValidationError("Reference card requires string 'id' and 'name'")
        image_paths = data.get("imageUrls", data.get("image_paths")) or []
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            example=data.get("example") or "",
            keywords=_clean_tags(data.get("keywords")),
            image_paths=[p for p in image_paths if isinstance(p, str)],
        )


@dataclass
class ReferenceSection:
    """A flat, named group of reference cards."""
    category: str
    items: List[ReferenceCard]

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "items": [card.to_dict() for card in self.items]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReferenceSection':
        if not isinstance(data, dict) or not isinstance(data.get("category"), str):
            raise ItemValidationError("Reference section requires a string 'category'")
        cards = []
        for entry in data.get("items") or []:
            try:
                cards.append(ReferenceCard.from_dict(entry))
            except ItemValidationError as e:
                logger.warning(f"Skipping invalid card in section '{data['category']}': {e}")
        return cls(category=data["category"], items=cards)
