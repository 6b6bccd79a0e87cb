"""Type-dispatched asynchronous rewriting of asset paths inside world documents.

Each document type has a handler that knows which of its fields hold asset
paths, which hold HTML or Markdown with embedded links, and which hold
nested documents of another type. Handlers mutate and return the document
they receive; callers pass a copy.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Document = dict[str, Any]

# Non-overlapping by construction: finditer never yields overlapping matches,
# so replacements can be spliced back by position.
_HTML_LINK_RE = re.compile(r"""(src|href)=(["'])([^"']*)\2""")
_MARKDOWN_LINK_RE = re.compile(r"(!?)\[([^\]]*)\]\(([^)]+)\)")


class PathResolver(Protocol):
    """Maps an asset path to its local equivalent, returning it unchanged when it cannot."""

    def __call__(
        self, path: str, *, is_asset: bool = True, supports_wildcard: bool = False
    ) -> Awaitable[str]: ...


async def map_async(items: Iterable[T] | None, fn: Callable[[T], Awaitable[R]]) -> list[R]:
    """Apply ``fn`` to every item concurrently, preserving order."""
    if not items:
        return []
    return list(await asyncio.gather(*(fn(item) for item in items)))


async def str_replace_async(
    text: str, pattern: re.Pattern[str], fn: Callable[[re.Match[str]], Awaitable[str]]
) -> str:
    """Replace every match of ``pattern`` with the awaited result of ``fn``.

    All matches are found first and resolved concurrently, then substituted
    by position.
    """
    matches = list(pattern.finditer(text))
    if not matches:
        return text
    replacements = await asyncio.gather(*(fn(m) for m in matches))
    parts: list[str] = []
    pos = 0
    for match, replacement in zip(matches, replacements, strict=True):
        parts.append(text[pos : match.start()])
        parts.append(replacement)
        pos = match.end()
    parts.append(text[pos:])
    return "".join(parts)


def _get_path(data: Document, *keys: str) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


# Collection names, document names and embedded-field names all route to one handler.
_TYPE_ALIASES: dict[str, str] = {
    "Actor": "actor",
    "actors": "actor",
    "Adventure": "adventure",
    "adventures": "adventure",
    "Cards": "cards",
    "cards": "cards",
    "Card": "card",
    "card": "card",
    "Token": "token",
    "tokens": "token",
    "JournalEntry": "journal",
    "journal": "journal",
    "JournalEntryPage": "journal_page",
    "pages": "journal_page",
    "Item": "item",
    "items": "item",
    "ActiveEffect": "effect",
    "effects": "effect",
    "RollTable": "table",
    "tables": "table",
    "TableResult": "image_only",
    "RollTableResult": "image_only",
    "results": "image_only",
    "Macro": "image_only",
    "macros": "image_only",
    "ChatMessage": "message",
    "Message": "message",
    "chat": "message",
    "messages": "message",
    "Playlist": "playlist",
    "playlists": "playlist",
    "PlaylistSound": "sound",
    "sound": "sound",
    "sounds": "sound",
    "Scene": "scene",
    "scenes": "scene",
    "Drawing": "drawing",
    "drawings": "drawing",
    "MeasuredTemplate": "drawing",
    "templates": "drawing",
    "Note": "note",
    "notes": "note",
    "Tile": "tile",
    "tiles": "tile",
    "User": "user",
    "users": "user",
    "Combat": "passthrough",
    "combats": "passthrough",
    "Folder": "passthrough",
    "folders": "passthrough",
    "Setting": "passthrough",
    "settings": "passthrough",
}

_ADVENTURE_CONTENTS = (
    "actors",
    "combats",
    "items",
    "scenes",
    "journal",
    "tables",
    "macros",
    "cards",
    "playlists",
    "folders",
)


class EntityMigration:
    """Walks documents of any known type and rewrites the asset paths they embed."""

    def __init__(self, resolve: PathResolver) -> None:
        self._resolve = resolve
        self._handlers: dict[str, Callable[[Document], Awaitable[Document]]] = {
            "actor": self._migrate_actor,
            "adventure": self._migrate_adventure,
            "cards": self._migrate_cards,
            "card": self._migrate_card,
            "token": self._migrate_token,
            "journal": self._migrate_journal,
            "journal_page": self._migrate_journal_page,
            "item": self._migrate_item,
            "effect": self._migrate_effect,
            "table": self._migrate_table,
            "image_only": self._migrate_image_only,
            "message": self._migrate_message,
            "playlist": self._migrate_playlist,
            "sound": self._migrate_sound,
            "scene": self._migrate_scene,
            "drawing": self._migrate_drawing,
            "note": self._migrate_note,
            "tile": self._migrate_tile,
            "user": self._migrate_user,
            "passthrough": self._passthrough,
        }

    @staticmethod
    def supports(entity_type: str) -> bool:
        return entity_type in _TYPE_ALIASES

    async def migrate_entity(self, entity_type: str, data: Document) -> Document:
        """Rewrite ``data`` in place according to its type and return it."""
        if not isinstance(data, dict):
            return data
        canonical = _TYPE_ALIASES.get(entity_type)
        if canonical is None:
            logger.debug("No migration handler for document type %s", entity_type)
            return data
        return await self._handlers[canonical](data)

    async def migrate_path(
        self, path: Any, *, is_asset: bool = True, supports_wildcard: bool = False
    ) -> Any:
        if not path or not isinstance(path, str):
            return path
        return await self._resolve(path, is_asset=is_asset, supports_wildcard=supports_wildcard)

    async def migrate_html(self, content: Any) -> Any:
        """Rewrite ``src=`` and ``href=`` attribute values. Only ``src`` counts as an asset."""
        if not content or not isinstance(content, str):
            return content

        async def _replace(match: re.Match[str]) -> str:
            attr, quote, url = match.group(1), match.group(2), match.group(3)
            migrated = await self.migrate_path(url, is_asset=attr == "src")
            return f"{attr}={quote}{migrated}{quote}"

        return await str_replace_async(content, _HTML_LINK_RE, _replace)

    async def migrate_markdown(self, content: Any) -> Any:
        """Rewrite inline HTML, then Markdown links. Only image links count as assets."""
        if not content or not isinstance(content, str):
            return content
        html = await self.migrate_html(content)

        async def _replace(match: re.Match[str]) -> str:
            bang, text, source = match.group(1), match.group(2), match.group(3)
            migrated = await self.migrate_path(source, is_asset=bool(bang))
            escaped = migrated.replace("(", "%28").replace(")", "%29")
            return f"{bang}[{text}]({escaped})"

        return await str_replace_async(html, _MARKDOWN_LINK_RE, _replace)

    async def _migrate_list(self, items: Any, entity_type: str) -> Any:
        if not isinstance(items, list):
            return items
        return await map_async(items, lambda item: self.migrate_entity(entity_type, item))

    async def _migrate_field(
        self, data: Document, key: str, *, html: bool = False, **kwargs: bool
    ) -> None:
        """Rewrite the path (or HTML when ``html``) at ``data[key]``. Absent keys stay absent."""
        if key not in data:
            return
        if html:
            data[key] = await self.migrate_html(data[key])
        else:
            data[key] = await self.migrate_path(data[key], **kwargs)

    async def _migrate_texture(self, data: Document, fallback: str, **kwargs: bool) -> None:
        """Rewrite ``texture.src`` when present, else the legacy flat field."""
        texture = data.get("texture")
        if isinstance(texture, dict):
            await self._migrate_field(texture, "src", **kwargs)
        else:
            await self._migrate_field(data, fallback, **kwargs)

    async def _migrate_description(self, data: Document, *keys: str) -> None:
        """Rewrite the HTML at ``system.<keys>`` (or legacy ``data.<keys>``)."""
        for root in ("system", "data"):
            holder = _get_path(data, root, *keys[:-1])
            if isinstance(holder, dict) and holder.get(keys[-1]):
                holder[keys[-1]] = await self.migrate_html(holder[keys[-1]])
                return

    async def _migrate_actor(self, data: Document) -> Document:
        await self._migrate_field(data, "img")
        if data.get("prototypeToken"):
            data["prototypeToken"] = await self.migrate_entity("tokens", data["prototypeToken"])
        elif data.get("token"):
            data["token"] = await self.migrate_entity("tokens", data["token"])
        if data.get("items"):
            data["items"] = await self._migrate_list(data["items"], "items")
        if data.get("effects"):
            data["effects"] = await self._migrate_list(data["effects"], "effects")
        await self._migrate_description(data, "details", "biography", "value")
        return data

    async def _migrate_adventure(self, data: Document) -> Document:
        await self._migrate_field(data, "img")
        await self._migrate_field(data, "caption", html=True)
        await self._migrate_field(data, "description", html=True)
        for content_type in _ADVENTURE_CONTENTS:
            if data.get(content_type):
                data[content_type] = await self._migrate_list(data[content_type], content_type)
        return data

    async def _migrate_cards(self, data: Document) -> Document:
        await self._migrate_field(data, "img")
        if data.get("cards"):
            data["cards"] = await self._migrate_list(data["cards"], "card")
        return data

    async def _migrate_card(self, data: Document) -> Document:
        back = data.get("back")
        if isinstance(back, dict):
            await self._migrate_field(back, "img")
        faces = data.get("faces")
        if isinstance(faces, list):
            for face in faces:
                if isinstance(face, dict):
                    await self._migrate_field(face, "img")
        return data

    async def _migrate_token(self, data: Document) -> Document:
        await self._migrate_texture(data, "img", is_asset=True, supports_wildcard=True)
        if isinstance(data.get("effects"), list):
            data["effects"] = await map_async(data["effects"], self.migrate_path)
        if data.get("delta"):
            data["delta"] = await self.migrate_entity("actors", data["delta"])
        elif data.get("actorData"):
            data["actorData"] = await self.migrate_entity("actors", data["actorData"])
        elif data.get("actor"):
            data["actor"] = await self.migrate_entity("actors", data["actor"])
        return data

    async def _migrate_journal(self, data: Document) -> Document:
        if data.get("pages"):
            data["pages"] = await self._migrate_list(data["pages"], "JournalEntryPage")
        else:
            await self._migrate_field(data, "img")
            await self._migrate_field(data, "content", html=True)
        return data

    async def _migrate_journal_page(self, data: Document) -> Document:
        await self._migrate_field(data, "src")
        text = data.get("text")
        if isinstance(text, dict):
            await self._migrate_field(text, "content", html=True)
            if "markdown" in text:
                text["markdown"] = await self.migrate_markdown(text["markdown"])
        return data

    async def _migrate_item(self, data: Document) -> Document:
        await self._migrate_field(data, "img")
        await self._migrate_description(data, "description", "value")
        return data

    async def _migrate_effect(self, data: Document) -> Document:
        await self._migrate_field(data, "icon")
        await self._migrate_field(data, "img")
        return data

    async def _migrate_table(self, data: Document) -> Document:
        await self._migrate_field(data, "img")
        if data.get("results"):
            data["results"] = await self._migrate_list(data["results"], "RollTableResult")
        return data

    async def _migrate_image_only(self, data: Document) -> Document:
        await self._migrate_field(data, "img")
        return data

    async def _migrate_message(self, data: Document) -> Document:
        await self._migrate_field(data, "sound")
        await self._migrate_field(data, "content", html=True)
        return data

    async def _migrate_playlist(self, data: Document) -> Document:
        if data.get("sounds"):
            data["sounds"] = await self._migrate_list(data["sounds"], "sound")
        return data

    async def _migrate_sound(self, data: Document) -> Document:
        await self._migrate_field(data, "path")
        return data

    async def _migrate_scene(self, data: Document) -> Document:
        background = data.get("background")
        if isinstance(background, dict):
            await self._migrate_field(background, "src")
        else:
            await self._migrate_field(data, "img")
        await self._migrate_field(data, "foreground")
        await self._migrate_field(data, "thumb")
        await self._migrate_field(data, "description", html=True)
        for embedded in ("drawings", "notes", "templates", "tiles", "tokens"):
            if data.get(embedded):
                data[embedded] = await self._migrate_list(data[embedded], embedded)
        return data

    async def _migrate_drawing(self, data: Document) -> Document:
        texture = data.get("texture")
        if isinstance(texture, dict):
            await self._migrate_field(texture, "src")
        else:
            await self._migrate_field(data, "texture")
        return data

    async def _migrate_note(self, data: Document) -> Document:
        await self._migrate_texture(data, "icon")
        return data

    async def _migrate_tile(self, data: Document) -> Document:
        await self._migrate_texture(data, "img")
        return data

    async def _migrate_user(self, data: Document) -> Document:
        await self._migrate_field(data, "avatar")
        return data

    async def _passthrough(self, data: Document) -> Document:
        return data
