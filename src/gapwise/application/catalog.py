"""
Catalog service for authoring concepts and items.

Every concept and item, whether typed by hand, loaded from a YAML file or
produced by a content generator, passes through the same validation here.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from gapwise.application.id_service import new_concept_id, new_item_id
from gapwise.domain.errors import NotFoundError, ValidationError
from gapwise.domain.models import (
    CONTENT_TYPES,
    CalcContent,
    CaseContent,
    ClozeContent,
    Concept,
    FreeRecallContent,
    Item,
    ItemContent,
    ItemType,
    McqContent,
    content_from_dict,
)
from gapwise.domain.ports import LearningRepository

logger = logging.getLogger(__name__)

CLOZE_BLANK = re.compile(r"\{\{.+?\}\}")


def validate_content(item_type: ItemType, content: ItemContent) -> None:
    """
    Check that `content` is the variant for `item_type` and is populated.

    Raises:
        ValidationError: On a mismatched or incomplete variant.
    """
    expected = CONTENT_TYPES[item_type]
    if not isinstance(content, expected):
        raise ValidationError(
            f"{item_type.value} item needs {expected.__name__}, got {type(content).__name__}"
        )

    if isinstance(content, McqContent):
        if len(content.choices) < 2:
            raise ValidationError("mcq item needs at least two choices")
        if content.correct_answer not in content.choices:
            raise ValidationError("mcq correct_answer must be one of the choices")
    elif isinstance(content, FreeRecallContent):
        if not content.correct_answer.strip():
            raise ValidationError("free-recall item needs a correct_answer")
    elif isinstance(content, CalcContent):
        if not content.calc_template.strip():
            raise ValidationError("calc item needs a calc_template")
    elif isinstance(content, CaseContent):
        if not content.case_steps:
            raise ValidationError("case item needs at least one step")
    elif isinstance(content, ClozeContent):
        if not CLOZE_BLANK.search(content.cloze_text):
            raise ValidationError("cloze_text must contain at least one {{blank}}")


@dataclass
class CatalogLoadResult:
    """Result of loading a YAML catalog."""

    concepts: list[Concept] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)


class CatalogService:
    """Creates, edits and deletes concepts and items through one validated path."""

    def __init__(self, repository: LearningRepository):
        self._repo = repository

    # ---------- Concepts ----------

    async def list_concepts(self) -> list[Concept]:
        return await self._repo.get_all_concepts()

    async def get_concept(self, concept_id: str) -> Concept:
        concept = await self._repo.get_concept(concept_id)
        if concept is None:
            raise NotFoundError(f"Unknown concept id: {concept_id!r}")
        return concept

    async def create_concept(
        self,
        name: str,
        domain: str,
        subdomain: str | None = None,
        description: str | None = None,
        tags: Iterable[str] = (),
        concept_id: str | None = None,
    ) -> Concept:
        concept = Concept(
            id=concept_id or new_concept_id(),
            name=(name or "").strip(),
            domain=(domain or "").strip() or "General",
            subdomain=subdomain,
            description=description,
            tags=tuple(tags),
        )
        if not concept.name:
            raise ValidationError("Concept name must not be empty")
        await self._repo.put_concept(concept)
        logger.info(f"Created concept {concept.id} ({concept.name})")
        return concept

    async def update_concept(self, concept: Concept) -> Concept:
        if await self._repo.get_concept(concept.id) is None:
            raise NotFoundError(f"Unknown concept id: {concept.id!r}")
        if not concept.name.strip():
            raise ValidationError("Concept name must not be empty")
        await self._repo.put_concept(concept)
        return concept

    async def delete_concept(self, concept_id: str) -> None:
        """Delete a concept. Its attempts and mastery history stay untouched."""
        if not await self._repo.delete_concept(concept_id):
            raise NotFoundError(f"Unknown concept id: {concept_id!r}")
        logger.info(f"Deleted concept {concept_id}")

    # ---------- Items ----------

    async def list_items(self) -> list[Item]:
        return await self._repo.get_all_items()

    async def get_item(self, item_id: str) -> Item:
        item = await self._repo.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Unknown item id: {item_id!r}")
        return item

    async def create_item(
        self,
        stem: str,
        item_type: ItemType | str,
        concept_ids: Iterable[str],
        content: ItemContent,
        difficulty: int = 50,
        explanation: str = "",
        source: str | None = None,
        item_id: str | None = None,
    ) -> Item:
        try:
            item_type = ItemType(item_type)
        except ValueError:
            raise ValidationError(f"Unknown item type: {item_type!r}") from None

        item = Item(
            id=item_id or new_item_id(),
            stem=stem,
            type=item_type,
            concept_ids=tuple(dict.fromkeys(concept_ids)),
            content=content,
            difficulty=difficulty,
            explanation=explanation,
            source=source,
        )
        await self._validate_item(item)
        await self._repo.put_item(item)
        logger.info(f"Created {item.type.value} item {item.id}")
        return item

    async def update_item(self, item: Item) -> Item:
        """Metadata edits only; the content itself is immutable once created."""
        current = await self._repo.get_item(item.id)
        if current is None:
            raise NotFoundError(f"Unknown item id: {item.id!r}")
        if item.type != current.type or item.content != current.content:
            raise ValidationError("Item content is immutable; create a new item instead")
        item = replace(item, concept_ids=tuple(dict.fromkeys(item.concept_ids)))
        await self._validate_item(item)
        await self._repo.put_item(item)
        return item

    async def delete_item(self, item_id: str) -> None:
        if not await self._repo.delete_item(item_id):
            raise NotFoundError(f"Unknown item id: {item_id!r}")
        logger.info(f"Deleted item {item_id}")

    async def _validate_item(self, item: Item) -> None:
        if not item.stem or not item.stem.strip():
            raise ValidationError("Item stem must not be empty")
        if isinstance(item.difficulty, bool) or not isinstance(item.difficulty, int):
            raise ValidationError("Item difficulty must be an integer")
        if not 0 <= item.difficulty <= 100:
            raise ValidationError(f"Item difficulty must be 0-100, got {item.difficulty}")
        if not item.concept_ids:
            raise ValidationError("Item must target at least one concept")
        for concept_id in item.concept_ids:
            if await self._repo.get_concept(concept_id) is None:
                raise NotFoundError(f"Unknown concept id: {concept_id!r}")
        validate_content(item.type, item.content)

    # ---------- YAML ----------

    async def load_yaml(self, source: Path | str) -> CatalogLoadResult:
        """
        Load concepts and items from a YAML document.

        Expected shape::

            concepts:
              - {id: photosynthesis, name: Photosynthesis, domain: Biology}
            items:
              - stem: "Where does the light reaction happen?"
                type: mcq
                concepts: [photosynthesis]
                choices: [Stroma, Thylakoid]
                correct_answer: Thylakoid

        Item `concepts` entries may be concept ids or names.
        """
        text = source.read_text(encoding="utf-8") if isinstance(source, Path) else source
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid catalog YAML: {e}") from e
        if not isinstance(data, Mapping):
            raise ValidationError("Catalog YAML must be a mapping with 'concepts' and 'items'")

        # All or nothing: a bad entry late in the file leaves the store untouched.
        async with self._repo.atomic():
            result = CatalogLoadResult()
            for raw in data.get("concepts") or []:
                if not isinstance(raw, Mapping):
                    raise ValidationError(f"Concept entry must be a mapping, got {raw!r}")
                result.concepts.append(
                    await self.create_concept(
                        name=str(raw.get("name", "")),
                        domain=str(raw.get("domain", "")),
                        subdomain=raw.get("subdomain"),
                        description=raw.get("description"),
                        tags=[str(t) for t in raw.get("tags") or []],
                        concept_id=raw.get("id"),
                    )
                )

            by_name = {c.name: c.id for c in await self._repo.get_all_concepts()}
            for raw in data.get("items") or []:
                if not isinstance(raw, Mapping):
                    raise ValidationError(f"Item entry must be a mapping, got {raw!r}")
                result.items.append(await self._item_from_yaml(raw, by_name))

        logger.info(
            f"Loaded catalog: {len(result.concepts)} concepts, {len(result.items)} items"
        )
        return result

    async def _item_from_yaml(self, raw: Mapping[str, Any], by_name: dict[str, str]) -> Item:
        try:
            item_type = ItemType(raw.get("type"))
        except ValueError:
            raise ValidationError(f"Unknown item type: {raw.get('type')!r}") from None
        try:
            content = content_from_dict(item_type, raw)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(
                f"Incomplete {item_type.value} item {raw.get('stem')!r}: {e}"
            ) from e

        refs = raw.get("concepts") or raw.get("concept_ids") or []
        concept_ids = [by_name.get(str(ref), str(ref)) for ref in refs]
        return await self.create_item(
            stem=str(raw.get("stem", "")),
            item_type=item_type,
            concept_ids=concept_ids,
            content=content,
            difficulty=raw.get("difficulty", 50),
            explanation=str(raw.get("explanation") or ""),
            source=raw.get("source"),
            item_id=raw.get("id"),
        )

