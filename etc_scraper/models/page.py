"""Predicate-based element lookup used instead of fixed selectors."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ElementQuery(BaseModel):
    """Matches the first rendered element satisfying every given predicate.

    The portal regenerates its markup on every page transition, so elements
    are found by tag, attribute values and visible text at the moment of use
    rather than through stored handles.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    tag: str = "*"
    attrs: dict[str, str] = Field(default_factory=dict)  # exact match
    attr_contains: dict[str, str] = Field(default_factory=dict)
    text_contains: tuple[str, ...] = ()  # all must appear
    text_any: tuple[str, ...] = ()  # at least one must appear

    def predicate(self) -> dict:
        """Serializable form passed into the page script."""
        return self.model_dump(exclude={"name"})

    def describe(self) -> str:
        parts = [self.tag]
        parts += [f"[{k}={v!r}]" for k, v in self.attrs.items()]
        parts += [f"[{k}*={v!r}]" for k, v in self.attr_contains.items()]
        if self.text_contains:
            parts.append(f" text has {' & '.join(self.text_contains)}")
        if self.text_any:
            parts.append(f" text has any of {' | '.join(self.text_any)}")
        return f"{self.name} ({''.join(parts)})"
